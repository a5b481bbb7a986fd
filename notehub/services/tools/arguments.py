"""Typed tool arguments and parsing of model-proposed tool calls.

Each known tool has a pydantic model for its arguments. A raw tool call
parses into either a ``ParsedToolCall`` (known tool, valid arguments) or a
``MalformedToolCall`` (unknown tool, invalid JSON, or failed validation).
Malformed calls are never raised; the loop feeds them back to the model.
"""

import json
from collections.abc import Collection
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from notehub.adapters.base import ToolCallRequest
from notehub.constants import (
    TOOL_ADD_FILE,
    TOOL_ADD_FOLDER,
    TOOL_ADD_TODO,
    TOOL_ASK_TO_USER,
    TOOL_COMPLETE,
    TOOL_COMPLETE_TODO,
    TOOL_DELETE_FILE,
    TOOL_DELETE_FOLDER,
    TOOL_DELETE_TODO,
    TOOL_EDIT_FILE,
    TOOL_EDIT_FILE_NAME,
    TOOL_EDIT_FOLDER_NAME,
    TOOL_LIST_FOLDER,
    TOOL_MOVE_FILE,
    TOOL_NOTHING_MORE_TODO,
    TOOL_READ_FILE,
    TOOL_UPDATE_TODO,
)


class ToolArguments(BaseModel):
    """Base for all tool argument models. Wire names are camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_payload(self) -> dict[str, Any]:
        """Arguments as sent to the tool executor."""
        return self.model_dump(by_alias=True, exclude_none=True)


# Navigation


class ListFolderArgs(ToolArguments):
    path: str = Field(default="/", description='Folder path, "/" for the root')


class ReadFileArgs(ToolArguments):
    path: str = Field(..., min_length=1, description="File path")


# Folders


class AddFolderArgs(ToolArguments):
    path: str = Field(..., min_length=1, description="Full path of the new folder")


class EditFolderNameArgs(ToolArguments):
    path: str = Field(..., min_length=1, description="Current folder path")
    new_name: str = Field(..., min_length=1, alias="newName", description="New folder name")


class DeleteFolderArgs(ToolArguments):
    path: str = Field(..., min_length=1, description="Path of an empty folder")


# Files


class AddFileArgs(ToolArguments):
    path: str = Field(..., min_length=1, description="Full path of the new file")
    content: str | list[dict[str, Any]] = Field(
        ..., description="File content as BlockNote JSON blocks"
    )


class EditFileArgs(ToolArguments):
    path: str = Field(..., min_length=1, description="File path")
    before: str = Field(..., description="Exact current text to replace")
    after: str = Field(..., description="Replacement text")


class EditFileNameArgs(ToolArguments):
    path: str = Field(..., min_length=1, description="Current file path")
    new_name: str = Field(..., min_length=1, alias="newName", description="New file name")


class MoveFileArgs(ToolArguments):
    from_path: str = Field(..., min_length=1, alias="fromPath", description="Current file path")
    to_path: str = Field(..., min_length=1, alias="toPath", description="Destination folder path")


class DeleteFileArgs(ToolArguments):
    path: str = Field(..., min_length=1, description="File path (moved to trash)")


# Control


class AskToUserArgs(ToolArguments):
    question: str = Field(..., min_length=1, description="Question for the user")
    options: list[str] = Field(default_factory=list, description="Suggested answers")


class SearchHit(ToolArguments):
    file_id: str = Field(default="", alias="fileId")
    path: str = ""
    title: str = ""
    snippet: str = ""
    relevance_score: float = Field(default=0.0, alias="relevanceScore")


class CompleteArgs(ToolArguments):
    summary: str = Field(default="", description="What was done")
    search_results: list[SearchHit] = Field(
        default_factory=list, alias="searchResults", description="Ranked hits for searches"
    )


# Task extraction


class AddTodoArgs(ToolArguments):
    title: str = Field(..., min_length=1, description="Short todo title")
    content: str | None = Field(default=None, description="Optional details")
    start_date: str | None = Field(default=None, alias="startDate", description="YYYY-MM-DD")
    end_date: str | None = Field(default=None, alias="endDate", description="YYYY-MM-DD")


class CompleteTodoArgs(ToolArguments):
    title: str = Field(..., min_length=1, description="Title of the todo (partial match)")


class UpdateTodoArgs(ToolArguments):
    title: str = Field(..., min_length=1, description="Title of the todo (partial match)")
    start_date: str | None = Field(default=None, alias="startDate", description="YYYY-MM-DD")
    end_date: str | None = Field(default=None, alias="endDate", description="YYYY-MM-DD")


class DeleteTodoArgs(ToolArguments):
    title: str = Field(..., min_length=1, description="Title of the todo (partial match)")


class NothingMoreTodoArgs(ToolArguments):
    pass


TOOL_ARGUMENT_MODELS: dict[str, type[ToolArguments]] = {
    TOOL_LIST_FOLDER: ListFolderArgs,
    TOOL_READ_FILE: ReadFileArgs,
    TOOL_ADD_FOLDER: AddFolderArgs,
    TOOL_EDIT_FOLDER_NAME: EditFolderNameArgs,
    TOOL_DELETE_FOLDER: DeleteFolderArgs,
    TOOL_ADD_FILE: AddFileArgs,
    TOOL_EDIT_FILE: EditFileArgs,
    TOOL_EDIT_FILE_NAME: EditFileNameArgs,
    TOOL_MOVE_FILE: MoveFileArgs,
    TOOL_DELETE_FILE: DeleteFileArgs,
    TOOL_ASK_TO_USER: AskToUserArgs,
    TOOL_COMPLETE: CompleteArgs,
    TOOL_ADD_TODO: AddTodoArgs,
    TOOL_COMPLETE_TODO: CompleteTodoArgs,
    TOOL_UPDATE_TODO: UpdateTodoArgs,
    TOOL_DELETE_TODO: DeleteTodoArgs,
    TOOL_NOTHING_MORE_TODO: NothingMoreTodoArgs,
}


@dataclass(frozen=True)
class ParsedToolCall:
    """A known tool with validated arguments."""

    call_id: str
    name: str
    arguments: ToolArguments

    @property
    def payload(self) -> dict[str, Any]:
        return self.arguments.to_payload()


@dataclass(frozen=True)
class MalformedToolCall:
    """A tool call the loop cannot execute; the model is asked to retry."""

    call_id: str
    name: str
    raw_arguments: str
    error: str


ToolInvocation = ParsedToolCall | MalformedToolCall


def _describe_validation_error(err: ValidationError) -> str:
    parts = []
    for item in err.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "(root)"
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_tool_call(
    call: ToolCallRequest,
    allowed: Collection[str] | None = None,
) -> ToolInvocation:
    """
    Parse a raw tool call into the tagged union.

    Args:
        call: Tool call as proposed by the model
        allowed: Tool names declared for this loop; others are malformed

    Returns:
        ParsedToolCall or MalformedToolCall
    """
    model_cls = TOOL_ARGUMENT_MODELS.get(call.name)
    if model_cls is None or (allowed is not None and call.name not in allowed):
        return MalformedToolCall(
            call_id=call.id,
            name=call.name,
            raw_arguments=call.arguments,
            error=f"Unknown tool: {call.name!r}",
        )

    try:
        data = json.loads(call.arguments) if call.arguments.strip() else {}
    except json.JSONDecodeError as e:
        return MalformedToolCall(
            call_id=call.id,
            name=call.name,
            raw_arguments=call.arguments,
            error=f"Invalid JSON arguments: {e.msg} (line {e.lineno}, column {e.colno})",
        )

    if not isinstance(data, dict):
        return MalformedToolCall(
            call_id=call.id,
            name=call.name,
            raw_arguments=call.arguments,
            error="Arguments must be a JSON object",
        )

    try:
        arguments = model_cls.model_validate(data)
    except ValidationError as e:
        return MalformedToolCall(
            call_id=call.id,
            name=call.name,
            raw_arguments=call.arguments,
            error=f"Invalid arguments for {call.name}: {_describe_validation_error(e)}",
        )

    return ParsedToolCall(call_id=call.id, name=call.name, arguments=arguments)
