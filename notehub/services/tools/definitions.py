"""Tool schema sets per task kind, in OpenAI function-calling format."""

from typing import Any

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
    TaskKind,
)
from notehub.services.tools.arguments import TOOL_ARGUMENT_MODELS

TOOL_DESCRIPTIONS: dict[str, str] = {
    TOOL_LIST_FOLDER: "List the direct children (folders and files) of a folder.",
    TOOL_READ_FILE: "Read the content of a file.",
    TOOL_ADD_FOLDER: "Create a new folder.",
    TOOL_EDIT_FOLDER_NAME: "Rename a folder.",
    TOOL_DELETE_FOLDER: "Delete an empty folder.",
    TOOL_ADD_FILE: "Create a new file with BlockNote JSON content.",
    TOOL_EDIT_FILE: "Replace text in a file. 'before' must match the current content.",
    TOOL_EDIT_FILE_NAME: "Rename a file.",
    TOOL_MOVE_FILE: "Move a file into another folder.",
    TOOL_DELETE_FILE: "Move a file to the trash.",
    TOOL_ASK_TO_USER: (
        "Ask the user a question and wait for the answer. Use only when the "
        "request is ambiguous and a wrong guess would misplace content."
    ),
    TOOL_COMPLETE: "Declare the task finished with a summary (and ranked results for searches).",
    TOOL_ADD_TODO: "Add a new todo.",
    TOOL_COMPLETE_TODO: "Mark an existing todo as done. Matches by title.",
    TOOL_UPDATE_TODO: "Change the period of an existing todo.",
    TOOL_DELETE_TODO: "Delete an existing todo. Matches by title.",
    TOOL_NOTHING_MORE_TODO: "Call when there is nothing more to add or change. Always call last.",
}

TASK_TOOLSETS: dict[TaskKind, tuple[str, ...]] = {
    TaskKind.INPUT: (
        TOOL_LIST_FOLDER,
        TOOL_ADD_FOLDER,
        TOOL_EDIT_FOLDER_NAME,
        TOOL_ADD_FILE,
        TOOL_READ_FILE,
        TOOL_EDIT_FILE,
        TOOL_EDIT_FILE_NAME,
        TOOL_MOVE_FILE,
        TOOL_ASK_TO_USER,
        TOOL_COMPLETE,
    ),
    TaskKind.SEARCH: (
        TOOL_LIST_FOLDER,
        TOOL_READ_FILE,
        TOOL_COMPLETE,
    ),
    TaskKind.REFACTOR: (
        TOOL_LIST_FOLDER,
        TOOL_ADD_FOLDER,
        TOOL_EDIT_FOLDER_NAME,
        TOOL_DELETE_FOLDER,
        TOOL_ADD_FILE,
        TOOL_READ_FILE,
        TOOL_EDIT_FILE,
        TOOL_EDIT_FILE_NAME,
        TOOL_MOVE_FILE,
        TOOL_DELETE_FILE,
        TOOL_ASK_TO_USER,
        TOOL_COMPLETE,
    ),
}

TODO_TOOLSET: tuple[str, ...] = (
    TOOL_ADD_TODO,
    TOOL_COMPLETE_TODO,
    TOOL_UPDATE_TODO,
    TOOL_DELETE_TODO,
    TOOL_NOTHING_MORE_TODO,
)


def tool_schema(name: str) -> dict[str, Any]:
    """Build the function schema for one tool from its argument model."""
    model_cls = TOOL_ARGUMENT_MODELS[name]
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": TOOL_DESCRIPTIONS[name],
            "parameters": model_cls.model_json_schema(by_alias=True),
        },
    }


def get_tool_definitions(names: tuple[str, ...]) -> list[dict[str, Any]]:
    """Schemas for a toolset, in declaration order."""
    return [tool_schema(name) for name in names]
