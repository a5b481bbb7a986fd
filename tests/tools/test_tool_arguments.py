"""Tests for tool-call parsing and tool schema sets."""

import pytest

from notehub.adapters.base import ToolCallRequest
from notehub.constants import TaskKind
from notehub.services.tools.arguments import (
    AddTodoArgs,
    CompleteArgs,
    MalformedToolCall,
    MoveFileArgs,
    ParsedToolCall,
    parse_tool_call,
)
from notehub.services.tools.definitions import (
    TASK_TOOLSETS,
    TODO_TOOLSET,
    get_tool_definitions,
)


def _call(name, arguments):
    return ToolCallRequest(id="call_1", name=name, arguments=arguments)


class TestParseToolCall:
    """Tests for parse_tool_call."""

    def test_valid_call(self):
        parsed = parse_tool_call(_call("move_file", '{"fromPath": "/a.md", "toPath": "/archive"}'))

        assert isinstance(parsed, ParsedToolCall)
        assert isinstance(parsed.arguments, MoveFileArgs)
        assert parsed.arguments.to_path == "/archive"
        assert parsed.payload == {"fromPath": "/a.md", "toPath": "/archive"}

    def test_optional_fields_dropped_from_payload(self):
        parsed = parse_tool_call(_call("add_todo", '{"title": "Ship v2"}'))

        assert isinstance(parsed.arguments, AddTodoArgs)
        assert parsed.payload == {"title": "Ship v2"}

    def test_empty_arguments_allowed_for_no_arg_tools(self):
        parsed = parse_tool_call(_call("nothing_more_todo", ""))
        assert isinstance(parsed, ParsedToolCall)

    def test_complete_with_search_results(self):
        parsed = parse_tool_call(
            _call(
                "complete",
                '{"summary": "found", "searchResults": [{"fileId": "f1", "relevanceScore": 0.7}]}',
            )
        )

        assert isinstance(parsed.arguments, CompleteArgs)
        assert parsed.arguments.search_results[0].file_id == "f1"
        assert parsed.arguments.search_results[0].relevance_score == 0.7

    def test_unknown_tool(self):
        parsed = parse_tool_call(_call("format_disk", "{}"))

        assert isinstance(parsed, MalformedToolCall)
        assert parsed.error == "Unknown tool: 'format_disk'"

    def test_tool_outside_allowed_set(self):
        parsed = parse_tool_call(_call("delete_file", '{"path": "/a.md"}'), allowed=("read_file",))

        assert isinstance(parsed, MalformedToolCall)
        assert parsed.error.startswith("Unknown tool")

    def test_invalid_json(self):
        parsed = parse_tool_call(_call("read_file", '{"path": '))

        assert isinstance(parsed, MalformedToolCall)
        assert parsed.error.startswith("Invalid JSON arguments")
        assert parsed.raw_arguments == '{"path": '

    def test_non_object_json(self):
        parsed = parse_tool_call(_call("read_file", '["/a.md"]'))

        assert isinstance(parsed, MalformedToolCall)
        assert parsed.error == "Arguments must be a JSON object"

    def test_missing_required_field(self):
        parsed = parse_tool_call(_call("edit_file", '{"path": "/a.md", "before": "x"}'))

        assert isinstance(parsed, MalformedToolCall)
        assert parsed.error.startswith("Invalid arguments for edit_file")
        assert "after" in parsed.error


class TestToolDefinitions:
    """Tests for the per-kind tool schemas."""

    @pytest.mark.parametrize("kind", list(TaskKind))
    def test_rollback_tools_never_offered(self, kind):
        names = {d["function"]["name"] for d in get_tool_definitions(TASK_TOOLSETS[kind])}

        assert "complete" in names
        assert names.isdisjoint({"undo_add_file", "undo_add_folder", "restore_file"})

    def test_search_is_read_only(self):
        assert set(TASK_TOOLSETS[TaskKind.SEARCH]) == {"list_folder", "read_file", "complete"}

    def test_delete_only_for_refactor(self):
        assert "delete_folder" in TASK_TOOLSETS[TaskKind.REFACTOR]
        assert "delete_folder" not in TASK_TOOLSETS[TaskKind.INPUT]

    def test_schema_uses_wire_names(self):
        schema = get_tool_definitions(("move_file",))[0]

        assert schema["type"] == "function"
        assert schema["function"]["name"] == "move_file"
        properties = schema["function"]["parameters"]["properties"]
        assert set(properties) == {"fromPath", "toPath"}

    def test_todo_toolset(self):
        names = [d["function"]["name"] for d in get_tool_definitions(TODO_TOOLSET)]
        assert names[-1] == "nothing_more_todo"
