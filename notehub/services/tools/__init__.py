"""Tool support: executor interface, typed arguments and schema sets."""

from notehub.services.tools.arguments import (
    MalformedToolCall,
    ParsedToolCall,
    ToolInvocation,
    parse_tool_call,
)
from notehub.services.tools.base import (
    HttpToolExecutor,
    ToolExecutionError,
    ToolExecutor,
    ToolResult,
    get_tool_executor,
)

__all__ = [
    "HttpToolExecutor",
    "MalformedToolCall",
    "ParsedToolCall",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolInvocation",
    "ToolResult",
    "get_tool_executor",
    "parse_tool_call",
]
