"""Debug logging utilities for agent loop tracing."""

import json
import logging
from typing import Any

# Dedicated debug logger for agent loop tracing
debug_logger = logging.getLogger("agent_runner.debug")


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def log_agent_input(request_id: str, kind: str, model: str, system_prompt: str, task: str) -> None:
    """Log the full seed conversation for a loop."""
    debug_logger.info(
        "\n" + "=" * 80 + "\n"
        f"AGENT INPUT [{request_id}]\n"
        f"Kind: {kind} | Model: {model or '(unresolved)'}\n" + "-" * 80 + "\n"
        f"SYSTEM PROMPT:\n{system_prompt}\n" + "-" * 80 + "\n"
        f"TASK:\n{task}\n" + "=" * 80
    )


def log_tool_call(request_id: str, iteration: int, tool_name: str, arguments: dict[str, Any]) -> None:
    """Log a tool call with its arguments."""
    debug_logger.info(
        f"\n[{request_id}] Iteration {iteration} - TOOL CALL: {tool_name}\n"
        f"Arguments: {json.dumps(arguments, indent=2, ensure_ascii=False, default=str)}"
    )


def log_tool_result(request_id: str, iteration: int, tool_name: str, result: str) -> None:
    """Log a tool result, truncated."""
    debug_logger.info(
        f"\n[{request_id}] Iteration {iteration} - TOOL RESULT: {tool_name}\n"
        f"Output: {_truncate(result, 500)}"
    )


def log_agent_response(
    request_id: str, iteration: int, model: str, content: str, finish_reason: str | None
) -> None:
    """Log the model's response, truncated."""
    debug_logger.info(
        f"\n[{request_id}] Iteration {iteration} - RESPONSE from {model} "
        f"(finish_reason={finish_reason}):\n{_truncate(content, 1000)}"
    )


def log_final_output(
    request_id: str, status: str, summary: str | None, iterations: int, mutations: int
) -> None:
    """Log the loop's final outcome."""
    debug_logger.info(
        "\n" + "=" * 80 + "\n"
        f"AGENT OUTPUT [{request_id}]\n"
        f"Status: {status} | Iterations: {iterations} | Mutations: {mutations}\n" + "-" * 80 + "\n"
        f"SUMMARY:\n{summary or '(none)'}\n" + "=" * 80
    )
