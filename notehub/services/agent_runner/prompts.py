"""System prompts seeded from a snapshot of the target space."""

import json
import logging

from notehub.constants import TOOL_LIST_FOLDER, TaskKind
from notehub.services.tools.base import ToolExecutor

logger = logging.getLogger(__name__)

_TASK_INSTRUCTIONS: dict[TaskKind, str] = {
    TaskKind.INPUT: (
        "You file the user's input into their note space. Decide whether it belongs "
        "in an existing file, a new file, or a new folder, and make the change with "
        "the tools provided."
    ),
    TaskKind.SEARCH: (
        "You answer the user's query from their note space. Read the files that look "
        "relevant and return ranked results with short snippets through complete()."
    ),
    TaskKind.REFACTOR: (
        "You reorganize the folder structure of the user's note space as requested. "
        "Only delete folders after they are empty."
    ),
}

_PROTOCOL_RULES = (
    "Rules:\n"
    "- Call exactly one tool per turn. Plain text replies are not accepted.\n"
    "- Use ask_to_user only when a wrong guess would misplace content.\n"
    "- Call complete() with a short summary when the task is done."
)

TASK_EXTRACTION_PROMPT = (
    "You maintain the user's todo list. Read the input below and add, complete, "
    "update or delete todos that it clearly implies. Call exactly one tool per turn "
    "and finish with nothing_more_todo()."
)

NO_TOOL_CALL_CORRECTION = (
    "You must respond with exactly one tool call. "
    "If the task is finished, call the terminal tool."
)


async def snapshot_space(executor: ToolExecutor, space_id: str, acting_user: str) -> str:
    """Root listing of the space as JSON text; a placeholder if it cannot be read."""
    try:
        result = await executor.execute(space_id, TOOL_LIST_FOLDER, {"path": "/"}, acting_user)
    except Exception as e:
        logger.warning(f"Could not snapshot space {space_id}: {e}")
        return "(directory listing unavailable)"
    if not result.success:
        logger.warning(f"Could not snapshot space {space_id}: {result.message}")
        return "(directory listing unavailable)"
    return json.dumps(result.data, ensure_ascii=False, indent=2, default=str)


def build_system_prompt(kind: TaskKind, snapshot: str) -> str:
    return (
        f"{_TASK_INSTRUCTIONS[kind]}\n\n"
        f"{_PROTOCOL_RULES}\n\n"
        f"Current directory structure (root):\n{snapshot}"
    )
