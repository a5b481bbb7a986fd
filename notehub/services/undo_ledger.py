"""
Undo ledger for side-effecting tool calls.

Every successful mutation gets an inverse entry; ``rollback_all`` replays
them newest first. Rollback is best-effort: a failing inverse is logged
and the remaining entries are still replayed.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any

from notehub.constants import (
    MUTATING_TOOLS,
    TOOL_ADD_FILE,
    TOOL_ADD_FOLDER,
    TOOL_DELETE_FILE,
    TOOL_DELETE_FOLDER,
    TOOL_EDIT_FILE,
    TOOL_EDIT_FILE_NAME,
    TOOL_EDIT_FOLDER_NAME,
    TOOL_MOVE_FILE,
    TOOL_RESTORE_FILE,
    TOOL_UNDO_ADD_FILE,
    TOOL_UNDO_ADD_FOLDER,
)
from notehub.services.tools.base import ToolExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UndoEntry:
    """A tool call that reverses an earlier successful mutation."""

    tool_name: str
    args: dict[str, Any]


@dataclass(frozen=True)
class RollbackFailure:
    """One inverse call that did not succeed during rollback."""

    entry: UndoEntry
    error: str


def _parent(path: str) -> str:
    return posixpath.dirname(path.rstrip("/")) or "/"


def _basename(path: str) -> str:
    return posixpath.basename(path.rstrip("/"))


def invert_action(tool_name: str, args: dict[str, Any]) -> UndoEntry | None:
    """
    Map a forward mutation to the call that reverses it.

    Args:
        tool_name: Name of the tool that succeeded
        args: Arguments it was executed with (wire names)

    Returns:
        UndoEntry for mutating tools, None for read-only and control tools

    Raises:
        ValueError: If a mutating tool has no inverse (programming error)
    """
    if tool_name not in MUTATING_TOOLS:
        return None

    if tool_name == TOOL_ADD_FILE:
        return UndoEntry(TOOL_UNDO_ADD_FILE, {"path": args["path"]})

    if tool_name == TOOL_ADD_FOLDER:
        return UndoEntry(TOOL_UNDO_ADD_FOLDER, {"path": args["path"]})

    if tool_name == TOOL_DELETE_FOLDER:
        # Only empty folders can be deleted, so recreating it is a full inverse
        return UndoEntry(TOOL_ADD_FOLDER, {"path": args["path"]})

    if tool_name == TOOL_DELETE_FILE:
        return UndoEntry(TOOL_RESTORE_FILE, {"path": args["path"]})

    if tool_name == TOOL_EDIT_FILE:
        return UndoEntry(
            TOOL_EDIT_FILE,
            {"path": args["path"], "before": args["after"], "after": args["before"]},
        )

    if tool_name in (TOOL_EDIT_FILE_NAME, TOOL_EDIT_FOLDER_NAME):
        old_path = args["path"]
        new_path = posixpath.join(_parent(old_path), args["newName"])
        return UndoEntry(tool_name, {"path": new_path, "newName": _basename(old_path)})

    if tool_name == TOOL_MOVE_FILE:
        from_path = args["fromPath"]
        moved_path = posixpath.join(args["toPath"], _basename(from_path))
        return UndoEntry(TOOL_MOVE_FILE, {"fromPath": moved_path, "toPath": _parent(from_path)})

    raise ValueError(f"No inverse defined for mutating tool {tool_name!r}")


@dataclass
class UndoLedger:
    """Append-only log of inverse operations for one request."""

    executor: ToolExecutor
    space_id: str
    acting_user: str
    _entries: list[UndoEntry] = field(default_factory=list)

    def record(self, entry: UndoEntry) -> None:
        self._entries.append(entry)

    @property
    def entries(self) -> tuple[UndoEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def rollback_all(self) -> list[RollbackFailure]:
        """
        Replay every inverse in reverse chronological order.

        The ledger is emptied first, so a second call is a no-op.

        Returns:
            Failures, in the order they were encountered
        """
        entries = list(reversed(self._entries))
        self._entries.clear()
        failures: list[RollbackFailure] = []

        logger.info(f"Rolling back {len(entries)} operation(s) in space {self.space_id}")
        for entry in entries:
            try:
                result = await self.executor.execute(
                    self.space_id, entry.tool_name, dict(entry.args), self.acting_user
                )
            except Exception as e:
                logger.warning(f"Rollback {entry.tool_name} {entry.args} raised: {e}")
                failures.append(RollbackFailure(entry=entry, error=str(e)))
                continue

            if not result.success:
                logger.warning(
                    f"Rollback {entry.tool_name} {entry.args} failed: {result.message}"
                )
                failures.append(
                    RollbackFailure(entry=entry, error=result.message or "rollback failed")
                )

        return failures
