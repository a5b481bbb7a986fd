"""Data models for agent runner."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from notehub.adapters.base import UserContext
from notehub.config import settings
from notehub.constants import TaskKind
from notehub.services.tools.arguments import SearchHit


class LoopStatus(str, Enum):
    """Terminal state of one loop invocation."""

    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"  # Ended abnormally after real mutations
    FAILED = "FAILED"


@dataclass
class AgentJob:
    """A request handed to the orchestrator by the worker pool."""

    request_id: str
    space_id: str
    kind: TaskKind
    input_text: str
    user: UserContext
    personal_space: bool = False


@dataclass
class AgentResult:
    """Result from one agent loop."""

    status: LoopStatus
    files_created: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    folders_created: list[str] = field(default_factory=list)
    summary: str | None = None
    search_results: list[SearchHit] = field(default_factory=list)
    error: str | None = None
    rolled_back: bool = False  # Set only by the ask-to-user timeout path
    iterations: int = 0
    tokens_used: int = 0

    @property
    def has_mutations(self) -> bool:
        return bool(self.files_created or self.files_modified or self.folders_created)

    @property
    def success(self) -> bool:
        return self.status != LoopStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        """Client-facing JSON shape."""
        return {
            "status": self.status.value,
            "filesCreated": list(self.files_created),
            "filesModified": list(self.files_modified),
            "foldersCreated": list(self.folders_created),
            "summary": self.summary,
            "searchResults": [hit.to_payload() for hit in self.search_results],
            "error": self.error,
            "rolledBack": self.rolled_back,
            "iterations": self.iterations,
            "tokensUsed": self.tokens_used,
        }


@dataclass
class AgentConfig:
    """Loop limits; defaults come from settings."""

    max_iterations: int = field(default_factory=lambda: settings.max_iterations)
    max_model_attempts: int = field(default_factory=lambda: settings.max_model_attempts)
    retry_backoff_seconds: float = field(default_factory=lambda: settings.retry_backoff_seconds)
    max_protocol_violations: int = field(
        default_factory=lambda: settings.max_protocol_violations
    )
    ask_user_timeout_seconds: float = field(
        default_factory=lambda: settings.ask_user_timeout_seconds
    )
    token_safety_margin: int = field(default_factory=lambda: settings.token_safety_margin)


@dataclass
class TaskExtractionResult:
    """Outcome of the todo extraction loop (never affects the primary result)."""

    status: LoopStatus
    todos_touched: list[str] = field(default_factory=list)
    iterations: int = 0
    error: str | None = None


__all__ = [
    "AgentConfig",
    "AgentJob",
    "AgentResult",
    "LoopStatus",
    "SearchHit",
    "TaskExtractionResult",
    "TaskKind",
    "UserContext",
]
