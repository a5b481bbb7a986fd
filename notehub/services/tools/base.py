"""Tool executor interface and the HTTP client for the note store."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from notehub.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """Structured outcome of one tool execution."""

    success: bool
    data: Any = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.message is not None:
            result["message"] = self.message
        return result

    def to_json(self) -> str:
        """Serialized form used for tool-result messages and audit records."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolResult":
        return cls(
            success=bool(data.get("success")),
            data=data.get("data"),
            message=data.get("message"),
        )


class ToolExecutionError(Exception):
    """Unexpected executor failure (as opposed to a ``success=False`` result)."""


class ToolExecutor(ABC):
    """Performs mutations and reads against the note store.

    Expected failures (file not found, name clash, ...) must come back as
    ``ToolResult(success=False)`` so the model can react. Only unexpected
    failures raise.
    """

    @abstractmethod
    async def execute(
        self,
        space_id: str,
        tool_name: str,
        args: dict[str, Any],
        acting_user: str,
    ) -> ToolResult:
        """Execute one tool call."""
        ...


class HttpToolExecutor(ToolExecutor):
    """Executes tools through the note store service's HTTP API."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        """
        Initialize executor.

        Args:
            base_url: Note store base URL. Falls back to settings.
            timeout: Request timeout in seconds. Falls back to settings.
        """
        self._base_url = (base_url or settings.note_store_url).rstrip("/")
        self._timeout = timeout or settings.note_store_timeout_seconds

    async def execute(
        self,
        space_id: str,
        tool_name: str,
        args: dict[str, Any],
        acting_user: str,
    ) -> ToolResult:
        url = f"{self._base_url}/spaces/{space_id}/tools/{tool_name}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    url, json={"args": args, "actingUser": acting_user}
                )
        except httpx.RequestError as e:
            raise ToolExecutionError(f"Note store unreachable for {tool_name}: {e}") from e

        if response.status_code >= 500:
            raise ToolExecutionError(
                f"Note store error for {tool_name}: {response.status_code} - {response.text[:300]}"
            )

        try:
            body = response.json()
        except json.JSONDecodeError as e:
            raise ToolExecutionError(f"Note store returned invalid JSON for {tool_name}") from e

        if not isinstance(body, dict):
            raise ToolExecutionError(f"Note store returned unexpected body for {tool_name}")

        if response.status_code >= 400 and "success" not in body:
            return ToolResult(
                success=False,
                message=body.get("error") or body.get("message") or f"HTTP {response.status_code}",
            )
        return ToolResult.from_dict(body)


_tool_executor: ToolExecutor | None = None


def get_tool_executor() -> ToolExecutor:
    """Get singleton tool executor."""
    global _tool_executor
    if _tool_executor is None:
        _tool_executor = HttpToolExecutor()
    return _tool_executor
