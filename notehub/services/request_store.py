"""
Durable request status and the per-iteration audit log.

Request lifecycle writes (create, mark_processing, mark_finished, ...)
take an AsyncSession and leave the commit to the caller. The
DatabaseRequestLogger used by the agent loop opens its own sessions and
is best-effort: a failing write is logged, never raised.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notehub.constants import RequestStatus, TaskKind
from notehub.models import Request, RequestLog

logger = logging.getLogger(__name__)


class RequestNotFoundError(Exception):
    """No request row with the given id."""

    def __init__(self, request_id: str):
        super().__init__(f"Request not found: {request_id}")
        self.request_id = request_id


@dataclass
class AuditEntry:
    """One audit record: a tool call made during a loop iteration."""

    request_id: str
    iteration: int
    tool: str
    params: dict[str, Any]
    result: str
    success: bool
    duration_ms: int = 0

    def to_model(self) -> RequestLog:
        return RequestLog(
            request_id=self.request_id,
            iteration=self.iteration,
            tool=self.tool,
            params=json.dumps(self.params, ensure_ascii=False, default=str),
            result=self.result,
            success=self.success,
            duration_ms=self.duration_ms,
        )


class RequestLogger(ABC):
    """Sink for audit records and progress counters produced by the loop."""

    @abstractmethod
    async def log(self, entry: AuditEntry) -> None:
        """Persist one audit record."""
        ...

    @abstractmethod
    async def update_progress(self, request_id: str, iterations: int, tokens_used: int) -> None:
        """Persist the iteration and token counters."""
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def create_request(
    db: AsyncSession,
    space_id: str,
    user_id: str,
    kind: TaskKind,
    input_text: str,
    request_id: str | None = None,
) -> Request:
    """
    Create a PENDING request row.

    Args:
        db: Database session
        space_id: Target note space
        user_id: Requesting user's login id
        kind: Task kind (INPUT, SEARCH, REFACTOR)
        input_text: The user's raw input
        request_id: Optional explicit id (UUID generated otherwise)

    Returns:
        The new Request (flushed, not committed)
    """
    request = Request(
        id=request_id or str(uuid.uuid4()),
        space_id=space_id,
        user_id=user_id,
        type=TaskKind(kind).value,
        status=RequestStatus.PENDING.value,
        input=input_text,
        iterations=0,
        tokens_used=0,
    )
    db.add(request)
    await db.flush()
    logger.info(f"Created request {request.id} ({request.type}) in space {space_id}")
    return request


async def get_request(db: AsyncSession, request_id: str) -> Request:
    """
    Load a request.

    Raises:
        RequestNotFoundError: If no such request exists
    """
    result = await db.execute(select(Request).where(Request.id == request_id))
    request = result.scalar_one_or_none()
    if request is None:
        raise RequestNotFoundError(request_id)
    return request


async def mark_processing(db: AsyncSession, request_id: str) -> None:
    request = await get_request(db, request_id)
    request.status = RequestStatus.PROCESSING.value
    request.started_at = _now()


async def mark_finished(
    db: AsyncSession,
    request_id: str,
    status: RequestStatus,
    result: dict[str, Any] | None = None,
    error: str | None = None,
) -> None:
    """Record a terminal outcome (COMPLETED, FAILED or CANCELLED)."""
    request = await get_request(db, request_id)
    request.status = RequestStatus(status).value
    request.result = result
    request.error = error
    request.completed_at = _now()
    logger.info(f"Request {request_id} finished with status {request.status}")


async def mark_cancelled(db: AsyncSession, request_id: str, reason: str) -> None:
    await mark_finished(db, request_id, RequestStatus.CANCELLED, error=reason)


async def update_progress(
    db: AsyncSession, request_id: str, iterations: int, tokens_used: int
) -> None:
    await db.execute(
        update(Request)
        .where(Request.id == request_id)
        .values(iterations=iterations, tokens_used=tokens_used)
    )


async def list_logs(db: AsyncSession, request_id: str, limit: int = 20) -> list[RequestLog]:
    """Most recent audit records first."""
    result = await db.execute(
        select(RequestLog)
        .where(RequestLog.request_id == request_id)
        .order_by(RequestLog.iteration.desc(), RequestLog.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


class DatabaseRequestLogger(RequestLogger):
    """RequestLogger over the request_logs and requests tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from notehub.db import get_session_factory

            session_factory = get_session_factory()
        self._session_factory = session_factory

    async def log(self, entry: AuditEntry) -> None:
        try:
            async with self._session_factory() as db:
                db.add(entry.to_model())
                await db.commit()
        except Exception as e:
            logger.warning(
                f"Failed to write audit log for request {entry.request_id} "
                f"(iteration {entry.iteration}, {entry.tool}): {e}"
            )

    async def update_progress(self, request_id: str, iterations: int, tokens_used: int) -> None:
        try:
            async with self._session_factory() as db:
                await update_progress(db, request_id, iterations, tokens_used)
                await db.commit()
        except Exception as e:
            logger.warning(f"Failed to update progress for request {request_id}: {e}")
