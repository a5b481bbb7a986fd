"""Job processing: runs the loops for one request and records the outcome."""

import asyncio
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notehub.config import settings
from notehub.constants import USER_RESPONSE_TIMEOUT_REASON, RequestStatus, TaskKind
from notehub.services.events import EventPublisher, publish_complete
from notehub.services.model_selector import ModelSelector
from notehub.services.request_store import (
    DatabaseRequestLogger,
    RequestLogger,
    mark_finished,
    mark_processing,
)
from notehub.services.tools.base import ToolExecutor

from .models import AgentConfig, AgentJob, AgentResult, LoopStatus, TaskExtractionResult
from .runner import AgentLoop
from .todo_runner import TaskExtractionLoop

logger = logging.getLogger(__name__)


def durable_outcome(result: AgentResult) -> tuple[RequestStatus, dict[str, Any] | None, str | None]:
    """
    Map a loop result to the request row's terminal state.

    Returns:
        Tuple of (status, result JSON, error text)
    """
    if result.rolled_back:
        return RequestStatus.CANCELLED, None, result.error or USER_RESPONSE_TIMEOUT_REASON
    if result.status in (LoopStatus.COMPLETED, LoopStatus.PARTIAL):
        return RequestStatus.COMPLETED, result.to_dict(), None
    return RequestStatus.FAILED, result.to_dict(), result.error


def should_extract_tasks(job: AgentJob) -> bool:
    return (
        settings.task_extraction_enabled
        and job.kind == TaskKind.INPUT
        and job.personal_space
    )


class JobProcessor:
    """Queue handler: PROCESSING -> loops -> COMPLETED/FAILED/CANCELLED."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        selector: ModelSelector | None = None,
        executor: ToolExecutor | None = None,
        publisher: EventPublisher | None = None,
        config: AgentConfig | None = None,
        request_logger: RequestLogger | None = None,
    ):
        if session_factory is None:
            from notehub.db import get_session_factory

            session_factory = get_session_factory()
        self._session_factory = session_factory
        self._selector = selector
        self._executor = executor
        self._publisher = publisher
        self._config = config
        self._request_logger = request_logger or DatabaseRequestLogger(session_factory)

    async def __call__(self, job: AgentJob) -> AgentResult:
        return await self.process(job)

    async def process(self, job: AgentJob) -> AgentResult:
        async with self._session_factory() as db:
            await mark_processing(db, job.request_id)
            await db.commit()

        result = await self.run_loops(job)

        status, payload, error = durable_outcome(result)
        async with self._session_factory() as db:
            await mark_finished(db, job.request_id, status, result=payload, error=error)
            await db.commit()

        if result.success:
            await publish_complete(
                job.request_id, True, result.to_dict(), publisher=self._publisher
            )
        return result

    async def run_loops(self, job: AgentJob) -> AgentResult:
        """Run the primary loop, plus task extraction in parallel when enabled."""
        agent_loop = AgentLoop(
            job,
            selector=self._selector,
            executor=self._executor,
            request_logger=self._request_logger,
            publisher=self._publisher,
            config=self._config,
        )
        if not should_extract_tasks(job):
            return await agent_loop.run()

        todo_loop = TaskExtractionLoop(
            job, selector=self._selector, executor=self._executor, config=self._config
        )
        result, _ = await asyncio.gather(agent_loop.run(), self._extract_tasks(todo_loop))
        return result

    async def _extract_tasks(self, todo_loop: TaskExtractionLoop) -> TaskExtractionResult | None:
        request_id = todo_loop.job.request_id
        try:
            outcome = await todo_loop.run()
        except Exception:
            logger.exception(f"Task extraction for request {request_id} crashed")
            return None
        logger.info(
            f"Task extraction for request {request_id}: {outcome.status.value}, "
            f"{len(outcome.todos_touched)} todo(s), {outcome.iterations} iteration(s)"
        )
        return outcome
