"""
Bounded worker pool for agent jobs.

Accepted requests wait in a FIFO queue until one of N workers picks them
up. A request can be cancelled only while it is still waiting; once a
worker has started its loop it runs to a terminal state.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from notehub.config import settings
from notehub.services.agent_runner.models import AgentJob

logger = logging.getLogger(__name__)

JobHandler = Callable[[AgentJob], Awaitable[Any]]


@dataclass
class QueuedJob:
    """A job waiting for a worker."""

    job: AgentJob
    enqueued_at: float
    cancelled: bool = False


@dataclass
class RequestQueueConfig:
    """Configuration for the worker pool."""

    max_workers: int = field(default_factory=lambda: settings.max_concurrent_requests)
    max_queue_size: int = field(default_factory=lambda: settings.max_queue_size)
    retry_after_seconds: float = 30.0


@dataclass
class RequestQueueStats:
    """Statistics for the worker pool."""

    current_size: int = 0
    active: int = 0
    total_queued: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    total_cancelled: int = 0
    total_rejected: int = 0


class QueueFullError(Exception):
    """Raised when the request queue is full."""

    def __init__(self, retry_after: float = 30.0):
        super().__init__("Request queue is full")
        self.retry_after = retry_after


@dataclass
class RequestQueue:
    """
    FIFO queue drained by a fixed number of worker tasks.

    ``handler`` is awaited once per job; exceptions it raises are logged
    and counted, and the worker moves on to the next job.
    """

    handler: JobHandler
    config: RequestQueueConfig = field(default_factory=RequestQueueConfig)
    _queue: asyncio.Queue[QueuedJob] = field(init=False)
    _waiting: dict[str, QueuedJob] = field(default_factory=dict)
    _active: set[str] = field(default_factory=set)
    _workers: list[asyncio.Task[None]] = field(default_factory=list)
    _stats: RequestQueueStats = field(default_factory=RequestQueueStats)
    _running: bool = False

    def __post_init__(self) -> None:
        self._queue = asyncio.Queue(maxsize=self.config.max_queue_size)

    def submit(self, job: AgentJob) -> int:
        """
        Enqueue a job.

        Returns:
            1-based position in the queue

        Raises:
            QueueFullError: If queue is at capacity
        """
        queued = QueuedJob(job=job, enqueued_at=time.time())
        try:
            self._queue.put_nowait(queued)
        except asyncio.QueueFull as err:
            self._stats.total_rejected += 1
            raise QueueFullError(retry_after=self.config.retry_after_seconds) from err

        self._waiting[job.request_id] = queued
        self._stats.total_queued += 1
        position = self._queue.qsize()
        logger.info(f"Request {job.request_id} queued (position {position})")
        return position

    def cancel(self, request_id: str) -> bool:
        """Cancel a job that no worker has picked up yet."""
        queued = self._waiting.pop(request_id, None)
        if queued is None:
            return False
        queued.cancelled = True
        self._stats.total_cancelled += 1
        logger.info(f"Request {request_id} cancelled while queued")
        return True

    def is_queued(self, request_id: str) -> bool:
        return request_id in self._waiting

    def is_active(self, request_id: str) -> bool:
        return request_id in self._active

    async def _worker(self, worker_id: int) -> None:
        while self._running:
            queued = await self._queue.get()
            try:
                if queued.cancelled:
                    continue
                request_id = queued.job.request_id
                self._waiting.pop(request_id, None)
                self._active.add(request_id)
                logger.info(f"Worker {worker_id} picked up request {request_id}")
                try:
                    await self.handler(queued.job)
                    self._stats.total_succeeded += 1
                except Exception:
                    self._stats.total_failed += 1
                    logger.exception(f"Worker {worker_id}: request {request_id} failed")
                finally:
                    self._active.discard(request_id)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Start the worker tasks."""
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"notehub-worker-{i}")
            for i in range(self.config.max_workers)
        ]
        logger.info(f"Request queue started with {self.config.max_workers} worker(s)")

    async def stop(self) -> None:
        """Stop the worker tasks; jobs in flight are cancelled."""
        self._running = False
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []
        logger.info("Request queue stopped")

    async def join(self) -> None:
        """Wait until every queued job has been handled."""
        await self._queue.join()

    def get_stats(self) -> RequestQueueStats:
        """Get queue statistics."""
        self._stats.current_size = len(self._waiting)
        self._stats.active = len(self._active)
        return self._stats

    def get_queue_size(self) -> int:
        """Number of jobs waiting (cancelled ones excluded)."""
        return len(self._waiting)

    def get_queue_position(self, request_id: str) -> int | None:
        """1-based position among waiting jobs (for UI display)."""
        for position, waiting_id in enumerate(self._waiting, start=1):
            if waiting_id == request_id:
                return position
        return None


# Global singleton
_request_queue: RequestQueue | None = None


def get_request_queue() -> RequestQueue:
    """Get the global request queue instance."""
    if _request_queue is None:
        raise RuntimeError("Request queue not initialized")
    return _request_queue


def init_request_queue(
    handler: JobHandler,
    config: RequestQueueConfig | None = None,
) -> RequestQueue:
    """Initialize and start the global request queue."""
    global _request_queue
    if _request_queue is not None:
        return _request_queue
    _request_queue = RequestQueue(handler=handler, config=config or RequestQueueConfig())
    _request_queue.start()
    return _request_queue


async def shutdown_request_queue() -> None:
    """Shutdown the global request queue."""
    global _request_queue
    if _request_queue is not None:
        await _request_queue.stop()
        _request_queue = None
