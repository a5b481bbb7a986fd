"""
Ask-the-user gate.

The agent loop parks on a single-resolution future while a question is
out with the user. The future is settled by whichever side gets there
first: ``submit_answer`` from the HTTP layer, or the timeout timer. Both
sides first remove the registry entry under a lock, so the loser finds
nothing and becomes a no-op.
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import redis.asyncio as redis

from notehub.config import settings
from notehub.constants import ASK_USER_KEY_PREFIX, USER_RESPONSE_TIMEOUT_REASON
from notehub.services.events import EventPublisher, publish_ask_user

logger = logging.getLogger(__name__)


class AskUserTimeoutError(Exception):
    """No answer arrived before the question expired."""

    def __init__(self, request_id: str, timeout_seconds: float):
        super().__init__(
            f"{USER_RESPONSE_TIMEOUT_REASON}: no answer for request {request_id} "
            f"within {timeout_seconds:g}s"
        )
        self.request_id = request_id
        self.timeout_seconds = timeout_seconds


class QuestionAlreadyPendingError(Exception):
    """A second question was opened for a request that is still waiting."""

    def __init__(self, request_id: str):
        super().__init__(f"A question is already pending for request {request_id}")
        self.request_id = request_id


@dataclass
class PendingQuestion:
    """Server-side record of a question awaiting an answer."""

    request_id: str
    question: str
    options: list[str]
    timeout_seconds: float
    future: asyncio.Future[str]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    timer: asyncio.TimerHandle | None = None

    @property
    def timeout_ms(self) -> int:
        return int(self.timeout_seconds * 1000)

    def to_payload(self) -> dict[str, Any]:
        """Payload sent to the client and mirrored for polling."""
        return {
            "question": self.question,
            "options": list(self.options),
            "timeoutMs": self.timeout_ms,
            "askedAt": self.created_at.isoformat(),
        }


def _settle(entry: PendingQuestion, answer: str | None = None, error: Exception | None = None) -> None:
    """Settle the entry's future on its own loop, from any thread."""

    def _apply() -> None:
        if entry.timer is not None:
            entry.timer.cancel()
        if entry.future.done():
            return
        if error is not None:
            entry.future.set_exception(error)
        else:
            entry.future.set_result(answer or "")

    loop = entry.future.get_loop()
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        _apply()
    else:
        loop.call_soon_threadsafe(_apply)


class PendingQuestionRegistry:
    """Request id -> pending question, safe for concurrent access."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingQuestion] = {}
        self._lock = threading.Lock()

    def create(
        self,
        request_id: str,
        question: str,
        options: list[str],
        timeout_seconds: float,
    ) -> PendingQuestion:
        """
        Open a question and arm its timeout.

        Raises:
            QuestionAlreadyPendingError: If the request already has one
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            if request_id in self._pending:
                raise QuestionAlreadyPendingError(request_id)
            entry = PendingQuestion(
                request_id=request_id,
                question=question,
                options=list(options),
                timeout_seconds=timeout_seconds,
                future=loop.create_future(),
            )
            entry.timer = loop.call_later(timeout_seconds, self._expire, entry)
            self._pending[request_id] = entry
        logger.info(f"Question opened for request {request_id} (timeout {timeout_seconds:g}s)")
        return entry

    def _take(self, request_id: str, expected: PendingQuestion | None = None) -> PendingQuestion | None:
        """Atomically remove and return the entry; None if already gone."""
        with self._lock:
            current = self._pending.get(request_id)
            if current is None or (expected is not None and current is not expected):
                return None
            del self._pending[request_id]
            return current

    def resolve(self, request_id: str, answer: str) -> bool:
        """Deliver an answer. False when nothing is pending (too late)."""
        entry = self._take(request_id)
        if entry is None:
            logger.info(f"Answer for request {request_id} arrived with no pending question")
            return False
        _settle(entry, answer=answer)
        logger.info(f"Question answered for request {request_id}")
        return True

    def reject(self, request_id: str, error: Exception) -> bool:
        """Fail the pending question with ``error``. False when nothing is pending."""
        entry = self._take(request_id)
        if entry is None:
            return False
        _settle(entry, error=error)
        return True

    def discard(self, request_id: str) -> bool:
        """Drop the entry without settling it as answered (loop abort)."""
        entry = self._take(request_id)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        if not entry.future.done():
            entry.future.cancel()
        return True

    def _expire(self, entry: PendingQuestion) -> None:
        """Timer callback; loses silently if an answer got there first."""
        if self._take(entry.request_id, expected=entry) is None:
            return
        logger.warning(f"Question for request {entry.request_id} timed out")
        if not entry.future.done():
            entry.future.set_exception(
                AskUserTimeoutError(entry.request_id, entry.timeout_seconds)
            )

    def get(self, request_id: str) -> PendingQuestion | None:
        with self._lock:
            return self._pending.get(request_id)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


class QuestionMirror:
    """Redis copy of pending questions so status polling can show them."""

    def __init__(self, redis_url: str | None = None):
        """
        Initialize mirror.

        Args:
            redis_url: Redis connection URL. Falls back to settings.
        """
        self._redis_url = redis_url or settings.notehub_redis_url
        self._client: redis.Redis | None = None

    async def _get_client(self) -> redis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    def _key(self, request_id: str) -> str:
        return f"{ASK_USER_KEY_PREFIX}{request_id}"

    async def save(self, request_id: str, payload: dict[str, Any], ttl_seconds: float) -> None:
        try:
            client = await self._get_client()
            await client.setex(self._key(request_id), max(int(ttl_seconds), 1), json.dumps(payload))
        except Exception as e:
            logger.warning(f"Failed to mirror question for request {request_id}: {e}")

    async def load(self, request_id: str) -> dict[str, Any] | None:
        try:
            client = await self._get_client()
            data = await client.get(self._key(request_id))
        except Exception as e:
            logger.warning(f"Failed to read mirrored question for request {request_id}: {e}")
            return None
        if not data:
            return None
        try:
            return json.loads(data)
        except json.JSONDecodeError:
            return None

    async def clear(self, request_id: str) -> None:
        try:
            client = await self._get_client()
            await client.delete(self._key(request_id))
        except Exception as e:
            logger.warning(f"Failed to clear mirrored question for request {request_id}: {e}")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.close()
            self._client = None


class GateState(str, Enum):
    NONE = "NONE"
    AWAITING_ANSWER = "AWAITING_ANSWER"
    ANSWERED = "ANSWERED"
    TIMED_OUT = "TIMED_OUT"


class AskUserGate:
    """Suspends one request's loop until the user answers or time runs out."""

    def __init__(
        self,
        request_id: str,
        registry: "PendingQuestionRegistry | None" = None,
        publisher: EventPublisher | None = None,
        mirror: QuestionMirror | None = None,
        timeout_seconds: float | None = None,
    ):
        self.request_id = request_id
        self.state = GateState.NONE
        self._registry = registry or get_question_registry()
        self._publisher = publisher
        self._mirror = mirror or get_question_mirror()
        self._timeout_seconds = (
            settings.ask_user_timeout_seconds if timeout_seconds is None else timeout_seconds
        )

    async def ask(self, question: str, options: list[str]) -> str:
        """
        Publish the question and wait for the answer.

        Returns:
            The answer text

        Raises:
            AskUserTimeoutError: If the timer fires first
        """
        entry = self._registry.create(self.request_id, question, options, self._timeout_seconds)
        self.state = GateState.AWAITING_ANSWER
        payload = entry.to_payload()
        try:
            await self._mirror.save(self.request_id, payload, self._timeout_seconds + 5)
            await publish_ask_user(
                self.request_id,
                question=question,
                options=entry.options,
                timeout_ms=entry.timeout_ms,
                publisher=self._publisher,
            )
            try:
                answer = await entry.future
            except AskUserTimeoutError:
                self.state = GateState.TIMED_OUT
                raise
            self.state = GateState.ANSWERED
            return answer
        finally:
            self._registry.discard(self.request_id)
            await self._mirror.clear(self.request_id)


_question_registry: PendingQuestionRegistry | None = None
_question_mirror: QuestionMirror | None = None


def get_question_registry() -> PendingQuestionRegistry:
    """Get the process-wide pending question registry."""
    global _question_registry
    if _question_registry is None:
        _question_registry = PendingQuestionRegistry()
    return _question_registry


def get_question_mirror() -> QuestionMirror:
    """Get the singleton Redis mirror."""
    global _question_mirror
    if _question_mirror is None:
        _question_mirror = QuestionMirror()
    return _question_mirror


def submit_answer(request_id: str, answer: str) -> bool:
    """Deliver an answer; False means too late (answered, timed out, or never asked)."""
    return get_question_registry().resolve(request_id, answer)
