"""
Event publishing service for request notifications.

Broadcasts events to WebSocket subscribers and in-process handlers.
Event types: request:progress, request:ask_user, request:failed, request:complete.
Delivery is best-effort; publishing never raises into the agent loop.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class RequestEventType(str, Enum):
    """Types of request events that can be published."""

    PROGRESS = "request:progress"
    ASK_USER = "request:ask_user"
    FAILED = "request:failed"
    COMPLETE = "request:complete"


@dataclass
class RequestEvent:
    """
    Event payload for request notifications.

    All events include:
    - event_type: One of RequestEventType values
    - request_id: Request identifier
    - timestamp: ISO 8601 UTC timestamp
    - data: Event-specific payload

    Event-specific data fields:

    PROGRESS:
        - iteration: int - Current loop iteration
        - progress: float - Percentage of the iteration ceiling (capped at 99)
        - message: str - Human-readable status
        - tool: str | None - Tool being executed

    ASK_USER:
        - question: str
        - options: list[str]
        - timeoutMs: int

    FAILED:
        - error: str - Failure reason

    COMPLETE:
        - success: bool
        - result: dict - Serialized AgentResult
    """

    event_type: RequestEventType
    request_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert event to JSON-serializable dict."""
        return {
            "event_type": self.event_type.value,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


@dataclass
class WebSocketSubscription:
    """A WebSocket client subscribed to request events."""

    websocket: WebSocket
    request_ids: set[str] = field(default_factory=set)
    event_types: set[RequestEventType] = field(default_factory=set)
    subscribed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def matches(self, event: RequestEvent) -> bool:
        """Check if this subscription should receive the event."""
        if self.request_ids and event.request_id not in self.request_ids:
            return False
        if self.event_types and event.event_type not in self.event_types:
            return False
        return True


EventHandler = Callable[[RequestEvent], None]


@dataclass
class EventPublisher:
    """
    Fans request events out to WebSocket subscribers and in-process handlers.

    A socket that fails to send is dropped. A handler that raises is logged.
    Neither failure reaches the caller of publish.
    """

    _subscriptions: dict[str, WebSocketSubscription] = field(default_factory=dict)
    _handlers: list[EventHandler] = field(default_factory=list)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def add_handler(self, handler: EventHandler) -> None:
        """Call ``handler`` with every published event."""
        self._handlers.append(handler)

    async def subscribe(
        self,
        websocket: WebSocket,
        request_ids: set[str] | None = None,
        event_types: set[RequestEventType] | None = None,
    ) -> str:
        """Register a socket; empty filters match everything. Returns the subscription id."""
        subscription_id = str(uuid.uuid4())
        async with self._lock:
            self._subscriptions[subscription_id] = WebSocketSubscription(
                websocket=websocket,
                request_ids=request_ids or set(),
                event_types=event_types or set(),
            )
        logger.info(
            f"Events subscription {subscription_id} "
            f"(requests={sorted(request_ids) if request_ids else 'all'}, "
            f"types={sorted(t.value for t in event_types) if event_types else 'all'})"
        )
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> bool:
        async with self._lock:
            removed = self._subscriptions.pop(subscription_id, None)
        if removed is not None:
            logger.info(f"Events subscription {subscription_id} removed")
        return removed is not None

    async def update_subscription(
        self,
        subscription_id: str,
        request_ids: set[str] | None = None,
        event_types: set[RequestEventType] | None = None,
    ) -> bool:
        """Replace the filters that are given; ``None`` leaves a filter as it is."""
        async with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                return False
            if request_ids is not None:
                subscription.request_ids = request_ids
            if event_types is not None:
                subscription.event_types = event_types
        return True

    async def publish(self, event: RequestEvent) -> int:
        """Deliver an event; returns how many sockets received it."""
        async with self._lock:
            targets = [(sid, sub) for sid, sub in self._subscriptions.items() if sub.matches(event)]

        payload = event.to_dict()
        delivered = 0
        for subscription_id, subscription in targets:
            if await self._send(subscription_id, subscription, payload):
                delivered += 1
            else:
                await self.unsubscribe(subscription_id)

        self._notify_handlers(event)
        logger.debug(
            f"{event.event_type.value} for {event.request_id}: "
            f"{delivered} socket(s), {len(self._handlers)} handler(s)"
        )
        return delivered

    @staticmethod
    async def _send(
        subscription_id: str, subscription: WebSocketSubscription, payload: dict[str, Any]
    ) -> bool:
        try:
            await subscription.websocket.send_json(payload)
        except Exception as e:
            logger.warning(f"Dropping events subscription {subscription_id}: {e}")
            return False
        return True

    def _notify_handlers(self, event: RequestEvent) -> None:
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler error: {e}")


_event_publisher: EventPublisher | None = None


def get_event_publisher() -> EventPublisher:
    """Get the global event publisher instance."""
    global _event_publisher
    if _event_publisher is None:
        _event_publisher = EventPublisher()
    return _event_publisher


async def publish_progress(
    request_id: str,
    iteration: int,
    progress: float,
    message: str,
    tool: str | None = None,
    publisher: EventPublisher | None = None,
) -> None:
    """Helper to publish progress event."""
    publisher = publisher or get_event_publisher()
    data: dict[str, Any] = {"iteration": iteration, "progress": progress, "message": message}
    if tool:
        data["tool"] = tool
    await publisher.publish(
        RequestEvent(event_type=RequestEventType.PROGRESS, request_id=request_id, data=data)
    )


async def publish_ask_user(
    request_id: str,
    question: str,
    options: list[str],
    timeout_ms: int,
    publisher: EventPublisher | None = None,
) -> None:
    """Helper to publish ask_user event."""
    publisher = publisher or get_event_publisher()
    await publisher.publish(
        RequestEvent(
            event_type=RequestEventType.ASK_USER,
            request_id=request_id,
            data={"question": question, "options": options, "timeoutMs": timeout_ms},
        )
    )


async def publish_failed(
    request_id: str,
    error: str,
    publisher: EventPublisher | None = None,
) -> None:
    """Helper to publish failure event."""
    publisher = publisher or get_event_publisher()
    await publisher.publish(
        RequestEvent(
            event_type=RequestEventType.FAILED,
            request_id=request_id,
            data={"error": error},
        )
    )


async def publish_complete(
    request_id: str,
    success: bool,
    result: dict[str, Any] | None = None,
    publisher: EventPublisher | None = None,
) -> None:
    """Helper to publish completion event."""
    publisher = publisher or get_event_publisher()
    await publisher.publish(
        RequestEvent(
            event_type=RequestEventType.COMPLETE,
            request_id=request_id,
            data={"success": success, "result": result or {}},
        )
    )
