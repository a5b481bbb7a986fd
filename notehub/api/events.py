"""WebSocket API for request event subscriptions.

Protocol on /api/events, one JSON object per message:

- ``{"type": "subscribe", "request_ids": [...], "event_types": [...]}``.
  Both filters are optional; an empty filter matches everything. The
  reply is ``{"type": "subscribed", "subscription_id": ...}``, after which
  events are pushed as ``{"event_type", "request_id", "timestamp", "data"}``.
- ``{"type": "update", ...}`` replaces whichever filters are present.
- ``{"type": "unsubscribe"}`` drops the subscription and closes the socket.

Anything else gets ``{"type": "error", "message": ...}`` and the socket
stays open.
"""

import logging
from typing import Literal

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from notehub.services.events import EventPublisher, RequestEventType, get_event_publisher

logger = logging.getLogger(__name__)

router = APIRouter()


class SubscribeRequest(BaseModel):
    """Client message on the events socket."""

    type: Literal["subscribe", "unsubscribe", "update"]
    request_ids: list[str] | None = None
    event_types: list[str] | None = None


class SubscribeResponse(BaseModel):
    """Server reply to a client message."""

    type: Literal["subscribed", "updated", "unsubscribed", "error"]
    subscription_id: str | None = Field(default=None)
    message: str | None = Field(default=None)


def _parse_event_types(values: list[str]) -> tuple[set[RequestEventType], list[str]]:
    """Split event type strings into known types and rejects."""
    known: set[RequestEventType] = set()
    invalid: list[str] = []
    for value in values:
        try:
            known.add(RequestEventType(value))
        except ValueError:
            invalid.append(value)
    return known, invalid


def _describe(error: ValidationError) -> str:
    if any(item["type"] == "json_invalid" for item in error.errors()):
        return "Invalid JSON"
    first = error.errors()[0]
    field_name = ".".join(str(part) for part in first["loc"]) or "message"
    return f"Invalid message ({field_name}): {first['msg']}"


class _EventsConnection:
    """Subscription state for one socket."""

    def __init__(self, websocket: WebSocket, publisher: EventPublisher):
        self.websocket = websocket
        self.publisher = publisher
        self.subscription_id: str | None = None

    async def reply(self, kind: str, message: str | None = None) -> None:
        response = SubscribeResponse(
            type=kind,
            subscription_id=None if kind == "error" else self.subscription_id,
            message=message,
        )
        await self.websocket.send_json(response.model_dump())

    async def subscribe(self, request: SubscribeRequest) -> None:
        if self.subscription_id:
            await self.reply("error", "Already subscribed. Use 'update' to change filters.")
            return
        event_types, invalid = _parse_event_types(request.event_types or [])
        if invalid:
            await self.reply("error", f"Invalid event type: {', '.join(invalid)}")
            return
        self.subscription_id = await self.publisher.subscribe(
            websocket=self.websocket,
            request_ids=set(request.request_ids or []) or None,
            event_types=event_types or None,
        )
        await self.reply("subscribed")

    async def update(self, request: SubscribeRequest) -> None:
        if not self.subscription_id:
            await self.reply("error", "Not subscribed. Send 'subscribe' first.")
            return
        event_types: set[RequestEventType] | None = None
        if request.event_types is not None:
            event_types, invalid = _parse_event_types(request.event_types)
            if invalid:
                logger.warning(f"Ignoring invalid event types in update: {invalid}")
        await self.publisher.update_subscription(
            self.subscription_id,
            request_ids=set(request.request_ids) if request.request_ids is not None else None,
            event_types=event_types,
        )
        await self.reply("updated")

    async def release(self) -> None:
        if self.subscription_id:
            await self.publisher.unsubscribe(self.subscription_id)
            self.subscription_id = None


@router.websocket("/events")
async def events_websocket(websocket: WebSocket) -> None:
    """Push request events to a client that picks them with filters."""
    await websocket.accept()
    connection = _EventsConnection(websocket, get_event_publisher())

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                request = SubscribeRequest.model_validate_json(raw)
            except ValidationError as e:
                await connection.reply("error", _describe(e))
                continue

            if request.type == "subscribe":
                await connection.subscribe(request)
            elif request.type == "update":
                await connection.update(request)
            else:
                await connection.release()
                await connection.reply("unsubscribed", "Subscription removed. Closing connection.")
                await websocket.close(code=1000)
                return
    except WebSocketDisconnect:
        logger.info(f"Events socket closed by client (sub={connection.subscription_id})")
    finally:
        await connection.release()
