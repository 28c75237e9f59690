"""
Event API Routes

Lets trusted callers emit domain events, and streams every event on the bus
to browsers as Server-Sent Events so read-path caches can be invalidated.
"""

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from functools import partial
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from ...exceptions import RequestError
from ...kernel.event_system import EventBus
from ...models.events import DomainEvent, EventName
from ..dependencies import EventBusDep, SettingsDep

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/events", tags=["Events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


class EventStreamBridge:
    """
    Forwards bus events to one SSE connection.

    Handlers are registered for every event name while the stream is open
    and removed when it ends. Events arriving while the connection's queue
    is full are dropped.
    """

    def __init__(
        self,
        event_bus: EventBus,
        heartbeat_seconds: float = 30.0,
        max_queue_size: int = 100,
    ):
        self._bus = event_bus
        self._heartbeat = heartbeat_seconds
        self._queue: asyncio.Queue[tuple[EventName, dict[str, Any]]] = asyncio.Queue(max_queue_size)
        self._handlers: list[tuple[EventName, Callable[[dict[str, Any]], None]]] = []

    def open(self) -> None:
        for name in EventName:
            handler = partial(self._enqueue, name)
            self._bus.on(name, handler)
            self._handlers.append((name, handler))

    def close(self) -> None:
        for name, handler in self._handlers:
            self._bus.off(name, handler)
        self._handlers.clear()

    def _enqueue(self, name: EventName, payload: dict[str, Any]) -> None:
        try:
            self._queue.put_nowait((name, payload))
        except asyncio.QueueFull:
            logger.warning("event_stream_queue_full", event_name=name.value)

    async def frames(self, is_disconnected: Callable[[], Awaitable[bool]]) -> AsyncIterator[str]:
        self.open()
        try:
            yield ": connected\n\n"
            while not await is_disconnected():
                try:
                    name, payload = await asyncio.wait_for(self._queue.get(), timeout=self._heartbeat)
                except TimeoutError:
                    yield ": heartbeat\n\n"
                    continue
                yield format_sse(name.value, payload)
        finally:
            self.close()


@router.post("/emit")
async def emit_event(request: Request, event_bus: EventBusDep) -> dict[str, Any]:
    """
    Emit a domain event on the in-process bus.

    Body: ``{"type": <event name>, "data": {...}}``
    """
    try:
        body = await request.json()
    except ValueError as e:
        raise RequestError("Invalid request body") from e

    if not isinstance(body, dict) or not body.get("type") or not body.get("data"):
        raise RequestError('Missing "type" or "data" in request body')

    try:
        name = EventName(body["type"])
    except ValueError as e:
        raise RequestError(f"Invalid event type: {body['type']}") from e

    if not isinstance(body["data"], dict):
        raise RequestError("Event data must be an object")

    event = DomainEvent(name=name, payload=body["data"])
    missing = event.missing_keys()
    if missing:
        raise RequestError("Invalid event payload", details={"missing": missing})

    delivered = event_bus.emit(event.name, event.payload)
    logger.info("event_emitted_via_api", event_name=name.value, delivered=delivered)
    return {"ok": True}


@router.get("/stream")
async def stream_events(
    request: Request,
    event_bus: EventBusDep,
    settings: SettingsDep,
) -> StreamingResponse:
    """Server-Sent Events stream of every domain event."""
    bridge = EventStreamBridge(event_bus, heartbeat_seconds=settings.event_stream_heartbeat_seconds)
    return StreamingResponse(
        bridge.frames(request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
