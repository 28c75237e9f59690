"""
Event Routes Tests

Tests for:
- POST /api/events/emit
- GET /api/events/stream and the EventStreamBridge behind it
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from vauban_relay.api.routes.events import EventStreamBridge, format_sse, stream_events
from vauban_relay.models.events import EventName

# =============================================================================
# POST /api/events/emit
# =============================================================================


class TestEmitEvent:
    """Tests for POST /api/events/emit."""

    def test_emit(self, client, recorded_events):
        response = client.post(
            "/api/events/emit",
            json={"type": "user:banned", "data": {"address": "0xabc"}},
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert recorded_events == [("user:banned", {"address": "0xabc"})]

    @pytest.mark.parametrize(
        "body",
        [
            {"data": {"subjectId": "1"}},
            {"type": "subject:added"},
            {"type": "", "data": {"subjectId": "1"}},
            {"type": "subject:added", "data": {}},
        ],
    )
    def test_missing_type_or_data(self, client, recorded_events, body):
        response = client.post("/api/events/emit", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == 'Missing "type" or "data" in request body'
        assert recorded_events == []

    def test_unknown_type(self, client, recorded_events):
        response = client.post("/api/events/emit", json={"type": "subject:deleted", "data": {"x": 1}})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid event type: subject:deleted"
        assert recorded_events == []

    def test_data_must_be_object(self, client):
        response = client.post("/api/events/emit", json={"type": "subject:added", "data": ["1"]})

        assert response.status_code == 400
        assert response.json()["error"] == "Event data must be an object"

    def test_missing_payload_keys(self, client, recorded_events):
        response = client.post(
            "/api/events/emit",
            json={"type": "subject:scheduled", "data": {"subjectId": "1"}},
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "Invalid event payload",
            "details": {"missing": ["scheduledAt"]},
        }
        assert recorded_events == []

    def test_invalid_json(self, client):
        response = client.post(
            "/api/events/emit",
            content=b"[",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"


# =============================================================================
# Stream Bridge
# =============================================================================


def _connected():
    state = {"disconnected": False}

    async def is_disconnected() -> bool:
        return state["disconnected"]

    return state, is_disconnected


class TestFormatSse:
    def test_frame(self):
        assert format_sse("subject:added", {"subjectId": "1"}) == (
            'event: subject:added\ndata: {"subjectId": "1"}\n\n'
        )


class TestEventStreamBridge:
    """Tests for EventStreamBridge."""

    async def test_forwards_events(self, event_bus):
        _, is_disconnected = _connected()
        bridge = EventStreamBridge(event_bus, heartbeat_seconds=5)
        frames = bridge.frames(is_disconnected)

        assert await frames.__anext__() == ": connected\n\n"
        assert event_bus.listener_count() == len(EventName)

        event_bus.emit(EventName.SUBJECT_ADDED, {"subjectId": "1", "author": "0xabc"})

        frame = await asyncio.wait_for(frames.__anext__(), timeout=1)
        assert frame == format_sse("subject:added", {"subjectId": "1", "author": "0xabc"})
        await frames.aclose()

    async def test_heartbeat(self, event_bus):
        _, is_disconnected = _connected()
        frames = EventStreamBridge(event_bus, heartbeat_seconds=0.01).frames(is_disconnected)

        await frames.__anext__()

        assert await asyncio.wait_for(frames.__anext__(), timeout=1) == ": heartbeat\n\n"
        await frames.aclose()

    async def test_unsubscribes_on_close(self, event_bus):
        _, is_disconnected = _connected()
        frames = EventStreamBridge(event_bus).frames(is_disconnected)
        await frames.__anext__()

        await frames.aclose()

        assert event_bus.listener_count() == 0

    async def test_unsubscribes_on_disconnect(self, event_bus):
        state, is_disconnected = _connected()
        frames = EventStreamBridge(event_bus).frames(is_disconnected)
        await frames.__anext__()

        state["disconnected"] = True

        with pytest.raises(StopAsyncIteration):
            await frames.__anext__()
        assert event_bus.listener_count() == 0

    async def test_full_queue_drops_events(self, event_bus):
        _, is_disconnected = _connected()
        bridge = EventStreamBridge(event_bus, heartbeat_seconds=0.01, max_queue_size=1)
        frames = bridge.frames(is_disconnected)
        await frames.__anext__()

        event_bus.emit(EventName.USER_BANNED, {"address": "0x1"})
        event_bus.emit(EventName.USER_BANNED, {"address": "0x2"})

        first = await asyncio.wait_for(frames.__anext__(), timeout=1)
        second = await asyncio.wait_for(frames.__anext__(), timeout=1)
        await frames.aclose()

        assert '"0x1"' in first
        assert second == ": heartbeat\n\n"

    async def test_other_subscribers_unaffected(self, event_bus, recorded_events):
        _, is_disconnected = _connected()
        frames = EventStreamBridge(event_bus).frames(is_disconnected)
        await frames.__anext__()
        await frames.aclose()

        event_bus.emit(EventName.SUBJECT_ADDED, {"subjectId": "1"})

        assert recorded_events == [("subject:added", {"subjectId": "1"})]


# =============================================================================
# GET /api/events/stream
# =============================================================================


class TestStreamRoute:
    async def test_stream_response(self, event_bus, settings):
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=True)

        response = await stream_events(request, event_bus, settings)

        assert response.media_type == "text/event-stream"
        assert response.headers["Cache-Control"] == "no-cache, no-transform"
        chunks = [chunk async for chunk in response.body_iterator]
        assert chunks == [": connected\n\n"]
        assert event_bus.listener_count() == 0
