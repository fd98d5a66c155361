"""
Live Stream Tests

Tests to verify:
1. Frames published on another thread reach asyncio subscribers
2. A full subscriber buffer drops frames for that subscriber only
3. The SSE generator yields connected / frame / heartbeat events
4. Streaming never drains the polling queue

Run with: pytest tests/test_stream.py -v
"""
import asyncio
import json
import threading

import pytest

from pedalmon.main import create_app
from pedalmon.routes.stream import frame_generator, heartbeat_event
from pedalmon.services.stream_hub import StreamHub

from conftest import START_MS


class FakeRequest:
    """Just enough of starlette's Request for the generator."""

    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


# ============================================
# Test: Stream Hub
# ============================================

class TestStreamHub:
    """Fan-out from the sampling thread to asyncio subscribers."""

    @pytest.mark.asyncio
    async def test_publish_from_thread(self):
        hub = StreamHub()
        sub = hub.subscribe()

        publisher = threading.Thread(target=lambda: [hub.publish(i) for i in range(3)])
        publisher.start()
        publisher.join()

        received = [await sub.get(timeout=1) for _ in range(3)]
        assert received == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_get_times_out_with_none(self):
        hub = StreamHub()
        sub = hub.subscribe()
        assert await sub.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_full_buffer_drops_for_slow_subscriber(self):
        hub = StreamHub(max_frames=2)
        slow = hub.subscribe()
        for i in range(5):
            hub.publish(i)
        await asyncio.sleep(0)

        assert slow.dropped == 3
        assert await slow.get(timeout=1) == 0
        assert await slow.get(timeout=1) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        hub = StreamHub()
        sub = hub.subscribe()
        assert hub.subscriber_count == 1
        hub.unsubscribe(sub)
        assert hub.subscriber_count == 0
        hub.publish("ignored")
        assert await sub.get(timeout=0.01) is None

    def test_publish_without_subscribers(self):
        StreamHub().publish("frame")


# ============================================
# Test: SSE Generator
# ============================================

class TestFrameGenerator:
    """Event sequence produced for one client."""

    @pytest.mark.asyncio
    async def test_connected_then_frame(self, make_bridge):
        bridge = make_bridge()
        request = FakeRequest()
        events = frame_generator(request, bridge, heartbeat_s=1)

        connected = await events.__anext__()
        assert connected["event"] == "connected"
        assert json.loads(connected["data"])["telemetry_sequence"] == 0
        assert bridge.stream_hub.subscriber_count == 1

        bridge.sampler.step(START_MS)
        event = await events.__anext__()

        assert event["event"] == "frame"
        assert event["id"] == "1"
        envelope = json.loads(event["data"])
        assert envelope["schemaVersion"] == 1
        assert envelope["bridgeInfo"]["pendingFrameCount"] == 1
        assert envelope["frames"][0]["telemetry_sequence"] == 1

        await events.aclose()
        assert bridge.stream_hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_streaming_leaves_queue_alone(self, make_bridge):
        bridge = make_bridge()
        events = frame_generator(FakeRequest(), bridge, heartbeat_s=1)
        await events.__anext__()

        bridge.sampler.step(START_MS)
        await events.__anext__()
        await events.aclose()

        assert len(bridge.queue) == 1

    @pytest.mark.asyncio
    async def test_heartbeat_when_idle(self, make_bridge):
        bridge = make_bridge()
        events = frame_generator(FakeRequest(), bridge, heartbeat_s=0.01)
        await events.__anext__()

        event = await events.__anext__()
        assert event["event"] == "heartbeat"
        assert json.loads(event["data"])["ts_ms"] > 0
        await events.aclose()

    @pytest.mark.asyncio
    async def test_client_disconnect_ends_stream(self, make_bridge):
        bridge = make_bridge()
        request = FakeRequest()
        events = frame_generator(request, bridge, heartbeat_s=0.01)
        await events.__anext__()

        request.disconnected = True
        with pytest.raises(StopAsyncIteration):
            await events.__anext__()
        assert bridge.stream_hub.subscriber_count == 0

    def test_heartbeat_event_shape(self):
        event = heartbeat_event()
        data = json.loads(event["data"])
        assert event["event"] == "heartbeat"
        assert "server_ts" in data

    def test_stream_route_registered(self, make_bridge):
        app = create_app(make_bridge())
        assert app.url_path_for("stream_frames") == "/stream"
