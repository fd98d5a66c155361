"""
Server-Sent Events stream of live frames.

Every published frame is pushed to each connected client as a `frame`
event holding a single-frame batch envelope. A `heartbeat` event is sent
when no frame arrived for a while so clients can detect a stalled bridge.
Streaming never drains the polling queue.
"""
import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from pedalmon.bridge import PedalBridge
from pedalmon.routes.telemetry import CORS_HEADERS, build_envelope, get_bridge

router = APIRouter(tags=["stream"])

HEARTBEAT_SECONDS = 15.0


def heartbeat_event() -> dict:
    now = datetime.now(timezone.utc)
    return {
        "event": "heartbeat",
        "data": json.dumps({
            "server_ts": now.isoformat(),
            "ts_ms": int(now.timestamp() * 1000),
        }),
    }


async def frame_generator(request: Request, bridge: PedalBridge, heartbeat_s: float = HEARTBEAT_SECONDS):
    """
    Yield SSE events for one subscriber until the client goes away.

    The subscription is registered before the `connected` event, so no
    frame published after the client sees `connected` is missed.
    """
    subscription = bridge.stream_hub.subscribe()
    try:
        yield {
            "event": "connected",
            "data": json.dumps({
                "schemaVersion": 1,
                "telemetry_sequence": bridge.publisher.sequence if bridge.publisher else 0,
                "server_time": datetime.now(timezone.utc).isoformat(),
            }),
        }

        while True:
            if await request.is_disconnected():
                break

            frame = await subscription.get(timeout=heartbeat_s)
            if frame is None:
                yield heartbeat_event()
                continue

            envelope = build_envelope(bridge, [frame])
            yield {
                "event": "frame",
                "id": str(frame.telemetry_sequence),
                "data": envelope.model_dump_json(by_alias=True),
            }
    finally:
        bridge.stream_hub.unsubscribe(subscription)


@router.get("/stream")
async def stream_frames(request: Request, bridge: PedalBridge = Depends(get_bridge)):
    """Live frames as Server-Sent Events."""
    return EventSourceResponse(
        frame_generator(request, bridge),
        headers=CORS_HEADERS,
    )
