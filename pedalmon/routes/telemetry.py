"""
Telemetry polling API.

Each GET / drains every frame queued since the previous poll into one
batch envelope. Handlers are plain functions, so uvicorn runs them in its
threadpool and concurrent polls are possible. The drain and the batch id
are taken in one atomic step, so no frame is ever served twice and batch ids
follow frame order.
"""
import time
from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from pedalmon import __version__
from pedalmon.bridge import PedalBridge
from pedalmon.schemas import BridgeEnvelope, BridgeInfo, HealthResponse

logger = structlog.get_logger(__name__)
router = APIRouter(tags=["telemetry"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}
JSON_UTF8 = "application/json; charset=utf-8"


def get_bridge(request: Request) -> PedalBridge:
    return request.app.state.bridge


def build_envelope(bridge: PedalBridge, frames: list, batch_id: Optional[int] = None) -> BridgeEnvelope:
    """Wrap frames with the given batch id, or the next one."""
    return BridgeEnvelope(
        bridge_info=BridgeInfo(
            batch_id=bridge.batch_counter.next() if batch_id is None else batch_id,
            served_at_unix_ms=int(time.time() * 1000),
            pending_frame_count=len(frames),
        ),
        frames=frames,
    )


@router.get("/")
def poll_frames(bridge: PedalBridge = Depends(get_bridge)):
    """Drain the queue and return the batch."""
    started = time.perf_counter()
    batch_id, frames = bridge.queue.drain_batch(bridge.batch_counter)
    envelope = build_envelope(bridge, frames, batch_id)
    body = envelope.model_dump_json(by_alias=True)
    bridge.http_process_ms.set(round((time.perf_counter() - started) * 1000, 3))
    logger.debug("Served batch", batch_id=envelope.bridge_info.batch_id, frames=len(frames))
    return Response(
        content=body,
        media_type=JSON_UTF8,
        headers={**CORS_HEADERS, "Cache-Control": "no-store"},
    )


@router.options("/{path:path}")
def preflight(path: str):
    """CORS preflight: headers only, queue untouched."""
    return Response(status_code=200, headers=CORS_HEADERS)


@router.get("/QUIT")
def quit_bridge(background_tasks: BackgroundTasks, bridge: PedalBridge = Depends(get_bridge)):
    """Stop the process once this response has been sent."""
    logger.info("Quit requested over HTTP")
    background_tasks.add_task(bridge.request_shutdown)
    return {"status": "quit received"}


@router.get("/health", response_model=HealthResponse)
def health_check(bridge: PedalBridge = Depends(get_bridge)):
    """Liveness probe with pipeline counters."""
    return HealthResponse(
        version=__version__,
        queue_depth=len(bridge.queue),
        dropped_frames=bridge.queue.dropped_count,
        controller_connected=bridge.state.controller_connected,
        telemetry_sequence=bridge.publisher.sequence if bridge.publisher else 0,
        batch_id=bridge.batch_counter.value,
    )
