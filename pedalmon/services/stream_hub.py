"""
Live frame fan-out for Server-Sent Events subscribers.

publish() is called from the sampling thread; each subscriber lives on the
server's asyncio loop, so delivery is scheduled with call_soon_threadsafe.
Every subscriber has its own bounded buffer: a slow client loses frames,
nobody else is affected, and the polling queue is never touched.
"""
import asyncio
import threading
from typing import Optional, Set

import structlog

logger = structlog.get_logger(__name__)


class Subscription:
    """One SSE client's buffer."""

    def __init__(self, loop: asyncio.AbstractEventLoop, max_frames: int):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_frames)
        self.dropped = 0

    def offer(self, frame) -> None:
        """Runs on the subscriber's loop."""
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped += 1

    async def get(self, timeout: Optional[float] = None):
        """Next frame, or None after `timeout` seconds without one."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class StreamHub:
    """Registry of live subscribers."""

    def __init__(self, max_frames: int = 64):
        self.max_frames = max_frames
        self._subscribers: Set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        """Register a subscriber on the running event loop."""
        sub = Subscription(asyncio.get_running_loop(), self.max_frames)
        with self._lock:
            self._subscribers.add(sub)
        logger.info("Stream subscriber connected", subscribers=self.subscriber_count)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(sub)
        logger.info("Stream subscriber disconnected", subscribers=self.subscriber_count, dropped=sub.dropped)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, frame) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for sub in subscribers:
            try:
                sub.loop.call_soon_threadsafe(sub.offer, frame)
            except RuntimeError:
                # Event loop already closed
                self.unsubscribe(sub)
