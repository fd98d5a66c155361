"""
In-memory hand-off between the sampling thread and the HTTP responder.

The queue is a bounded FIFO: when full, the oldest frame is dropped and
counted, so a client that stops polling cannot grow memory without limit.
drain_all() swaps the whole buffer out under the lock, so two concurrent
requests can never receive the same frame.
"""
import threading
from collections import deque
from typing import Generic, List, Tuple, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TelemetryQueue(Generic[T]):
    """Thread-safe FIFO of immutable frames with an atomic drain."""

    def __init__(self, max_frames: int = 200):
        self.max_frames = max_frames  # 0 = unbounded
        self._frames: deque = deque()
        self._lock = threading.Lock()
        self._dropped = 0

    def push(self, frame: T) -> None:
        with self._lock:
            self._frames.append(frame)
            if self.max_frames and len(self._frames) > self.max_frames:
                self._frames.popleft()
                self._dropped += 1
                dropped = self._dropped
            else:
                dropped = 0
        if dropped and (dropped - 1) % self.max_frames == 0:
            logger.warning("Telemetry queue full, dropping oldest frames", dropped_total=dropped)

    def drain_all(self) -> List[T]:
        """Remove and return every queued frame, oldest first."""
        with self._lock:
            frames, self._frames = self._frames, deque()
        return list(frames)

    def drain_batch(self, counter: "Counter") -> Tuple[int, List[T]]:
        """
        Drain and number the batch in one step.

        The batch id is taken under the queue lock, so a batch with a
        higher id never holds older frames than one with a lower id.
        """
        with self._lock:
            frames, self._frames = self._frames, deque()
            batch_id = counter.next()
        return batch_id, list(frames)

    def __len__(self) -> int:
        with self._lock:
            return len(self._frames)

    @property
    def dropped_count(self) -> int:
        with self._lock:
            return self._dropped


class Counter:
    """Monotonic id source shared between threads (batch ids, sequences)."""

    def __init__(self, start: int = 0):
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class Gauge:
    """Last-value metric, written by one thread and read by others."""

    def __init__(self, value: float = 0):
        self._value = value
        self._lock = threading.Lock()

    def set(self, value: float) -> None:
        with self._lock:
            self._value = value

    def get(self) -> float:
        with self._lock:
            return self._value
