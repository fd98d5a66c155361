"""
Process wiring: one PedalBridge owns the whole pipeline.

    joystick -> PedalSampler (ConnectionManager -> detector -> FramePublisher)
             -> TelemetryQueue / StreamHub -> HTTP routes

The FastAPI app reaches it through app.state.bridge.
"""
from typing import Callable, List, Optional

import structlog

from pedalmon.config import Settings
from pedalmon.models import CalibrationConfig, RuntimeState
from pedalmon.services.connection import MAX_JOYSTICK_ID
from pedalmon.services.joystick import JoystickDevice, SimulatedJoystick, WinMMJoystick
from pedalmon.services.publisher import FramePublisher
from pedalmon.services.sampler import PedalSampler, monotonic_ms
from pedalmon.services.speech import Speaker
from pedalmon.services.stream_hub import StreamHub
from pedalmon.services.telemetry_queue import Counter, Gauge, TelemetryQueue

logger = structlog.get_logger(__name__)


def make_device(settings: Settings) -> JoystickDevice:
    """Hardware backend for the current platform, or the simulator."""
    if settings.simulate:
        return SimulatedJoystick(
            axis_max=settings.axis_max,
            device_id=settings.joystick_id if settings.joystick_id <= MAX_JOYSTICK_ID else 0,
            vendor_id=settings.target_vendor_id,
            product_id=settings.target_product_id,
            inverted=settings.axis_normalization,
            animate=True,
        )
    return WinMMJoystick()


class PedalBridge:
    """Owns the queue, counters, gauges, speaker, stream hub and sampler."""

    def __init__(
        self,
        settings: Settings,
        device: Optional[JoystickDevice] = None,
        speaker: Optional[Speaker] = None,
        clock: Callable[[], int] = monotonic_ms,
    ):
        self.settings = settings
        self.device = device or make_device(settings)

        self.queue: TelemetryQueue = TelemetryQueue(settings.queue_max_frames)
        self.batch_counter = Counter()
        self.http_process_ms = Gauge()
        self.tts_speak_ms = Gauge()
        self.stream_hub = StreamHub(settings.stream_buffer_frames)

        self.speaker = speaker or Speaker(
            enabled=settings.tts_enabled,
            command=settings.tts_command,
            duration_gauge=self.tts_speak_ms,
        )

        self.config = CalibrationConfig.from_settings(settings)
        device_id = settings.joystick_id
        if settings.simulate and device_id > MAX_JOYSTICK_ID and not settings.has_device_identity:
            device_id = getattr(self.device, "device_id", 0)
        self.state = RuntimeState.initial(clock(), device_id=device_id)

        self.publisher: Optional[FramePublisher] = None
        if settings.telemetry:
            self.publisher = FramePublisher(
                settings,
                self.queue,
                http_process_ms=self.http_process_ms,
                tts_speak_ms=self.tts_speak_ms,
                stream_hub=self.stream_hub,
            )

        self.sampler = PedalSampler(
            settings,
            self.device,
            self.config,
            self.state,
            publisher=self.publisher,
            speaker=self.speaker,
            on_finished=self.request_shutdown,
            clock=clock,
        )
        self._shutdown_callbacks: List[Callable[[], None]] = []

    def open(self) -> int:
        """
        Resolve the starting device id.

        Raises:
            DeviceNotFoundError: identity lookup failed at startup.
        """
        return self.sampler.connection.resolve_initial_device()

    def start(self) -> None:
        self.speaker.start()
        self.sampler.start()

    def stop(self, timeout: float = 5.0) -> None:
        self.sampler.stop()
        self.sampler.join(timeout)
        self.speaker.stop()
        logger.info(
            "Bridge stopped",
            frames_published=self.publisher.sequence if self.publisher else 0,
            frames_dropped=self.queue.dropped_count,
        )

    # ============ Shutdown requests (/QUIT, iteration limit) ============

    def on_shutdown_request(self, callback: Callable[[], None]) -> None:
        self._shutdown_callbacks.append(callback)

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self.sampler.stop()
        for callback in self._shutdown_callbacks:
            callback()
