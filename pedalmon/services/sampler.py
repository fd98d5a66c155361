"""
The sampling thread: poll -> detect -> publish -> speak, then wait.

The wait is on a threading.Event, so stop() interrupts it immediately.
CalibrationConfig and RuntimeState are only ever touched from this thread.
"""
import threading
import time
from typing import Callable, Optional

import structlog

from pedalmon.config import Settings
from pedalmon.models import CalibrationConfig, RuntimeState
from pedalmon.services.connection import ConnectionManager, PollResult
from pedalmon.services.detector import AxisMapping, Detection, detect
from pedalmon.services.joystick import JoystickDevice
from pedalmon.services.publisher import FramePublisher
from pedalmon.services.speech import Speaker

logger = structlog.get_logger(__name__)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def alert_phrases(detection: Detection, config: CalibrationConfig, state: RuntimeState) -> list:
    """Spoken text for the events of one sample, in announcement order."""
    phrases = []
    if detection.clutch_alert_triggered:
        phrases.append("Rudder.")
    if detection.gas_alert_triggered:
        phrases.append(f"Gas {detection.percent_reached} percent.")
    if detection.gas_estimate_decreased:
        phrases.append(f"New deadzone estimation {state.best_estimate_percent} percent.")
    if detection.gas_auto_adjust_applied:
        phrases.append(f"Auto adjusted deadzone to {config.gas_deadzone_out} percent.")
    return phrases


class PedalSampler:
    """Runs the monitor loop on its own thread."""

    def __init__(
        self,
        settings: Settings,
        device: JoystickDevice,
        config: CalibrationConfig,
        state: RuntimeState,
        publisher: Optional[FramePublisher] = None,
        speaker: Optional[Speaker] = None,
        on_finished: Optional[Callable[[], None]] = None,
        clock: Callable[[], int] = monotonic_ms,
    ):
        self.settings = settings
        self.config = config
        self.state = state
        self.publisher = publisher
        self.speaker = speaker or Speaker(enabled=False)
        self.on_finished = on_finished
        self.clock = clock
        self.axes = AxisMapping(gas=settings.gas_axis, clutch=settings.clutch_axis, brake=settings.brake_axis)

        self.connection = ConnectionManager(
            device,
            state,
            joy_flags=settings.joy_flags,
            sleep_ms=settings.sleep_time_ms,
            vendor_id=settings.target_vendor_id,
            product_id=settings.target_product_id,
            rescan_interval_ms=settings.rescan_interval_ms,
            retry_interval_ms=settings.retry_interval_ms,
            speak=self.speaker.speak,
            on_disconnect=self._publish_disconnect,
            on_reconnect=self._publish_reconnect,
        )

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._loop_start_ms = 0
        self._now_ms = 0
        self._previous_loop_ms = 0

    # ============ Thread control ============

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="pedal-sampler", daemon=True)
        self._thread.start()
        logger.info("Sampler started", device_id=self.state.device_id, sleep_ms=self.settings.sleep_time_ms)

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        iterations = self.settings.iterations
        while not self._stop.is_set():
            delay_ms = self.settings.sleep_time_ms
            try:
                delay_ms = self.step().delay_ms
            except Exception:
                logger.exception("Sampling iteration failed")

            if iterations and self.state.iteration >= iterations:
                logger.info("Iteration limit reached", iterations=iterations)
                self._stop.set()
                if self.on_finished is not None:
                    self.on_finished()
                break

            self._stop.wait(delay_ms / 1000)

        logger.info("Sampler stopped", iterations=self.state.iteration)

    # ============ One iteration ============

    def step(self, now_ms: Optional[int] = None) -> PollResult:
        """Poll, analyse and publish once. Returns the connection outcome."""
        loop_start = self.clock() if now_ms is None else now_ms
        if self._loop_start_ms:
            self._previous_loop_ms = max(0, loop_start - self._loop_start_ms)
        self._loop_start_ms = loop_start
        self._now_ms = loop_start
        self.state.iteration += 1

        result = self.connection.poll(loop_start)

        detection = None
        if result.ok:
            sample_ms = self.clock() if now_ms is None else now_ms
            self._now_ms = sample_ms
            detection = detect(result.reading, self.config, self.state, sample_ms, self.axes)
            self._trace(detection, sample_ms)
            for phrase in alert_phrases(detection, self.config, self.state):
                self.speaker.speak(phrase)

        self._publish(detection)
        return result

    def _trace(self, detection: Detection, now_ms: int) -> None:
        if not self.settings.verbose:
            return
        if self.settings.debug_raw:
            logger.debug(
                "Sample",
                time=now_ms,
                gas_raw=detection.raw_gas,
                gas_norm=detection.gas_value,
                clutch_raw=detection.raw_clutch,
                clutch_norm=detection.clutch_value,
            )
        else:
            logger.debug("Sample", time=now_ms, gas=detection.gas_value, clutch=detection.clutch_value)

    def _publish(self, detection: Optional[Detection], **events) -> None:
        if self.publisher is None:
            return
        self.publisher.publish(
            self.config,
            self.state,
            detection,
            loop_start_ms=self._loop_start_ms,
            now_ms=self._now_ms,
            previous_loop_ms=self._previous_loop_ms,
            **events,
        )

    def _publish_disconnect(self, now_ms: int) -> None:
        self._publish(None, controller_disconnected=True)

    def _publish_reconnect(self, now_ms: int) -> None:
        self._publish(None, controller_reconnected=True)
