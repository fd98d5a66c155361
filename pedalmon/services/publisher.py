"""
Frame publisher: turns one sampling iteration into an immutable
TelemetryFrame and hands it to the polling queue and the live stream.

Runs on the sampling thread. Nothing here blocks: the queue push takes a
short lock and stream delivery is scheduled onto the server's event loop.
"""
import time
from typing import Optional

import structlog

from pedalmon.config import Settings
from pedalmon.models import CalibrationConfig, RuntimeState
from pedalmon.schemas import TelemetryFrame
from pedalmon.services.detector import Detection
from pedalmon.services.stream_hub import StreamHub
from pedalmon.services.telemetry_queue import Counter, Gauge, TelemetryQueue

logger = structlog.get_logger(__name__)


def _flag(value) -> int:
    return 1 if value else 0


class FramePublisher:
    """Stamps sequence and timing, snapshots state, enqueues."""

    def __init__(
        self,
        settings: Settings,
        queue: TelemetryQueue,
        http_process_ms: Optional[Gauge] = None,
        tts_speak_ms: Optional[Gauge] = None,
        stream_hub: Optional[StreamHub] = None,
    ):
        self.queue = queue
        self.stream_hub = stream_hub
        self.http_process_ms = http_process_ms or Gauge()
        self.tts_speak_ms = tts_speak_ms or Gauge()
        self._sequence = Counter()
        self._static = self._static_echo(settings)

    @property
    def sequence(self) -> int:
        """Sequence number of the last published frame (0 before the first)."""
        return self._sequence.value

    @staticmethod
    def _static_echo(settings: Settings) -> dict:
        """Frame fields that cannot change after startup."""
        return {
            "verbose_flag": _flag(settings.verbose),
            "debug_raw_mode": _flag(settings.debug_raw),
            "target_vendor_id": settings.target_vendor_id,
            "target_product_id": settings.target_product_id,
            "telemetry_enabled": _flag(settings.telemetry),
            "tts_enabled": _flag(settings.tts_enabled),
            "ipc_enabled": 0,
            "no_console_banner": _flag(settings.no_console_banner),
            "joy_flags": settings.joy_flags,
            "iterations": settings.iterations,
            "sleep_time": settings.sleep_time_ms,
        }

    def publish(
        self,
        config: CalibrationConfig,
        state: RuntimeState,
        detection: Optional[Detection] = None,
        *,
        loop_start_ms: int,
        now_ms: int,
        previous_loop_ms: int = 0,
        controller_disconnected: bool = False,
        controller_reconnected: bool = False,
    ) -> TelemetryFrame:
        """
        Build and enqueue one frame.

        Args:
            config: calibration in effect for this sample
            state: runtime state after detection
            detection: this iteration's sample; None for a failed read or a
                connection event frame (sample fields are then zero)
            loop_start_ms: monotonic time the iteration started
            now_ms: monotonic time of the sample
            previous_loop_ms: full duration of the previous iteration
            controller_disconnected / controller_reconnected: one-shot
                connection events
        """
        sample = detection or Detection()
        values = dict(self._static)
        values.update(
            # Configuration echo
            monitor_clutch=_flag(config.monitor_clutch),
            monitor_gas=_flag(config.monitor_gas),
            gas_deadzone_in=config.gas_deadzone_in,
            gas_deadzone_out=config.gas_deadzone_out,
            brake_deadzone_in=config.brake_deadzone_in,
            brake_deadzone_out=config.brake_deadzone_out,
            clutch_deadzone_in=config.clutch_deadzone_in,
            clutch_deadzone_out=config.clutch_deadzone_out,
            gas_window=config.gas_window,
            gas_cooldown=config.gas_cooldown,
            gas_timeout=config.gas_timeout,
            gas_min_usage_percent=config.gas_min_usage_percent,
            axis_normalization_enabled=_flag(config.axis_normalization),
            clutch_repeat_required=config.clutch_repeat_required,
            estimate_gas_deadzone_enabled=_flag(config.estimate_gas_deadzone_enabled),
            auto_gas_deadzone_enabled=_flag(config.auto_gas_deadzone_enabled),
            auto_gas_deadzone_minimum=config.auto_gas_deadzone_minimum,
            joy_id=state.device_id,
            margin=config.margin,
            axis_max=config.axis_max,
            axis_margin=config.axis_margin,
            gas_idle_max=config.gas_idle_max,
            gas_full_min=config.gas_full_min,
            brake_idle_max=config.brake_idle_max,
            brake_full_min=config.brake_full_min,
            clutch_idle_max=config.clutch_idle_max,
            clutch_full_min=config.clutch_full_min,
            gas_timeout_ms=config.gas_timeout_ms,
            gas_window_ms=config.gas_window_ms,
            gas_cooldown_ms=config.gas_cooldown_ms,
            # Runtime state
            last_clutch_value=state.last_clutch_value,
            repeating_clutch_count=state.repeating_clutch_count,
            is_racing=_flag(state.is_racing),
            peak_gas_in_window=state.peak_gas_in_window,
            last_full_throttle_time=state.last_full_throttle_time,
            last_gas_activity_time=state.last_gas_activity_time,
            last_gas_alert_time=state.last_gas_alert_time,
            best_estimate_percent=state.best_estimate_percent,
            last_printed_estimate=state.last_printed_estimate,
            estimate_window_peak_percent=state.estimate_window_peak_percent,
            estimate_window_start_time=state.estimate_window_start_time,
            last_estimate_print_time=state.last_estimate_print_time,
            last_disconnect_time_ms=state.last_disconnect_time_ms,
            last_reconnect_time_ms=state.last_reconnect_time_ms,
            controller_connected=_flag(state.controller_connected),
            iteration=state.iteration,
            # Sample
            current_time=now_ms,
            raw_gas=sample.raw_gas,
            raw_clutch=sample.raw_clutch,
            raw_brake=sample.raw_brake,
            gas_value=sample.gas_value,
            clutch_value=sample.clutch_value,
            brake_value=sample.brake_value,
            gas_physical_pct=sample.gas_physical_pct,
            clutch_physical_pct=sample.clutch_physical_pct,
            brake_physical_pct=sample.brake_physical_pct,
            gas_logical_pct=sample.gas_logical_pct,
            clutch_logical_pct=sample.clutch_logical_pct,
            brake_logical_pct=sample.brake_logical_pct,
            closure=sample.closure,
            percent_reached=sample.percent_reached,
            current_percent=sample.current_percent,
            # Events
            gas_alert_triggered=_flag(sample.gas_alert_triggered),
            clutch_alert_triggered=_flag(sample.clutch_alert_triggered),
            gas_estimate_decreased=_flag(sample.gas_estimate_decreased),
            gas_auto_adjust_applied=_flag(sample.gas_auto_adjust_applied),
            controller_disconnected=_flag(controller_disconnected),
            controller_reconnected=_flag(controller_reconnected),
            # Timing
            producer_loop_start_ms=loop_start_ms,
            full_loop_time_ms=previous_loop_ms,
            metric_http_process_ms=self.http_process_ms.get(),
            metric_tts_speak_ms=self.tts_speak_ms.get(),
        )

        now_unix_ms = int(time.time() * 1000)
        values.update(
            telemetry_sequence=self._sequence.next(),
            received_at_unix_ms=now_unix_ms,
            producer_notify_ms=now_unix_ms,
            metric_loop_process_ms=max(0, int(time.monotonic() * 1000) - loop_start_ms),
        )

        frame = TelemetryFrame(**values)
        self.queue.push(frame)
        if self.stream_hub is not None:
            self.stream_hub.publish(frame)
        return frame
