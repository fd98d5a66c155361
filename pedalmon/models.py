"""
Calibration parameters and per-device runtime state.

Both objects are owned by the sampling thread. Frames published to HTTP
clients are built from scalar copies of them (see pedalmon.schemas), so
nothing here is shared across threads.
"""
from dataclasses import dataclass
from typing import Optional

from pedalmon.config import Settings


@dataclass
class CalibrationConfig:
    """
    Tuning parameters derived from startup settings.

    Percentages are the inputs; the raw-unit thresholds are computed on
    access with integer math, so they always match the percentages.
    gas_deadzone_out is the one live-mutable input, changed only through
    apply_auto_adjust().
    """
    axis_max: int = 65535
    axis_normalization: bool = True
    margin: int = 5
    clutch_repeat_required: int = 4

    gas_deadzone_in: int = 5
    gas_deadzone_out: int = 93
    clutch_deadzone_in: int = 5
    clutch_deadzone_out: int = 93
    brake_deadzone_in: int = 5
    brake_deadzone_out: int = 93

    gas_window: int = 30  # seconds
    gas_cooldown: int = 60
    gas_timeout: int = 10
    gas_min_usage_percent: int = 20

    monitor_clutch: bool = False
    monitor_gas: bool = False
    estimate_gas_deadzone_enabled: bool = False
    auto_gas_deadzone_minimum: int = -1  # -1 = auto-adjust off

    @classmethod
    def from_settings(cls, settings: Settings) -> "CalibrationConfig":
        """Build from validated settings; clutch/brake deadzones fall back to the gas ones."""

        def pick(value: Optional[int], default: int) -> int:
            return default if value is None else value

        return cls(
            axis_max=settings.axis_max,
            axis_normalization=settings.axis_normalization,
            margin=settings.margin,
            clutch_repeat_required=settings.clutch_repeat,
            gas_deadzone_in=settings.gas_deadzone_in,
            gas_deadzone_out=settings.gas_deadzone_out,
            clutch_deadzone_in=pick(settings.clutch_deadzone_in, settings.gas_deadzone_in),
            clutch_deadzone_out=pick(settings.clutch_deadzone_out, settings.gas_deadzone_out),
            brake_deadzone_in=pick(settings.brake_deadzone_in, settings.gas_deadzone_in),
            brake_deadzone_out=pick(settings.brake_deadzone_out, settings.gas_deadzone_out),
            gas_window=settings.gas_window,
            gas_cooldown=settings.gas_cooldown,
            gas_timeout=settings.gas_timeout,
            gas_min_usage_percent=settings.gas_min_usage,
            monitor_clutch=settings.monitor_clutch,
            monitor_gas=settings.monitor_gas,
            estimate_gas_deadzone_enabled=settings.estimate_gas_deadzone,
            auto_gas_deadzone_minimum=settings.auto_gas_deadzone_min,
        )

    # ============ Derived thresholds ============

    def _scaled(self, percent: int) -> int:
        return self.axis_max * percent // 100

    @property
    def axis_margin(self) -> int:
        return self._scaled(self.margin)

    @property
    def gas_idle_max(self) -> int:
        return self._scaled(self.gas_deadzone_in)

    @property
    def gas_full_min(self) -> int:
        return self._scaled(self.gas_deadzone_out)

    @property
    def clutch_idle_max(self) -> int:
        return self._scaled(self.clutch_deadzone_in)

    @property
    def clutch_full_min(self) -> int:
        return self._scaled(self.clutch_deadzone_out)

    @property
    def brake_idle_max(self) -> int:
        return self._scaled(self.brake_deadzone_in)

    @property
    def brake_full_min(self) -> int:
        return self._scaled(self.brake_deadzone_out)

    @property
    def gas_window_ms(self) -> int:
        return self.gas_window * 1000

    @property
    def gas_cooldown_ms(self) -> int:
        return self.gas_cooldown * 1000

    @property
    def gas_timeout_ms(self) -> int:
        return self.gas_timeout * 1000

    @property
    def auto_gas_deadzone_enabled(self) -> bool:
        return self.auto_gas_deadzone_minimum >= 0

    def apply_auto_adjust(self, estimate_percent: int) -> bool:
        """
        Lower gas_deadzone_out to a new deadzone estimate.

        Only applies when auto-adjust is on, the estimate is below the current
        value and not below the configured floor. Returns True if applied.
        """
        if not self.auto_gas_deadzone_enabled:
            return False
        if estimate_percent >= self.gas_deadzone_out:
            return False
        if estimate_percent < self.auto_gas_deadzone_minimum:
            return False
        self.gas_deadzone_out = estimate_percent
        return True


@dataclass
class RuntimeState:
    """Counters and timers of one monitored device. Times are monotonic ms."""
    device_id: int = 0
    iteration: int = 0

    last_clutch_value: int = 0
    repeating_clutch_count: int = 0

    is_racing: bool = False
    peak_gas_in_window: int = 0
    last_full_throttle_time: int = 0
    last_gas_activity_time: int = 0
    last_gas_alert_time: int = 0

    best_estimate_percent: int = 100
    last_printed_estimate: int = 100
    estimate_window_peak_percent: int = 0
    estimate_window_start_time: int = 0
    last_estimate_print_time: int = 0

    # Connection latch, untouched by reset()
    controller_connected: bool = True
    last_disconnect_time_ms: int = 0
    last_reconnect_time_ms: int = 0

    @classmethod
    def initial(cls, now_ms: int, device_id: int = 0) -> "RuntimeState":
        state = cls(device_id=device_id)
        state.reset(now_ms)
        # No alert or announcement yet at startup
        state.last_gas_alert_time = 0
        state.last_estimate_print_time = 0
        return state

    def reset(self, now_ms: int) -> None:
        """Restore detection fields after a reconnect. Every timer restarts at now_ms."""
        self.last_clutch_value = 0
        self.repeating_clutch_count = 0
        self.is_racing = False
        self.peak_gas_in_window = 0
        self.last_full_throttle_time = now_ms
        self.last_gas_activity_time = now_ms
        self.last_gas_alert_time = now_ms
        self.best_estimate_percent = 100
        self.last_printed_estimate = 100
        self.estimate_window_peak_percent = 0
        self.estimate_window_start_time = now_ms
        self.last_estimate_print_time = now_ms

    def restart_estimate_window(self, now_ms: int) -> None:
        self.estimate_window_start_time = now_ms
        self.estimate_window_peak_percent = 0
