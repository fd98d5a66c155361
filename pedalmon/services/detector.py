"""
Per-sample pedal analysis.

Pure integer math on one AxisReading plus the sampling thread's
CalibrationConfig and RuntimeState:

1. Normalization and physical/logical percentages for gas, clutch and brake
2. Clutch noise: the clutch sits still (within the margin) for several
   consecutive samples while the gas is idle
3. Gas drift: while racing, no full-throttle sample for a whole window
4. Deadzone estimator: the smallest per-window peak travel seen so far,
   optionally applied to gas_deadzone_out

detect() mutates only RuntimeState (and gas_deadzone_out through
CalibrationConfig.apply_auto_adjust). Speech and publishing are left to the
caller, driven by the returned Detection.
"""
from dataclasses import dataclass
from typing import Optional

import structlog

from pedalmon.models import CalibrationConfig, RuntimeState
from pedalmon.services.joystick import AxisReading

logger = structlog.get_logger(__name__)


@dataclass
class AxisMapping:
    """Which joystick axis carries each pedal."""
    gas: str = "Y"
    clutch: str = "R"
    brake: str = "X"


@dataclass
class Detection:
    """Everything one sample produced, as consumed by the frame publisher."""
    raw_gas: int = 0
    raw_clutch: int = 0
    raw_brake: int = 0
    gas_value: int = 0
    clutch_value: int = 0
    brake_value: int = 0
    gas_physical_pct: int = 0
    clutch_physical_pct: int = 0
    brake_physical_pct: int = 0
    gas_logical_pct: int = 0
    clutch_logical_pct: int = 0
    brake_logical_pct: int = 0
    closure: int = 0
    percent_reached: int = 0
    current_percent: int = 0

    # One-shot events
    clutch_alert_triggered: bool = False
    gas_alert_triggered: bool = False
    gas_estimate_decreased: bool = False
    gas_auto_adjust_applied: bool = False


# ============ Percentages ============

def normalize_axis(raw: int, axis_max: int, enabled: bool = True) -> int:
    """Invert a raw reading so that 0 means released."""
    if not enabled:
        return raw
    return axis_max - raw


def physical_pct(value: int, axis_max: int) -> int:
    if axis_max <= 0:
        return 0
    return 100 * value // axis_max


def compute_logical_pct(value: int, idle_max: int, full_min: int) -> int:
    """
    Game-facing percentage: 0 inside the idle deadzone, 100 past the full
    deadzone, linear in between. A calibration where full_min <= idle_max
    has no usable range and always yields 0.
    """
    if full_min <= idle_max:
        return 0
    if value <= idle_max:
        return 0
    if value >= full_min:
        return 100
    return 100 * (value - idle_max) // (full_min - idle_max)


# ============ Detection ============

def detect(
    reading: AxisReading,
    config: CalibrationConfig,
    state: RuntimeState,
    now_ms: int,
    axes: Optional[AxisMapping] = None,
) -> Detection:
    """Run every enabled algorithm on one successful sample."""
    axes = axes or AxisMapping()
    result = Detection(
        raw_gas=reading.axis(axes.gas),
        raw_clutch=reading.axis(axes.clutch),
        raw_brake=reading.axis(axes.brake),
    )

    axis_max = config.axis_max
    result.gas_value = normalize_axis(result.raw_gas, axis_max, config.axis_normalization)
    result.clutch_value = normalize_axis(result.raw_clutch, axis_max, config.axis_normalization)
    result.brake_value = normalize_axis(result.raw_brake, axis_max, config.axis_normalization)

    result.gas_physical_pct = physical_pct(result.gas_value, axis_max)
    result.clutch_physical_pct = physical_pct(result.clutch_value, axis_max)
    result.brake_physical_pct = physical_pct(result.brake_value, axis_max)

    if config.monitor_clutch:
        _check_clutch(result, config, state)

    if config.monitor_gas:
        _check_gas(result, config, state, now_ms)

    # Logical percentages after the estimator, so an auto-adjusted
    # gas_full_min applies to the sample that caused it.
    result.gas_logical_pct = compute_logical_pct(result.gas_value, config.gas_idle_max, config.gas_full_min)
    result.clutch_logical_pct = compute_logical_pct(
        result.clutch_value, config.clutch_idle_max, config.clutch_full_min
    )
    result.brake_logical_pct = compute_logical_pct(
        result.brake_value, config.brake_idle_max, config.brake_full_min
    )

    return result


def _check_clutch(result: Detection, config: CalibrationConfig, state: RuntimeState) -> None:
    clutch = result.clutch_value
    if result.gas_value <= config.gas_idle_max and clutch > 0:
        result.closure = abs(clutch - state.last_clutch_value)
        if result.closure <= config.axis_margin:
            state.repeating_clutch_count += 1
        else:
            state.repeating_clutch_count = 0
    else:
        state.repeating_clutch_count = 0

    state.last_clutch_value = clutch

    if state.repeating_clutch_count >= config.clutch_repeat_required:
        result.clutch_alert_triggered = True
        state.repeating_clutch_count = 0
        logger.info("Clutch noise detected", clutch=clutch, margin=config.axis_margin)


def _check_gas(result: Detection, config: CalibrationConfig, state: RuntimeState, now_ms: int) -> None:
    gas = result.gas_value

    # Activity and racing state
    if gas > config.gas_idle_max:
        if not state.is_racing:
            state.last_full_throttle_time = now_ms
            state.peak_gas_in_window = 0
            if config.estimate_gas_deadzone_enabled:
                state.restart_estimate_window(now_ms)
            logger.debug("Gas activity resumed")
        state.is_racing = True
        state.last_gas_activity_time = now_ms
    elif state.is_racing and now_ms - state.last_gas_activity_time > config.gas_timeout_ms:
        state.is_racing = False
        if config.estimate_gas_deadzone_enabled:
            state.restart_estimate_window(now_ms)
        logger.debug("Gas auto-pause", idle_seconds=config.gas_timeout)

    if not state.is_racing:
        return

    # Drift
    if gas > state.peak_gas_in_window:
        state.peak_gas_in_window = gas

    if gas >= config.gas_full_min:
        state.last_full_throttle_time = now_ms
        state.peak_gas_in_window = 0
    elif (
        now_ms - state.last_full_throttle_time > config.gas_window_ms
        and now_ms - state.last_gas_alert_time > config.gas_cooldown_ms
    ):
        result.percent_reached = state.peak_gas_in_window * 100 // config.axis_max
        if result.percent_reached > config.gas_min_usage_percent:
            result.gas_alert_triggered = True
            state.last_gas_alert_time = now_ms
            logger.info("Gas drift detected", percent_reached=result.percent_reached)

    if config.estimate_gas_deadzone_enabled:
        _estimate_deadzone(result, config, state, now_ms)


def _estimate_deadzone(result: Detection, config: CalibrationConfig, state: RuntimeState, now_ms: int) -> None:
    gas = result.gas_value
    if gas > config.gas_idle_max:
        result.current_percent = gas * 100 // config.axis_max
        if result.current_percent > state.estimate_window_peak_percent:
            state.estimate_window_peak_percent = result.current_percent

    if now_ms - state.estimate_window_start_time < config.gas_cooldown_ms:
        return

    candidate = state.estimate_window_peak_percent
    if config.gas_min_usage_percent <= candidate < state.best_estimate_percent:
        state.best_estimate_percent = candidate

        if (
            state.best_estimate_percent < state.last_printed_estimate
            and now_ms - state.last_estimate_print_time >= config.gas_cooldown_ms
        ):
            result.gas_estimate_decreased = True
            state.last_printed_estimate = state.best_estimate_percent
            state.last_estimate_print_time = now_ms
            logger.info("New gas deadzone estimate", estimate=state.best_estimate_percent)

        if config.apply_auto_adjust(state.best_estimate_percent):
            result.gas_auto_adjust_applied = True
            logger.info(
                "Gas deadzone auto-adjusted",
                gas_deadzone_out=config.gas_deadzone_out,
                minimum=config.auto_gas_deadzone_minimum,
            )

    state.restart_estimate_window(now_ms)
