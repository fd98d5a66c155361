"""
Calibration and Runtime State Tests

Tests to verify:
1. Derived thresholds use integer math and follow the percentages
2. Settings -> CalibrationConfig mapping (deadzone fallbacks, raw capture)
3. Auto-adjust guard rails
4. RuntimeState.reset leaves the connection latch alone

Run with: pytest tests/test_models.py -v
"""
from pedalmon.models import CalibrationConfig, RuntimeState
from pedalmon.services.joystick import JOY_RETURNALL, JOY_RETURNRAWDATA


# ============================================
# Test: Derived Thresholds
# ============================================

class TestCalibrationThresholds:
    """Raw-unit thresholds derived from percentages."""

    def test_default_thresholds(self):
        config = CalibrationConfig()
        assert config.gas_idle_max == 3276
        assert config.gas_full_min == 60947
        assert config.axis_margin == 3276

    def test_durations_in_ms(self):
        config = CalibrationConfig(gas_window=30, gas_cooldown=60, gas_timeout=10)
        assert config.gas_window_ms == 30_000
        assert config.gas_cooldown_ms == 60_000
        assert config.gas_timeout_ms == 10_000

    def test_per_pedal_thresholds(self):
        config = CalibrationConfig(
            clutch_deadzone_in=10,
            clutch_deadzone_out=80,
            brake_deadzone_in=2,
            brake_deadzone_out=98,
        )
        assert config.clutch_idle_max == 6553
        assert config.clutch_full_min == 52428
        assert config.brake_idle_max == 1310
        assert config.brake_full_min == 64224

    def test_thresholds_follow_percentage_changes(self):
        config = CalibrationConfig(auto_gas_deadzone_minimum=50)
        assert config.apply_auto_adjust(80)
        assert config.gas_full_min == 65535 * 80 // 100


class TestCalibrationFromSettings:
    """CalibrationConfig.from_settings."""

    def test_clutch_and_brake_default_to_gas_deadzones(self, make_settings):
        settings = make_settings(gas_deadzone_in=7, gas_deadzone_out=90)
        config = CalibrationConfig.from_settings(settings)
        assert config.clutch_deadzone_in == 7
        assert config.clutch_deadzone_out == 90
        assert config.brake_deadzone_in == 7
        assert config.brake_deadzone_out == 90

    def test_explicit_pedal_deadzones_win(self, make_settings):
        settings = make_settings(brake_deadzone_in=0, clutch_deadzone_out=99)
        config = CalibrationConfig.from_settings(settings)
        assert config.brake_deadzone_in == 0
        assert config.clutch_deadzone_out == 99

    def test_raw_capture_flag_selects_10_bit_axes(self, make_settings):
        assert CalibrationConfig.from_settings(make_settings(joy_flags=JOY_RETURNALL)).axis_max == 65535
        raw = make_settings(joy_flags=JOY_RETURNALL | JOY_RETURNRAWDATA)
        assert CalibrationConfig.from_settings(raw).axis_max == 1023

    def test_monitor_and_estimator_flags(self, make_settings):
        settings = make_settings(
            monitor_gas=True,
            estimate_gas_deadzone=True,
            auto_gas_deadzone_min=60,
            clutch_repeat=6,
        )
        config = CalibrationConfig.from_settings(settings)
        assert config.monitor_gas
        assert not config.monitor_clutch
        assert config.estimate_gas_deadzone_enabled
        assert config.auto_gas_deadzone_enabled
        assert config.auto_gas_deadzone_minimum == 60
        assert config.clutch_repeat_required == 6


# ============================================
# Test: Auto-Adjust
# ============================================

class TestAutoAdjust:
    """gas_deadzone_out only moves through apply_auto_adjust."""

    def test_disabled_by_default(self):
        config = CalibrationConfig()
        assert not config.auto_gas_deadzone_enabled
        assert not config.apply_auto_adjust(50)
        assert config.gas_deadzone_out == 93

    def test_never_raises_deadzone(self):
        config = CalibrationConfig(auto_gas_deadzone_minimum=50)
        assert not config.apply_auto_adjust(93)
        assert not config.apply_auto_adjust(95)
        assert config.gas_deadzone_out == 93

    def test_never_below_floor(self):
        config = CalibrationConfig(auto_gas_deadzone_minimum=85)
        assert not config.apply_auto_adjust(84)
        assert config.apply_auto_adjust(85)
        assert config.gas_deadzone_out == 85

    def test_zero_floor_is_enabled(self):
        config = CalibrationConfig(auto_gas_deadzone_minimum=0)
        assert config.auto_gas_deadzone_enabled


# ============================================
# Test: Runtime State
# ============================================

class TestRuntimeState:
    """RuntimeState.initial and reset."""

    def test_initial_timers(self):
        state = RuntimeState.initial(5000, device_id=3)
        assert state.device_id == 3
        assert state.last_full_throttle_time == 5000
        assert state.last_gas_activity_time == 5000
        assert state.estimate_window_start_time == 5000
        assert state.last_gas_alert_time == 0
        assert state.last_estimate_print_time == 0
        assert state.best_estimate_percent == 100
        assert state.controller_connected

    def test_reset_restores_detection_fields(self):
        state = RuntimeState.initial(0)
        state.is_racing = True
        state.peak_gas_in_window = 40000
        state.repeating_clutch_count = 3
        state.last_clutch_value = 1200
        state.last_gas_alert_time = 700
        state.best_estimate_percent = 80
        state.last_printed_estimate = 80
        state.estimate_window_peak_percent = 75
        state.last_estimate_print_time = 900

        state.reset(10_000)

        assert not state.is_racing
        assert state.peak_gas_in_window == 0
        assert state.repeating_clutch_count == 0
        assert state.last_clutch_value == 0
        assert state.best_estimate_percent == 100
        assert state.last_printed_estimate == 100
        assert state.estimate_window_peak_percent == 0
        assert state.last_full_throttle_time == 10_000
        assert state.last_gas_activity_time == 10_000
        assert state.estimate_window_start_time == 10_000

    def test_reset_restarts_alert_and_announcement_cooldowns(self):
        state = RuntimeState.initial(0)
        state.last_gas_alert_time = 9000
        state.last_estimate_print_time = 4000

        state.reset(10_000)

        assert state.last_gas_alert_time == 10_000
        assert state.last_estimate_print_time == 10_000

    def test_initial_has_no_alert_yet(self):
        state = RuntimeState.initial(10_000)
        state.reset(20_000)
        fresh = RuntimeState.initial(20_000)
        assert fresh.last_gas_alert_time == 0
        assert fresh.last_estimate_print_time == 0
        assert state.last_gas_alert_time == 20_000

    def test_reset_keeps_connection_latch_and_device(self):
        state = RuntimeState.initial(0, device_id=4)
        state.controller_connected = False
        state.last_disconnect_time_ms = 1234
        state.last_reconnect_time_ms = 999
        state.iteration = 17

        state.reset(2000)

        assert not state.controller_connected
        assert state.device_id == 4
        assert state.last_disconnect_time_ms == 1234
        assert state.last_reconnect_time_ms == 999
        assert state.iteration == 17
