"""
Configuration Tests

Tests to verify:
1. Defaults match the classic monitor
2. Environment variables, including legacy names
3. Validation of ids, axes and feature combinations
4. Command-line flags layered over the environment

Run with: pytest tests/test_config.py -v
"""
import pytest

from pedalmon.config import get_settings, load_settings
from pedalmon.errors import ConfigurationError
from pedalmon.main import build_parser, main


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.delenv("NO_TTS", raising=False)
    monkeypatch.delenv("NO_CONSOLE_BANNER", raising=False)
    return monkeypatch


# ============================================
# Test: Defaults
# ============================================

class TestDefaults:
    """Settings with nothing configured."""

    def test_sampling_defaults(self, clean_env):
        settings = load_settings(simulate=True)
        assert settings.sleep_time_ms == 1000
        assert settings.iterations == 0
        assert settings.joystick_id == 17
        assert settings.joy_flags == 255
        assert settings.axis_max == 65535

    def test_detector_defaults(self, clean_env):
        settings = load_settings(simulate=True)
        assert settings.margin == 5
        assert settings.clutch_repeat == 4
        assert settings.gas_deadzone_in == 5
        assert settings.gas_deadzone_out == 93
        assert settings.gas_window == 30
        assert settings.gas_cooldown == 60
        assert settings.gas_timeout == 10
        assert settings.gas_min_usage == 20
        assert settings.auto_gas_deadzone_min == -1
        assert not settings.auto_gas_deadzone_enabled

    def test_output_defaults(self, clean_env):
        settings = load_settings(simulate=True)
        assert settings.telemetry
        assert settings.tts_enabled
        assert settings.http_port == 8181
        assert settings.queue_max_frames == 200

    def test_get_settings_is_cached(self, monkeypatch):
        monkeypatch.setenv("SIMULATE", "true")
        assert get_settings() is get_settings()


# ============================================
# Test: Environment
# ============================================

class TestEnvironment:
    """Values read from environment variables."""

    def test_field_names(self, monkeypatch):
        monkeypatch.setenv("SIMULATE", "true")
        monkeypatch.setenv("HTTP_PORT", "9000")
        monkeypatch.setenv("MONITOR_GAS", "true")
        settings = load_settings()
        assert settings.http_port == 9000
        assert settings.monitor_gas

    def test_legacy_names(self, monkeypatch):
        monkeypatch.setenv("VENDORID", "0EB7")
        monkeypatch.setenv("PRODUCTID", "1839")
        monkeypatch.setenv("SLEEPTIME", "20")
        monkeypatch.setenv("MONITORCLUTCH", "1")
        settings = load_settings()
        assert settings.target_vendor_id == 0x0EB7
        assert settings.target_product_id == 0x1839
        assert settings.has_device_identity
        assert settings.sleep_time_ms == 20
        assert settings.monitor_clutch

    def test_no_tts_overrides_tts(self, monkeypatch):
        monkeypatch.setenv("NO_TTS", "true")
        assert not load_settings(simulate=True, tts=True).tts_enabled

    def test_overrides_beat_environment(self, monkeypatch):
        monkeypatch.setenv("HTTP_PORT", "9000")
        assert load_settings(simulate=True, http_port=9100).http_port == 9100

    def test_none_overrides_are_ignored(self, monkeypatch):
        monkeypatch.setenv("HTTP_PORT", "9000")
        assert load_settings(simulate=True, http_port=None).http_port == 9000


# ============================================
# Test: Validation
# ============================================

class TestValidation:
    """Invalid settings raise ConfigurationError."""

    def test_raw_capture_axis_max(self):
        settings = load_settings(simulate=True, joy_flags=255 | 256)
        assert settings.axis_max == 1023

    def test_axis_selector_normalized(self):
        assert load_settings(simulate=True, gas_axis=" z ").gas_axis == "Z"

    def test_bad_axis_selector(self):
        with pytest.raises(ConfigurationError) as exc:
            load_settings(simulate=True, clutch_axis="Q")
        assert "clutch_axis" in str(exc.value)

    def test_bad_hex_id(self):
        with pytest.raises(ConfigurationError):
            load_settings(vendor_id="XYZ", product_id="1839")

    def test_blank_ids_mean_no_identity(self):
        settings = load_settings(simulate=True, vendor_id="", product_id="")
        assert settings.vendor_id is None
        assert not settings.has_device_identity

    def test_joystick_above_15_needs_identity(self, clean_env):
        with pytest.raises(ConfigurationError):
            load_settings()
        assert load_settings(joystick_id=3).joystick_id == 3
        assert load_settings(vendor_id="0EB7", product_id="1839").joystick_id == 17

    def test_estimate_requires_monitor_gas(self):
        with pytest.raises(ConfigurationError):
            load_settings(simulate=True, estimate_gas_deadzone=True)

    def test_auto_adjust_requires_estimator(self):
        with pytest.raises(ConfigurationError):
            load_settings(simulate=True, monitor_gas=True, auto_gas_deadzone_min=60)

    def test_auto_adjust_floor_not_above_deadzone_out(self):
        with pytest.raises(ConfigurationError):
            load_settings(
                simulate=True,
                monitor_gas=True,
                estimate_gas_deadzone=True,
                gas_deadzone_out=80,
                auto_gas_deadzone_min=85,
            )

    def test_percent_range(self):
        with pytest.raises(ConfigurationError):
            load_settings(simulate=True, gas_deadzone_out=101)


# ============================================
# Test: Command Line
# ============================================

class TestCommandLine:
    """argparse flags feed load_settings."""

    def parse(self, *argv):
        return load_settings(**vars(build_parser().parse_args(list(argv))))

    def test_unset_flags_fall_through(self, clean_env):
        clean_env.setenv("HTTP_PORT", "9001")
        settings = self.parse("--simulate")
        assert settings.http_port == 9001
        assert settings.telemetry

    def test_long_flag_names(self):
        settings = self.parse(
            "--vendor-id", "0EB7",
            "--product-id", "1839",
            "--monitor-gas",
            "--estimate-gas-deadzone-out",
            "--adjust-deadzone-out-with-minimum", "70",
            "--gas-deadzone-out", "90",
            "-s", "50",
        )
        assert settings.monitor_gas
        assert settings.estimate_gas_deadzone
        assert settings.auto_gas_deadzone_min == 70
        assert settings.gas_deadzone_out == 90
        assert settings.sleep_time_ms == 50

    def test_negative_flags(self):
        settings = self.parse("--simulate", "--no-telemetry", "--no-axis-normalization", "--brief", "--no-tts")
        assert not settings.telemetry
        assert not settings.axis_normalization
        assert not settings.verbose
        assert not settings.tts_enabled

    def test_main_rejects_invalid_configuration(self):
        assert main(["--simulate", "--estimate-gas-deadzone-out"]) == 1
