"""
Application configuration using pydantic-settings.
Loads from environment variables (and an optional .env file) with the
defaults of the classic pedal monitor. Command-line flags are layered on
top by pedalmon.main.
"""
from functools import lru_cache
from typing import Any, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pedalmon.errors import ConfigurationError
from pedalmon.services.joystick import AXIS_NAMES, JOY_RETURNALL, JOY_RETURNRAWDATA


def _env(*names: str) -> AliasChoices:
    """Field name first, then the legacy environment variable names."""
    return AliasChoices(*names)


class Settings(BaseSettings):
    """Startup parameters for the monitor and the telemetry bridge."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Pedal Monitor Bridge"
    app_version: str = "1.0.0"

    # Sampling loop
    sleep_time_ms: int = Field(1000, gt=0, validation_alias=_env("sleep_time_ms", "sleeptime"))
    iterations: int = Field(0, ge=0)  # 0 = run until stopped
    joystick_id: int = Field(17, ge=0, validation_alias=_env("joystick_id", "joystickid"))
    joy_flags: int = Field(JOY_RETURNALL, ge=0, validation_alias=_env("joy_flags", "joyflags"))
    vendor_id: Optional[str] = Field(None, validation_alias=_env("vendor_id", "vendorid"))
    product_id: Optional[str] = Field(None, validation_alias=_env("product_id", "productid"))
    rescan_interval_ms: int = Field(60000, gt=0)
    retry_interval_ms: int = Field(1000, gt=0)
    simulate: bool = False

    # Axis mapping
    gas_axis: str = "Y"
    clutch_axis: str = "R"
    brake_axis: str = "X"
    axis_normalization: bool = True

    # Clutch noise
    monitor_clutch: bool = Field(False, validation_alias=_env("monitor_clutch", "monitorclutch"))
    margin: int = Field(5, ge=0, le=100)
    clutch_repeat: int = Field(4, gt=0, validation_alias=_env("clutch_repeat", "clutchrepeat"))

    # Gas drift
    monitor_gas: bool = Field(False, validation_alias=_env("monitor_gas", "monitorgas"))
    gas_deadzone_in: int = Field(5, ge=0, le=100, validation_alias=_env("gas_deadzone_in", "gasdeadzonein"))
    gas_deadzone_out: int = Field(93, ge=0, le=100, validation_alias=_env("gas_deadzone_out", "gasdeadzoneout"))
    gas_window: int = Field(30, gt=0, validation_alias=_env("gas_window", "gaswindow"))
    gas_cooldown: int = Field(60, gt=0, validation_alias=_env("gas_cooldown", "gascooldown"))
    gas_timeout: int = Field(10, gt=0, validation_alias=_env("gas_timeout", "gastimeout"))
    gas_min_usage: int = Field(20, ge=0, le=100, validation_alias=_env("gas_min_usage", "gasminusage"))
    estimate_gas_deadzone: bool = Field(
        False, validation_alias=_env("estimate_gas_deadzone", "estimategasdeadzone")
    )
    auto_gas_deadzone_min: int = Field(
        -1, ge=-1, le=100, validation_alias=_env("auto_gas_deadzone_min", "autogasdeadzonemin")
    )

    # Logical percentage thresholds for the other pedals (default to the gas values)
    clutch_deadzone_in: Optional[int] = Field(None, ge=0, le=100)
    clutch_deadzone_out: Optional[int] = Field(None, ge=0, le=100)
    brake_deadzone_in: Optional[int] = Field(None, ge=0, le=100)
    brake_deadzone_out: Optional[int] = Field(None, ge=0, le=100)

    # Outputs
    telemetry: bool = True
    tts: bool = True
    no_tts: bool = Field(False, validation_alias=_env("no_tts", "notts"))
    tts_command: Optional[str] = None
    verbose: bool = False
    debug_raw: bool = Field(False, validation_alias=_env("debug_raw", "debugraw"))
    no_console_banner: bool = Field(False, validation_alias=_env("no_console_banner", "noconsolebanner"))
    log_json: bool = False

    # HTTP bridge
    http_host: str = "127.0.0.1"
    http_port: int = Field(8181, gt=0, lt=65536)
    queue_max_frames: int = Field(200, ge=0)  # 0 = unbounded
    stream_buffer_frames: int = Field(64, gt=0)

    @field_validator("gas_axis", "clutch_axis", "brake_axis", mode="before")
    @classmethod
    def check_axis_selector(cls, value: Any) -> str:
        axis = str(value).strip().upper()
        if axis not in AXIS_NAMES:
            raise ValueError(f"axis must be one of {', '.join(AXIS_NAMES)} (got {value!r})")
        return axis

    @field_validator("vendor_id", "product_id", mode="before")
    @classmethod
    def check_hex_id(cls, value: Any) -> Optional[str]:
        if value is None or str(value).strip() == "":
            return None
        text = str(value).strip()
        try:
            int(text, 16)
        except ValueError:
            raise ValueError(f"expected a hexadecimal id such as 0EB7 (got {value!r})")
        return text

    @model_validator(mode="after")
    def check_feature_combinations(self):
        """Cross-field rules between calibration and feature flags."""
        if self.estimate_gas_deadzone and not self.monitor_gas:
            raise ValueError("estimate_gas_deadzone requires monitor_gas")
        if self.auto_gas_deadzone_enabled:
            if not self.monitor_gas:
                raise ValueError("auto_gas_deadzone_min requires monitor_gas")
            if not self.estimate_gas_deadzone:
                raise ValueError("auto_gas_deadzone_min also requires estimate_gas_deadzone")
            if self.auto_gas_deadzone_min > self.gas_deadzone_out:
                raise ValueError(
                    f"auto_gas_deadzone_min ({self.auto_gas_deadzone_min}) must be <= "
                    f"gas_deadzone_out ({self.gas_deadzone_out})"
                )
        if self.joystick_id > 15 and not self.has_device_identity and not self.simulate:
            raise ValueError("joystick_id must be 0-15 unless vendor_id and product_id are given")
        return self

    # ============ Derived values ============

    @property
    def axis_max(self) -> int:
        """Raw capture reports 10-bit axes, normal capture 16-bit."""
        return 1023 if self.joy_flags & JOY_RETURNRAWDATA else 65535

    @property
    def target_vendor_id(self) -> int:
        return int(self.vendor_id, 16) if self.vendor_id else 0

    @property
    def target_product_id(self) -> int:
        return int(self.product_id, 16) if self.product_id else 0

    @property
    def has_device_identity(self) -> bool:
        return self.target_vendor_id != 0 and self.target_product_id != 0

    @property
    def tts_enabled(self) -> bool:
        return self.tts and not self.no_tts

    @property
    def auto_gas_deadzone_enabled(self) -> bool:
        return self.auto_gas_deadzone_min >= 0


def load_settings(**overrides: Any) -> Settings:
    """
    Build Settings from the environment plus explicit overrides.

    Raises:
        ConfigurationError: if any value is invalid.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return Settings(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return load_settings()
