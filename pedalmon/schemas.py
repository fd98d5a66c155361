"""
Pydantic schemas for the telemetry wire format.

Frames keep the field names the pedal dashboard already consumes (a mix of
snake_case and camelCase). Attributes are snake_case; the wire name is set
as an alias where it differs, so serialize with by_alias=True.
"""
from typing import List

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = 1


# ============ Telemetry Frame ============

class TelemetryFrame(BaseModel):
    """
    Snapshot of one sampling iteration: configuration echo, runtime state,
    the sample itself, one-shot events and timing. Flags are 0/1 integers.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # Configuration echo
    verbose_flag: int = 0
    monitor_clutch: int = 0
    monitor_gas: int = 0
    gas_deadzone_in: int = 0
    gas_deadzone_out: int = 0
    brake_deadzone_in: int = 0
    brake_deadzone_out: int = 0
    clutch_deadzone_in: int = 0
    clutch_deadzone_out: int = 0
    gas_window: int = 0
    gas_cooldown: int = 0
    gas_timeout: int = 0
    gas_min_usage_percent: int = 0
    axis_normalization_enabled: int = 0
    debug_raw_mode: int = 0
    clutch_repeat_required: int = 0
    estimate_gas_deadzone_enabled: int = 0
    auto_gas_deadzone_enabled: int = 0
    auto_gas_deadzone_minimum: int = 0
    target_vendor_id: int = 0
    target_product_id: int = 0
    telemetry_enabled: int = 0
    tts_enabled: int = 0
    ipc_enabled: int = 0  # no IPC transport; kept for dashboard compatibility
    no_console_banner: int = 0
    joy_id: int = Field(0, alias="joy_ID")
    joy_flags: int = Field(0, alias="joy_Flags")
    iterations: int = 0
    margin: int = 0
    sleep_time: int = Field(0, alias="sleep_Time")
    axis_max: int = Field(0, alias="axisMax")
    axis_margin: int = Field(0, alias="axisMargin")
    gas_idle_max: int = Field(0, alias="gasIdleMax")
    gas_full_min: int = Field(0, alias="gasFullMin")
    brake_idle_max: int = Field(0, alias="brakeIdleMax")
    brake_full_min: int = Field(0, alias="brakeFullMin")
    clutch_idle_max: int = Field(0, alias="clutchIdleMax")
    clutch_full_min: int = Field(0, alias="clutchFullMin")
    gas_timeout_ms: int = 0
    gas_window_ms: int = 0
    gas_cooldown_ms: int = 0

    # Runtime state
    last_clutch_value: int = Field(0, alias="lastClutchValue")
    repeating_clutch_count: int = Field(0, alias="repeatingClutchCount")
    is_racing: int = Field(0, alias="isRacing")
    peak_gas_in_window: int = Field(0, alias="peakGasInWindow")
    last_full_throttle_time: int = Field(0, alias="lastFullThrottleTime")
    last_gas_activity_time: int = Field(0, alias="lastGasActivityTime")
    last_gas_alert_time: int = Field(0, alias="lastGasAlertTime")
    best_estimate_percent: int = 100
    last_printed_estimate: int = 100
    estimate_window_peak_percent: int = 0
    estimate_window_start_time: int = 0
    last_estimate_print_time: int = 0
    last_disconnect_time_ms: int = 0
    last_reconnect_time_ms: int = 0
    controller_connected: int = 1
    iteration: int = Field(0, alias="iLoop")

    # Sample
    current_time: int = Field(0, alias="currentTime")
    raw_gas: int = Field(0, alias="rawGas")
    raw_clutch: int = Field(0, alias="rawClutch")
    raw_brake: int = Field(0, alias="rawBrake")
    gas_value: int = Field(0, alias="gasValue")
    clutch_value: int = Field(0, alias="clutchValue")
    brake_value: int = Field(0, alias="brakeValue")
    gas_physical_pct: int = 0
    clutch_physical_pct: int = 0
    brake_physical_pct: int = 0
    gas_logical_pct: int = 0
    clutch_logical_pct: int = 0
    brake_logical_pct: int = 0
    closure: int = 0
    percent_reached: int = Field(0, alias="percentReached")
    current_percent: int = Field(0, alias="currentPercent")

    # One-shot events
    gas_alert_triggered: int = 0
    clutch_alert_triggered: int = 0
    controller_disconnected: int = 0
    controller_reconnected: int = 0
    gas_estimate_decreased: int = 0
    gas_auto_adjust_applied: int = 0

    # Timing
    producer_loop_start_ms: int = 0
    producer_notify_ms: int = 0
    full_loop_time_ms: int = Field(0, alias="fullLoopTime_ms")
    telemetry_sequence: int = 0
    received_at_unix_ms: int = Field(0, alias="receivedAtUnixMs")
    metric_http_process_ms: float = Field(0, alias="metricHttpProcessMs")
    metric_tts_speak_ms: float = Field(0, alias="metricTtsSpeakMs")
    metric_loop_process_ms: float = Field(0, alias="metricLoopProcessMs")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


# ============ Batch Envelope ============

class BridgeInfo(BaseModel):
    """Batch metadata of one poll response."""
    model_config = ConfigDict(populate_by_name=True)

    batch_id: int = Field(..., alias="batchId")
    served_at_unix_ms: int = Field(..., alias="servedAtUnixMs")
    pending_frame_count: int = Field(..., alias="pendingFrameCount")


class BridgeEnvelope(BaseModel):
    """Response body of GET /: every frame queued since the previous poll."""
    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(SCHEMA_VERSION, alias="schemaVersion")
    bridge_info: BridgeInfo = Field(..., alias="bridgeInfo")
    frames: List[TelemetryFrame] = Field(default_factory=list)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


# ============ Health ============

class HealthResponse(BaseModel):
    """Liveness plus a few pipeline counters."""
    status: str = "healthy"
    version: str
    queue_depth: int = 0
    dropped_frames: int = 0
    controller_connected: bool = True
    telemetry_sequence: int = 0
    batch_id: int = 0
