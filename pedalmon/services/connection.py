"""
Controller connection handling for the sampling loop.

Each iteration calls ConnectionManager.poll(). A failed read is never
raised: it becomes a state transition.

With a vendor/product identity configured the manager latches
CONNECTED -> DISCONNECTED on the first failed read, then rescans by
identity once per iteration (at the rescan cadence) until the device is
back, at which point RuntimeState is reset. Without an identity a failed
read is only logged and retried after a short pause.
"""
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from pedalmon.errors import DeviceNotFoundError
from pedalmon.models import RuntimeState
from pedalmon.services.joystick import AxisReading, JoystickDevice

logger = structlog.get_logger(__name__)

MSG_DISCONNECTED = "Controller disconnected. Waiting..."
MSG_FOUND = "Controller found. Resuming monitoring."
MSG_NOT_FOUND = "Controller not found. Retrying."

MAX_JOYSTICK_ID = 15


@dataclass
class PollResult:
    """Outcome of one iteration's device access."""
    delay_ms: int
    reading: Optional[AxisReading] = None
    error_code: int = 0
    disconnected: bool = False  # CONNECTED -> DISCONNECTED happened this iteration
    reconnected: bool = False  # DISCONNECTED -> CONNECTED happened this iteration

    @property
    def ok(self) -> bool:
        return self.reading is not None


class ConnectionManager:
    """Polls the device and drives the disconnect/reconnect latch."""

    def __init__(
        self,
        device: JoystickDevice,
        state: RuntimeState,
        joy_flags: int,
        sleep_ms: int,
        vendor_id: int = 0,
        product_id: int = 0,
        rescan_interval_ms: int = 60000,
        retry_interval_ms: int = 1000,
        speak: Optional[Callable[[str], None]] = None,
        on_disconnect: Optional[Callable[[int], None]] = None,
        on_reconnect: Optional[Callable[[int], None]] = None,
    ):
        self.device = device
        self.state = state
        self.joy_flags = joy_flags
        self.sleep_ms = sleep_ms
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.rescan_interval_ms = rescan_interval_ms
        self.retry_interval_ms = retry_interval_ms
        self._speak = speak or (lambda text: None)
        self._on_disconnect = on_disconnect or (lambda now_ms: None)
        self._on_reconnect = on_reconnect or (lambda now_ms: None)

    @property
    def has_identity(self) -> bool:
        return self.vendor_id != 0 and self.product_id != 0

    @property
    def connected(self) -> bool:
        return self.state.controller_connected

    def resolve_initial_device(self) -> int:
        """
        Pick the device id to start with.

        An id above 15 means "find by vendor/product". Failing that lookup
        at startup is fatal.

        Raises:
            DeviceNotFoundError: no enumerated device matches the identity.
        """
        if self.state.device_id > MAX_JOYSTICK_ID and self.has_identity:
            found = self.device.find_device(self.vendor_id, self.product_id)
            if found is None:
                raise DeviceNotFoundError(
                    f"Device VendorId={self.vendor_id:04X}, ProductId={self.product_id:04X} not found at startup",
                    vendor_id=self.vendor_id,
                    product_id=self.product_id,
                )
            self.state.device_id = found
            logger.info("Controller located", device_id=found)
        return self.state.device_id

    def poll(self, now_ms: int) -> PollResult:
        reading = self.device.poll_axes(self.state.device_id, self.joy_flags)
        if reading.ok:
            result = PollResult(delay_ms=self.sleep_ms, reading=reading)
            if not self.state.controller_connected:
                # Answering again at the same id
                self._reconnect(self.state.device_id, now_ms)
                result.reconnected = True
            return result

        logger.debug("Error reading joystick", device_id=self.state.device_id, code=reading.result_code)

        if not self.has_identity:
            logger.warning(
                "Joystick read failed, retrying",
                device_id=self.state.device_id,
                code=reading.result_code,
                retry_ms=self.retry_interval_ms,
            )
            return PollResult(delay_ms=self.retry_interval_ms, error_code=reading.result_code)

        result = PollResult(delay_ms=self.rescan_interval_ms, error_code=reading.result_code)

        if self.state.controller_connected:
            self.state.controller_connected = False
            self.state.last_disconnect_time_ms = now_ms
            result.disconnected = True
            logger.warning("Controller disconnected", device_id=self.state.device_id, code=reading.result_code)
            self._on_disconnect(now_ms)
            self._speak(MSG_DISCONNECTED)

        found = self.device.find_device(self.vendor_id, self.product_id)
        if found is None:
            logger.info("Controller not found, rescanning later", retry_ms=self.rescan_interval_ms)
            self._speak(MSG_NOT_FOUND)
            return result

        self._reconnect(found, now_ms)
        result.reconnected = True
        result.delay_ms = self.sleep_ms
        return result

    def _reconnect(self, device_id: int, now_ms: int) -> None:
        self.state.device_id = device_id
        self.state.controller_connected = True
        self.state.last_reconnect_time_ms = now_ms
        self.state.reset(now_ms)
        logger.info("Controller reconnected", device_id=device_id)
        self._on_reconnect(now_ms)
        self._speak(MSG_FOUND)
