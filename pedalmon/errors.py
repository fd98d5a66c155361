"""
Exceptions for the pedal monitor bridge.

Hardware read failures during steady-state sampling are NOT raised: they are
reported as a non-zero result code on AxisReading and handled by the
ConnectionManager. The exceptions below only surface at startup.
"""


class PedalMonitorError(Exception):
    """Base exception for all pedal monitor errors."""


class ConfigurationError(PedalMonitorError):
    """Raised when startup parameters are invalid or inconsistent."""


class DeviceNotFoundError(PedalMonitorError):
    """Raised when no enumerated joystick matches the requested identity."""

    def __init__(self, message: str, vendor_id: int = 0, product_id: int = 0):
        self.vendor_id = vendor_id
        self.product_id = product_id
        super().__init__(message)


class HardwareReadError(PedalMonitorError):
    """Raised when the joystick backend itself cannot be used (e.g. no winmm.dll)."""


class TransportError(PedalMonitorError):
    """Raised when the telemetry HTTP listener cannot bind its port."""

    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        super().__init__(f"Cannot listen on {host}:{port}: {reason}")
