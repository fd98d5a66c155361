"""
Joystick axis sources.

The sampling loop only needs two calls from a device backend:

    poll_axes(device_id, flags) -> AxisReading   (result_code 0 = success)
    find_device(vendor_id, product_id) -> device id or None

WinMMJoystick binds the Windows multimedia joystick API (joyGetPosEx /
joyGetDevCaps) through ctypes. SimulatedJoystick produces pedal motion in
software for development machines and tests.
"""
import ctypes
import math
import random
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import structlog

from pedalmon.errors import HardwareReadError

logger = structlog.get_logger(__name__)

# ============ WinMM constants ============

JOY_RETURNX = 0x0001
JOY_RETURNY = 0x0002
JOY_RETURNZ = 0x0004
JOY_RETURNR = 0x0008
JOY_RETURNU = 0x0010
JOY_RETURNV = 0x0020
JOY_RETURNPOV = 0x0040
JOY_RETURNBUTTONS = 0x0080
JOY_RETURNRAWDATA = 0x0100
JOY_RETURNALL = 0x00FF

JOYERR_NOERROR = 0
JOYERR_UNPLUGGED = 167

AXIS_NAMES = ("X", "Y", "Z", "R", "U", "V")


@dataclass(frozen=True)
class AxisReading:
    """One poll of the six joystick axes plus the backend result code."""
    x: int = 0
    y: int = 0
    z: int = 0
    r: int = 0
    u: int = 0
    v: int = 0
    result_code: int = JOYERR_NOERROR

    @property
    def ok(self) -> bool:
        return self.result_code == JOYERR_NOERROR

    def axis(self, name: str) -> int:
        """Value of axis X, Y, Z, R, U or V."""
        return getattr(self, name.lower())


class JoystickDevice(ABC):
    """Backend interface used by the ConnectionManager."""

    @abstractmethod
    def poll_axes(self, device_id: int, flags: int) -> AxisReading:
        """Read all axes. Failures are reported through result_code, never raised."""

    @abstractmethod
    def find_device(self, vendor_id: int, product_id: int) -> Optional[int]:
        """Return the id of the first device matching vendor/product, or None."""

    def describe(self, device_id: int) -> Optional[dict]:
        """VID/PID/name of a device for the startup banner, None if unknown."""
        return None


# ============ WinMM (ctypes) ============

class JOYINFOEX(ctypes.Structure):
    _fields_ = [
        ("dwSize", ctypes.c_uint32),
        ("dwFlags", ctypes.c_uint32),
        ("dwXpos", ctypes.c_uint32),
        ("dwYpos", ctypes.c_uint32),
        ("dwZpos", ctypes.c_uint32),
        ("dwRpos", ctypes.c_uint32),
        ("dwUpos", ctypes.c_uint32),
        ("dwVpos", ctypes.c_uint32),
        ("dwButtons", ctypes.c_uint32),
        ("dwButtonNumber", ctypes.c_uint32),
        ("dwPOV", ctypes.c_uint32),
        ("dwReserved1", ctypes.c_uint32),
        ("dwReserved2", ctypes.c_uint32),
    ]


class JOYCAPSA(ctypes.Structure):
    _fields_ = [
        ("wMid", ctypes.c_uint16),
        ("wPid", ctypes.c_uint16),
        ("szPname", ctypes.c_char * 32),
        ("wXmin", ctypes.c_uint32),
        ("wXmax", ctypes.c_uint32),
        ("wYmin", ctypes.c_uint32),
        ("wYmax", ctypes.c_uint32),
        ("wZmin", ctypes.c_uint32),
        ("wZmax", ctypes.c_uint32),
        ("wNumButtons", ctypes.c_uint32),
        ("wPeriodMin", ctypes.c_uint32),
        ("wPeriodMax", ctypes.c_uint32),
        ("wRmin", ctypes.c_uint32),
        ("wRmax", ctypes.c_uint32),
        ("wUmin", ctypes.c_uint32),
        ("wUmax", ctypes.c_uint32),
        ("wVmin", ctypes.c_uint32),
        ("wVmax", ctypes.c_uint32),
        ("wCaps", ctypes.c_uint32),
        ("wMaxAxes", ctypes.c_uint32),
        ("wNumAxes", ctypes.c_uint32),
        ("wMaxButtons", ctypes.c_uint32),
        ("szRegKey", ctypes.c_char * 32),
        ("szOEMVxD", ctypes.c_char * 260),
    ]


class WinMMJoystick(JoystickDevice):
    """Joystick access through winmm.dll."""

    def __init__(self):
        if sys.platform != "win32":
            raise HardwareReadError("winmm joystick API is only available on Windows (use --simulate)")
        try:
            winmm = ctypes.WinDLL("winmm")
        except OSError as e:
            raise HardwareReadError(f"Failed to load winmm.dll: {e}") from e

        self._joyGetPosEx = winmm.joyGetPosEx
        self._joyGetPosEx.argtypes = [ctypes.c_uint, ctypes.POINTER(JOYINFOEX)]
        self._joyGetPosEx.restype = ctypes.c_uint

        self._joyGetNumDevs = winmm.joyGetNumDevs
        self._joyGetNumDevs.argtypes = []
        self._joyGetNumDevs.restype = ctypes.c_uint

        self._joyGetDevCapsA = winmm.joyGetDevCapsA
        self._joyGetDevCapsA.argtypes = [ctypes.c_size_t, ctypes.POINTER(JOYCAPSA), ctypes.c_uint]
        self._joyGetDevCapsA.restype = ctypes.c_uint

    def poll_axes(self, device_id: int, flags: int) -> AxisReading:
        info = JOYINFOEX()
        info.dwSize = ctypes.sizeof(JOYINFOEX)
        info.dwFlags = flags
        result = self._joyGetPosEx(device_id, ctypes.byref(info))
        return AxisReading(
            x=info.dwXpos,
            y=info.dwYpos,
            z=info.dwZpos,
            r=info.dwRpos,
            u=info.dwUpos,
            v=info.dwVpos,
            result_code=result,
        )

    def find_device(self, vendor_id: int, product_id: int) -> Optional[int]:
        caps = JOYCAPSA()
        for device_id in range(self._joyGetNumDevs()):
            if self._joyGetDevCapsA(device_id, ctypes.byref(caps), ctypes.sizeof(caps)) != JOYERR_NOERROR:
                continue
            if caps.wMid == vendor_id and caps.wPid == product_id:
                return device_id
        return None

    def describe(self, device_id: int) -> Optional[dict]:
        caps = JOYCAPSA()
        if self._joyGetDevCapsA(device_id, ctypes.byref(caps), ctypes.sizeof(caps)) != JOYERR_NOERROR:
            return None
        return {
            "vendor_id": f"{caps.wMid:04X}",
            "product_id": f"{caps.wPid:04X}",
            "name": caps.szPname.decode("ascii", errors="ignore"),
        }


# ============ Simulation ============

class SimulatedJoystick(JoystickDevice):
    """
    Software pedal set.

    Pedal positions are travel values in 0..axis_max (0 = released). When
    `inverted` is set, they are reported the way Fanatec pedals report raw
    data (idle near axis_max), so the default axis normalization undoes it.

    With `animate=True` every poll advances a lap-like throttle pattern;
    otherwise the positions stay where set_pedals() put them.
    """

    def __init__(
        self,
        axis_max: int = 65535,
        device_id: int = 0,
        vendor_id: int = 0,
        product_id: int = 0,
        inverted: bool = True,
        animate: bool = False,
        seed: Optional[int] = None,
    ):
        self.axis_max = axis_max
        self.device_id = device_id
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.inverted = inverted
        self.animate = animate
        self.connected = True
        self.poll_count = 0
        self.find_count = 0

        self._gas = 0
        self._clutch = 0
        self._brake = 0
        self._tick = 0
        self._rng = random.Random(seed)

    def set_pedals(self, gas: int = 0, clutch: int = 0, brake: int = 0) -> None:
        """Set travel values (0 = released, axis_max = floored)."""
        self._gas = self._clamp(gas)
        self._clutch = self._clamp(clutch)
        self._brake = self._clamp(brake)

    def unplug(self) -> None:
        self.connected = False

    def plug(self, device_id: Optional[int] = None) -> None:
        if device_id is not None:
            self.device_id = device_id
        self.connected = True

    def poll_axes(self, device_id: int, flags: int) -> AxisReading:
        self.poll_count += 1
        if not self.connected or device_id != self.device_id:
            return AxisReading(result_code=JOYERR_UNPLUGGED)

        if self.animate:
            self._advance()

        return AxisReading(
            x=self._raw(self._brake),
            y=self._raw(self._gas),
            z=0,
            r=self._raw(self._clutch),
            u=0,
            v=0,
        )

    def find_device(self, vendor_id: int, product_id: int) -> Optional[int]:
        self.find_count += 1
        if self.connected and vendor_id == self.vendor_id and product_id == self.product_id:
            return self.device_id
        return None

    def describe(self, device_id: int) -> Optional[dict]:
        if not self.connected or device_id != self.device_id:
            return None
        return {
            "vendor_id": f"{self.vendor_id:04X}",
            "product_id": f"{self.product_id:04X}",
            "name": "Simulated pedals",
        }

    def _clamp(self, value: int) -> int:
        return max(0, min(self.axis_max, int(value)))

    def _raw(self, travel: int) -> int:
        return self.axis_max - travel if self.inverted else travel

    def _advance(self) -> None:
        """One step of a 40-sample "lap": straight, braking zone, corner exit."""
        self._tick += 1
        phase = self._tick % 40
        if phase < 15:
            gas = 1.0
            brake = 0.0
        elif phase < 20:
            gas = 0.0
            brake = 0.8 + self._rng.gauss(0, 0.05)
        else:
            gas = 0.3 + 0.6 * math.sin(math.pi * (phase - 20) / 40)
            brake = 0.0
        gas += self._rng.gauss(0, 0.01)
        self._gas = self._clamp(gas * self.axis_max)
        self._brake = self._clamp(brake * self.axis_max)
        self._clutch = 0
