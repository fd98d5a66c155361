"""
Pytest configuration and fixtures for Pedal Monitor Bridge tests.
"""
import os
import sys

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

# Set test environment before importing the package
os.environ["NO_TTS"] = "true"
os.environ["NO_CONSOLE_BANNER"] = "true"

from pedalmon.bridge import PedalBridge
from pedalmon.config import get_settings, load_settings
from pedalmon.models import CalibrationConfig, RuntimeState
from pedalmon.services.joystick import SimulatedJoystick
from pedalmon.services.speech import Speaker

START_MS = 1_000_000


class RecordingSpeaker(Speaker):
    """Speaker that remembers phrases instead of rendering them."""

    def __init__(self):
        super().__init__(enabled=False)
        self.spoken = []

    def speak(self, text: str) -> None:
        self.spoken.append(text)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def speaker():
    return RecordingSpeaker()


@pytest.fixture
def config():
    """Default calibration on a 16-bit axis with both monitors on."""
    return CalibrationConfig(monitor_clutch=True, monitor_gas=True)


@pytest.fixture
def state():
    return RuntimeState.initial(START_MS)


@pytest.fixture
def make_settings():
    def factory(**overrides):
        values = {"simulate": True, "joystick_id": 0, "sleep_time_ms": 10}
        values.update(overrides)
        return load_settings(**values)
    return factory


@pytest.fixture
def make_bridge(make_settings, speaker):
    """PedalBridge on a non-animated simulator; nothing is started."""
    def factory(device=None, clock=lambda: START_MS, **overrides):
        settings = make_settings(**overrides)
        device = device or SimulatedJoystick(
            axis_max=settings.axis_max,
            device_id=settings.joystick_id if settings.joystick_id <= 15 else 0,
            vendor_id=settings.target_vendor_id,
            product_id=settings.target_product_id,
        )
        return PedalBridge(settings, device=device, speaker=speaker, clock=clock)
    return factory
