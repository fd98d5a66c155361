"""
Pedal Monitor Bridge

Samples racing pedal axes, detects clutch noise and gas drift, and serves
every sample as telemetry frames over HTTP.
"""

__version__ = "1.0.0"
