"""Sampling, detection and telemetry services."""
