"""
Pedal Monitor Bridge - entry point.

Starts the sampling thread and serves its frames over HTTP:

    GET /          drain queued frames as one batch envelope
    OPTIONS /      CORS preflight
    GET /stream    live frames (Server-Sent Events)
    GET /health    liveness and pipeline counters
    GET /QUIT      graceful shutdown

Usage:
    pedalmon --joystick 0 --monitor-clutch --monitor-gas
    pedalmon --simulate --monitor-gas --estimate-gas-deadzone-out --verbose
"""
import argparse
import logging
import socket
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pedalmon import __version__
from pedalmon.bridge import PedalBridge
from pedalmon.config import Settings, load_settings
from pedalmon.errors import PedalMonitorError, TransportError
from pedalmon.routes import stream, telemetry

logger = structlog.get_logger(__name__)


def configure_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """Structured logging on top of the stdlib root logger."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def create_app(bridge: PedalBridge) -> FastAPI:
    """FastAPI app whose lifespan starts and stops the bridge."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Starting pedal monitor", version=__version__, device_id=bridge.state.device_id)
        bridge.start()

        yield

        # Shutdown
        logger.info("Shutting down pedal monitor")
        bridge.stop()

    app = FastAPI(
        title=bridge.settings.app_name,
        version=bridge.settings.app_version,
        description="Racing pedal telemetry bridge",
        lifespan=lifespan,
    )
    app.state.bridge = bridge
    app.include_router(telemetry.router)
    app.include_router(stream.router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception", path=request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


def bind_socket(host: str, port: int) -> socket.socket:
    """
    Bind the listening socket up front so a busy port is reported before
    the sampler starts.

    Raises:
        TransportError: the address cannot be bound.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    if sys.platform != "win32":
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise TransportError(host, port, e.strerror or str(e)) from e
    return sock


# ============ Command line ============

def build_parser() -> argparse.ArgumentParser:
    """
    Command-line flags. Every default is None so that unset flags fall
    through to environment variables and Settings defaults.
    """
    parser = argparse.ArgumentParser(prog="pedalmon", description="Racing pedal monitor and telemetry bridge")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    general = parser.add_argument_group("general")
    general.add_argument("--iterations", "-i", type=int, help="Stop after N samples (default: 0 = run forever)")
    general.add_argument("--sleep", "-s", type=int, dest="sleep_time_ms", help="Sample interval in ms (default: 1000)")
    general.add_argument("--joystick", "-j", type=int, dest="joystick_id", help="Joystick id 0-15 (default: 17 = find by vendor/product)")
    general.add_argument("--flags", "-f", type=int, dest="joy_flags", help="joyGetPosEx flags (default: 255)")
    general.add_argument("--vendor-id", dest="vendor_id", help="USB vendor id in hex, enables reconnect")
    general.add_argument("--product-id", dest="product_id", help="USB product id in hex, enables reconnect")
    general.add_argument("--simulate", action="store_true", default=None, help="Use simulated pedals")
    general.add_argument("--verbose", action="store_true", default=None, help="Debug logging with per-sample traces")
    general.add_argument("--brief", action="store_false", dest="verbose", default=None, help="Turn off --verbose")
    general.add_argument("--debug-raw", action="store_true", dest="debug_raw", default=None, help="Trace raw and normalized axis values")
    general.add_argument("--no-axis-normalization", action="store_false", dest="axis_normalization", default=None, help="Do not invert raw axis values")
    general.add_argument("--no-console-banner", action="store_true", dest="no_console_banner", default=None, help="Skip the startup banner")
    general.add_argument("--log-json", action="store_true", dest="log_json", default=None, help="Emit JSON log lines")

    axes = parser.add_argument_group("axes")
    axes.add_argument("--gas-axis", dest="gas_axis", help="Gas axis X/Y/Z/R/U/V (default: Y)")
    axes.add_argument("--clutch-axis", dest="clutch_axis", help="Clutch axis (default: R)")
    axes.add_argument("--brake-axis", dest="brake_axis", help="Brake axis (default: X)")

    clutch = parser.add_argument_group("clutch noise")
    clutch.add_argument("--monitor-clutch", action="store_true", dest="monitor_clutch", default=None)
    clutch.add_argument("--margin", "-m", type=int, help="Still-clutch margin in percent (default: 5)")
    clutch.add_argument("--clutch-repeat", type=int, dest="clutch_repeat", help="Consecutive still samples for an alert (default: 4)")
    clutch.add_argument("--clutch-deadzone-in", type=int, dest="clutch_deadzone_in")
    clutch.add_argument("--clutch-deadzone-out", type=int, dest="clutch_deadzone_out")
    clutch.add_argument("--brake-deadzone-in", type=int, dest="brake_deadzone_in")
    clutch.add_argument("--brake-deadzone-out", type=int, dest="brake_deadzone_out")

    gas = parser.add_argument_group("gas drift")
    gas.add_argument("--monitor-gas", action="store_true", dest="monitor_gas", default=None)
    gas.add_argument("--gas-deadzone-in", type=int, dest="gas_deadzone_in", help="Idle band in percent (default: 5)")
    gas.add_argument("--gas-deadzone-out", type=int, dest="gas_deadzone_out", help="Full-throttle threshold in percent (default: 93)")
    gas.add_argument("--gas-window", type=int, dest="gas_window", help="Seconds without full throttle before an alert (default: 30)")
    gas.add_argument("--gas-cooldown", type=int, dest="gas_cooldown", help="Seconds between alerts and estimates (default: 60)")
    gas.add_argument("--gas-timeout", type=int, dest="gas_timeout", help="Idle seconds before auto-pause (default: 10)")
    gas.add_argument("--gas-min-usage", type=int, dest="gas_min_usage", help="Minimum travel percent that counts (default: 20)")
    gas.add_argument("--estimate-gas-deadzone-out", action="store_true", dest="estimate_gas_deadzone", default=None)
    gas.add_argument(
        "--adjust-deadzone-out-with-minimum",
        type=int,
        dest="auto_gas_deadzone_min",
        help="Apply estimates to --gas-deadzone-out, never below this percent",
    )

    outputs = parser.add_argument_group("outputs")
    outputs.add_argument("--telemetry", action="store_true", default=None, help="Publish frames (default: on)")
    outputs.add_argument("--no-telemetry", action="store_false", dest="telemetry", default=None)
    outputs.add_argument("--tts", action="store_true", default=None, help="Spoken alerts (default: on)")
    outputs.add_argument("--no-tts", action="store_true", dest="no_tts", default=None)
    outputs.add_argument("--tts-command", dest="tts_command", help="Speech command template, {text} is the phrase")
    outputs.add_argument("--host", dest="http_host", help="HTTP listen address (default: 127.0.0.1)")
    outputs.add_argument("--port", type=int, dest="http_port", help="HTTP port (default: 8181)")
    outputs.add_argument("--queue-max-frames", type=int, dest="queue_max_frames", help="Frames kept between polls (default: 200)")

    return parser


def log_banner(settings: Settings, bridge: PedalBridge) -> None:
    config = bridge.config
    logger.info("=" * 50)
    logger.info("Pedal Monitor Bridge", version=__version__)
    logger.info("=" * 50)
    logger.info(
        "Device",
        joystick_id=bridge.state.device_id,
        vendor_id=settings.vendor_id,
        product_id=settings.product_id,
        simulate=settings.simulate,
        axis_max=config.axis_max,
    )
    detected = bridge.device.describe(bridge.state.device_id)
    if detected:
        logger.info("Controller", **detected)
    else:
        logger.warning("Controller not answering yet", joystick_id=bridge.state.device_id)
    logger.info(
        "Clutch",
        monitor=settings.monitor_clutch,
        margin=config.margin,
        repeat=config.clutch_repeat_required,
        axis=settings.clutch_axis,
    )
    logger.info(
        "Gas",
        monitor=settings.monitor_gas,
        deadzone_in=config.gas_deadzone_in,
        deadzone_out=config.gas_deadzone_out,
        window=config.gas_window,
        cooldown=config.gas_cooldown,
        timeout=config.gas_timeout,
        min_usage=config.gas_min_usage_percent,
        estimate=config.estimate_gas_deadzone_enabled,
        auto_min=config.auto_gas_deadzone_minimum,
        axis=settings.gas_axis,
    )
    logger.info(
        "Outputs",
        telemetry=settings.telemetry,
        tts=settings.tts_enabled,
        http=f"http://{settings.http_host}:{settings.http_port}/",
        sleep_ms=settings.sleep_time_ms,
        iterations=settings.iterations,
    )
    logger.info("=" * 50)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(**vars(args))
    except PedalMonitorError as e:
        configure_logging()
        logger.error(str(e))
        return 1

    configure_logging(settings.verbose, settings.log_json)

    try:
        bridge = PedalBridge(settings)
        bridge.open()
        sock = bind_socket(settings.http_host, settings.http_port)
    except PedalMonitorError as e:
        logger.error(str(e))
        return 1

    if not settings.no_console_banner:
        log_banner(settings, bridge)

    app = create_app(bridge)
    config = uvicorn.Config(
        app,
        log_config=None,
        log_level="debug" if settings.verbose else "info",
        access_log=False,
    )
    server = uvicorn.Server(config)
    bridge.on_shutdown_request(lambda: setattr(server, "should_exit", True))

    logger.info("HTTP telemetry endpoint listening", url=f"http://{settings.http_host}:{settings.http_port}/")
    try:
        server.run(sockets=[sock])
    finally:
        sock.close()
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
