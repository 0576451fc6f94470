"""Process entry point: ``python -m nvidia_gpu_exporter``."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from collections.abc import Sequence

from nvidia_gpu_exporter import __version__
from nvidia_gpu_exporter.collector import default_registry
from nvidia_gpu_exporter.core import DEFAULTS, ExporterConfig, LogConfig, WebConfig, configure_logging
from nvidia_gpu_exporter.core.config import LOG_FORMATS, LOG_LEVELS
from nvidia_gpu_exporter.web import create_app


def parse_args(argv: Sequence[str] | None = None) -> ExporterConfig:
    parser = argparse.ArgumentParser(
        prog="nvidia_gpu_exporter",
        description="Prometheus exporter for NVIDIA GPU device and process metrics.",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=DEFAULTS.web.listen_address,
        help="Address to listen on.",
    )
    parser.add_argument(
        "--web.telemetry-path",
        dest="telemetry_path",
        default=DEFAULTS.web.telemetry_path,
        help="Path under which to expose metrics.",
    )
    parser.add_argument(
        "--web.max-requests",
        dest="max_requests",
        type=int,
        default=DEFAULTS.web.max_requests,
        help="Maximum number of parallel scrape requests. Use 0 to disable.",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        choices=LOG_LEVELS,
        default=DEFAULTS.log.level,
        help="Only log messages with the given severity or above.",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        choices=LOG_FORMATS,
        default=DEFAULTS.log.format,
        help="Output format of log messages.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)
    return ExporterConfig(
        web=WebConfig(
            listen_address=args.listen_address,
            telemetry_path=args.telemetry_path,
            max_requests=args.max_requests,
        ),
        log=LogConfig(level=args.log_level, format=args.log_format),
    )


def main(argv: Sequence[str] | None = None) -> int:
    config = parse_args(argv)
    logger = configure_logging(config.log.level, config.log.format)

    try:
        server = create_app(default_registry(), config.web, logger.getChild("collector"))
    except Exception:
        logger.exception("failed to create metrics handler")
        return 1

    def _shutdown(signum: int, _frame: object) -> None:
        logger.info("received %s, shutting down", signal.Signals(signum).name)
        # shutdown() blocks until serve_forever returns, so it cannot run on
        # the thread that is serving.
        threading.Thread(target=server.stop, name="shutdown", daemon=True).start()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    logger.info(
        "starting exporter: addr=%s metrics_path=%s", config.web.listen_address, config.web.telemetry_path
    )
    try:
        server.serve_forever()
    except Exception:
        logger.exception("server error")
        return 1
    logger.info("exporter stopped")
    return 0


if __name__ == "__main__":
    logging.captureWarnings(True)
    sys.exit(main())
