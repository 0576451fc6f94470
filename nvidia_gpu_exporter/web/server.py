"""HTTP server exposing the exporter's metrics endpoint."""

from __future__ import annotations

import html
import logging
import threading
from functools import partial
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, ClassVar

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from nvidia_gpu_exporter.collector import ScrapeOrchestrator
from nvidia_gpu_exporter.collector.registry import CollectorRegistry as ExporterCollectors
from nvidia_gpu_exporter.core.config import APP_NAME, WebConfig

logger = logging.getLogger(__name__)

_LANDING_PAGE = """<html>
<head><title>NVIDIA GPU Exporter</title></head>
<body>
<h1>NVIDIA GPU Exporter</h1>
<p><a href="{path}">Metrics</a></p>
</body>
</html>
"""


def build_registry(collectors: ExporterCollectors, log: logging.Logger | None = None) -> CollectorRegistry:
    """Assemble the Prometheus registry served on the metrics path.

    Raises :class:`~nvidia_gpu_exporter.core.errors.CollectorInitError` when a
    collector cannot be constructed.
    """

    orchestrator = ScrapeOrchestrator(collectors, log or logging.getLogger(f"{APP_NAME}.collector"))
    registry = CollectorRegistry(auto_describe=True)
    registry.register(orchestrator)
    return registry


class MetricsRequestHandler(BaseHTTPRequestHandler):
    """Serves the metrics path and a landing page."""

    server_version: ClassVar[str] = "NvidiaGPUExporter/1.0"

    def __init__(
        self,
        *args: Any,
        registry: CollectorRegistry,
        telemetry_path: str,
        in_flight: threading.BoundedSemaphore | None,
        **kwargs: Any,
    ) -> None:
        self._registry = registry
        self._telemetry_path = telemetry_path
        self._in_flight = in_flight
        super().__init__(*args, **kwargs)

    def do_GET(self) -> None:  # noqa: N802
        path = self.path.split("?", 1)[0]
        if path == self._telemetry_path:
            self._send_metrics()
            return
        if path in {"/", "/index.html"}:
            body = _LANDING_PAGE.format(path=html.escape(self._telemetry_path)).encode("utf-8")
            self._send(HTTPStatus.OK, body, "text/html; charset=utf-8")
            return
        self._send(HTTPStatus.NOT_FOUND, b"404 page not found\n", "text/plain; charset=utf-8")

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002 - parity with BaseHTTPRequestHandler
        logger.debug("%s - %s", self.client_address[0], format % args)

    def _send_metrics(self) -> None:
        if self._in_flight is not None and not self._in_flight.acquire(blocking=False):
            logger.warning("too many concurrent scrape requests from %s", self.client_address[0])
            self._send(
                HTTPStatus.SERVICE_UNAVAILABLE,
                b"Limit of concurrent requests reached, try again later.\n",
                "text/plain; charset=utf-8",
            )
            return
        # The slot stays held until the body is written, slow readers included.
        try:
            try:
                body = generate_latest(self._registry)
            except Exception:
                logger.exception("error gathering metrics")
                self._send(
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    b"An error has occurred while serving metrics.\n",
                    "text/plain; charset=utf-8",
                )
                return
            self._send(HTTPStatus.OK, body, CONTENT_TYPE_LATEST)
        finally:
            if self._in_flight is not None:
                self._in_flight.release()

    def _send(self, status: HTTPStatus, body: bytes, content_type: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class ExporterServer:
    """Wraps the HTTP server around a ready metrics registry."""

    def __init__(self, registry: CollectorRegistry, config: WebConfig) -> None:
        in_flight = threading.BoundedSemaphore(config.max_requests) if config.max_requests > 0 else None
        handler = partial(
            MetricsRequestHandler,
            registry=registry,
            telemetry_path=config.telemetry_path,
            in_flight=in_flight,
        )
        self._httpd = ThreadingHTTPServer(config.bind_address(), handler)
        self._httpd.daemon_threads = True

    def serve_forever(self) -> None:
        try:
            self._httpd.serve_forever()
        finally:
            self._httpd.server_close()

    def stop(self) -> None:
        """Stop ``serve_forever``; safe to call from another thread."""

        self._httpd.shutdown()

    def server_address(self) -> str:
        host, port = self._httpd.server_address[:2]
        return f"http://{host or '0.0.0.0'}:{port}"


def create_app(
    collectors: ExporterCollectors,
    config: WebConfig | None = None,
    log: logging.Logger | None = None,
) -> ExporterServer:
    """Factory helper used by the entry point and tests."""

    return ExporterServer(build_registry(collectors, log), config or WebConfig())
