"""Global configuration values for the GPU exporter."""

from __future__ import annotations

from dataclasses import dataclass, field

LOG_LEVELS = ("debug", "info", "warn", "error")
LOG_FORMATS = ("logfmt", "json")


@dataclass(frozen=True)
class WebConfig:
    """HTTP listener settings."""

    listen_address: str = ":9432"
    telemetry_path: str = "/metrics"
    max_requests: int = 40  # 0 disables the limit

    def bind_address(self) -> tuple[str, int]:
        """Split ``listen_address`` into a ``(host, port)`` pair.

        An empty host (``":9432"``) binds every interface.
        """

        host, sep, port = self.listen_address.rpartition(":")
        if not sep:
            raise ValueError(f"listen address {self.listen_address!r} has no port")
        try:
            port_number = int(port)
        except ValueError as exc:
            raise ValueError(f"invalid port in listen address {self.listen_address!r}") from exc
        return host.strip("[]"), port_number


@dataclass(frozen=True)
class LogConfig:
    """Logging verbosity and line format."""

    level: str = "info"
    format: str = "logfmt"


@dataclass(frozen=True)
class ExporterConfig:
    web: WebConfig = field(default_factory=WebConfig)
    log: LogConfig = field(default_factory=LogConfig)


APP_NAME = "nvidia_gpu_exporter"
NAMESPACE = "gpu"
NODE_NAME_ENV = "NODE_NAME"
UNKNOWN_LABEL = "unknown"
MAX_COMMAND_LABEL_LENGTH = 200
DEFAULTS = ExporterConfig()
