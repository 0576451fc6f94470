"""Core utilities for the GPU exporter."""

from __future__ import annotations

from .config import (
    APP_NAME,
    DEFAULTS,
    MAX_COMMAND_LABEL_LENGTH,
    NAMESPACE,
    UNKNOWN_LABEL,
    ExporterConfig,
    LogConfig,
    WebConfig,
)
from .logging import configure_logging

__all__ = [
    "APP_NAME",
    "DEFAULTS",
    "MAX_COMMAND_LABEL_LENGTH",
    "NAMESPACE",
    "UNKNOWN_LABEL",
    "ExporterConfig",
    "LogConfig",
    "WebConfig",
    "configure_logging",
]
