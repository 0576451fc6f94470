"""Prometheus exporter for NVIDIA GPU device and process telemetry."""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "collector",
    "core",
    "data",
    "models",
    "web",
]
