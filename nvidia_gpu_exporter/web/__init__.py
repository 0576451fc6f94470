"""Web package for the GPU exporter."""

from __future__ import annotations

__all__ = [
    "build_registry",
    "create_app",
]

from .server import build_registry, create_app  # noqa: E402
