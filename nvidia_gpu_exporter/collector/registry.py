"""Explicit registry of collector factories and their long-lived instances."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .base import Collector
from .metrics import GPUMetricsCollector
from .process import GPUProcessCollector

CollectorFactory = Callable[[logging.Logger], Collector]


class CollectorRegistry:
    """Maps collector names to factories and caches the built instances.

    Instances are created on first request and shared by every orchestrator
    built from the same registry, so cross-scrape state survives.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._factories: dict[str, CollectorFactory] = {}
        self._instances: dict[str, Collector] = {}

    def register(self, name: str, factory: CollectorFactory) -> None:
        with self._lock:
            if name in self._factories:
                raise ValueError(f"collector {name!r} is already registered")
            self._factories[name] = factory

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._factories

    def __len__(self) -> int:
        with self._lock:
            return len(self._factories)

    def get_or_create(self, name: str, logger: logging.Logger) -> Collector:
        """Return the cached instance for ``name``, building it if needed.

        Factory exceptions propagate unchanged and nothing is cached.
        """

        with self._lock:
            instance = self._instances.get(name)
            if instance is not None:
                return instance
            factory = self._factories[name]
            instance = factory(logger)
            self._instances[name] = instance
            return instance


def default_registry() -> CollectorRegistry:
    """Registry with every collector this exporter ships."""

    registry = CollectorRegistry()
    registry.register(GPUMetricsCollector.name, GPUMetricsCollector)
    registry.register(GPUProcessCollector.name, GPUProcessCollector)
    return registry
