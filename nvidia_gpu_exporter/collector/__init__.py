"""Telemetry collectors and the scrape orchestrator."""

from __future__ import annotations

from .base import Collector, Emit, MetricDescriptor, MetricSample
from .metrics import GPUMetricsCollector
from .orchestrator import ScrapeOrchestrator, execute
from .process import GPUProcessCollector
from .registry import CollectorRegistry, default_registry

__all__ = [
    "Collector",
    "CollectorRegistry",
    "Emit",
    "GPUMetricsCollector",
    "GPUProcessCollector",
    "MetricDescriptor",
    "MetricSample",
    "ScrapeOrchestrator",
    "default_registry",
    "execute",
]
