"""Models exported by the GPU exporter."""

from .samples import (
    DeviceInfo,
    GPUProcessUsage,
    ProcessMetadata,
    ProcessSample,
    ProcessStats,
    ScrapeOutcome,
    SystemCPUSample,
)

__all__ = [
    "DeviceInfo",
    "GPUProcessUsage",
    "ProcessMetadata",
    "ProcessSample",
    "ProcessStats",
    "ScrapeOutcome",
    "SystemCPUSample",
]
