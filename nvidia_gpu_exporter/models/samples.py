"""Dataclasses shared by the data providers and the collectors."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ScrapeOutcome:
    name: str
    duration_seconds: float
    success: float  # 1.0 or 0.0, exported as a gauge


@dataclass(slots=True)
class ProcessSample:
    """Last cumulative CPU time seen for a pid."""

    pid: int
    cpu_seconds: float
    sampled_at: float


@dataclass(slots=True)
class SystemCPUSample:
    total_seconds: float = 0.0
    initialized: bool = False


@dataclass(slots=True, frozen=True)
class ProcessMetadata:
    name: str
    uid: str
    command: str


@dataclass(slots=True, frozen=True)
class ProcessStats:
    metadata: ProcessMetadata
    memory_percent: float
    cpu_seconds: float


@dataclass(slots=True, frozen=True)
class GPUProcessUsage:
    """One process active on one device, as reported by the driver."""

    gpu_index: int
    pid: int
    memory_bytes: int | None
    name: str = ""


@dataclass(slots=True, frozen=True)
class DeviceInfo:
    index: int
    name: str
