"""Per-process GPU telemetry joined with host CPU and memory accounting."""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Any

from nvidia_gpu_exporter.core.errors import NoDataError
from nvidia_gpu_exporter.data.gpu import enumerate_gpu_processes
from nvidia_gpu_exporter.data.host import HostAccounting, ProcessLookupFailed, resolve_hostname
from nvidia_gpu_exporter.data.nvml import NVML_VALUE_NOT_AVAILABLE, GPUUnavailableError, NvmlDriver
from nvidia_gpu_exporter.models import GPUProcessUsage, ProcessSample, ProcessStats, SystemCPUSample

from .base import Collector, Emit, MetricDescriptor

SUBSYSTEM = "process"
_LABELS = ("hostname", "gpu_id", "pid", "process_name", "uid", "command")


def sanitize_bytes(value: Any) -> float:
    """GPU memory in bytes, or 0 for missing, non-positive or sentinel readings."""

    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or number <= 0 or number >= NVML_VALUE_NOT_AVAILABLE:
        return 0.0
    return number


def non_negative(value: float) -> float:
    if math.isnan(value) or value < 0:
        return 0.0
    return value


class GPUProcessCollector(Collector):
    """Reports GPU memory, CPU % and memory % for every process using a GPU.

    CPU % is derived from the change in a process's cumulative CPU time
    relative to the change in system-wide CPU time since the previous scrape,
    scaled by the logical CPU count. The previous samples are kept per pid
    and guarded by ``_lock`` for the whole cycle, since concurrent scrapes
    share this instance.
    """

    name = "gpu_process"

    def __init__(
        self,
        logger: logging.Logger | None = None,
        driver: Any | None = None,
        host: HostAccounting | None = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.driver = driver if driver is not None else NvmlDriver()
        self.host = host if host is not None else HostAccounting()
        self._lock = threading.Lock()
        self.cpu_samples: dict[int, ProcessSample] = {}
        self.system_sample = SystemCPUSample()

        self.process_gpu_memory = MetricDescriptor.build(
            SUBSYSTEM, "gpu_memory", "GPU process memory usage in bytes.", _LABELS
        )
        self.process_cpu = MetricDescriptor.build(SUBSYSTEM, "cpu", "Process CPU usage percentage.", _LABELS)
        self.process_memory = MetricDescriptor.build(
            SUBSYSTEM, "memory", "Process memory usage percentage.", _LABELS
        )

    def update(self, emit: Emit) -> None:
        with self._lock:
            self._update_locked(emit)

    def _enumerate(self) -> list[GPUProcessUsage]:
        try:
            with self.driver.session():
                return enumerate_gpu_processes(self.driver)
        except GPUUnavailableError as exc:
            self.logger.debug("gpu process listing unavailable: %s", exc)
            raise NoDataError(f"gpu process listing unavailable: {exc}") from exc

    def _update_locked(self, emit: Emit) -> None:
        hostname = resolve_hostname()
        usages = self._enumerate()
        if not usages:
            self.logger.debug("no gpu processes reported")
            self.reset_samples()
            return

        total_seconds = self.host.total_cpu_seconds()
        system_delta, has_system_delta = self.update_system_sample(total_seconds)
        num_cpu = self.host.logical_cpus()
        now = time.monotonic()

        # pid -> (stats, cpu %), computed once per cycle even when a pid
        # appears on several devices.
        per_pid: dict[int, tuple[ProcessStats, float] | None] = {}
        for usage in usages:
            if usage.pid in per_pid:
                continue
            try:
                stats = self.host.process_stats(usage.pid, usage.name)
            except ProcessLookupFailed as exc:
                self.logger.debug("failed to collect host process info: pid=%d err=%s", usage.pid, exc)
                # The system baseline moved on without this pid.
                self.cpu_samples.pop(usage.pid, None)
                per_pid[usage.pid] = None
                continue
            cpu_percent = self.process_cpu_percent(
                usage.pid, stats.cpu_seconds, system_delta, has_system_delta, num_cpu, now
            )
            per_pid[usage.pid] = (stats, cpu_percent)

        for usage in usages:
            entry = per_pid.get(usage.pid)
            if entry is None:
                continue
            stats, cpu_percent = entry
            labels = (
                hostname,
                str(usage.gpu_index),
                str(usage.pid),
                stats.metadata.name,
                stats.metadata.uid,
                stats.metadata.command,
            )
            emit(self.process_gpu_memory.sample(sanitize_bytes(usage.memory_bytes), *labels))
            emit(self.process_cpu.sample(non_negative(cpu_percent), *labels))
            emit(self.process_memory.sample(non_negative(stats.memory_percent), *labels))

        self.prune_samples({usage.pid for usage in usages})

    def process_cpu_percent(
        self,
        pid: int,
        cpu_seconds: float,
        system_delta: float,
        has_system_delta: bool,
        num_cpu: int,
        now: float | None = None,
    ) -> float:
        """Store the new sample for ``pid`` and return its CPU % since the last one."""

        previous = self.cpu_samples.get(pid)
        self.cpu_samples[pid] = ProcessSample(
            pid=pid, cpu_seconds=cpu_seconds, sampled_at=time.monotonic() if now is None else now
        )
        if previous is None or not has_system_delta or system_delta <= 0:
            return 0.0
        if cpu_seconds <= previous.cpu_seconds:
            return 0.0
        process_delta = cpu_seconds - previous.cpu_seconds
        return (process_delta / system_delta) * num_cpu * 100

    def update_system_sample(self, total_seconds: float) -> tuple[float, bool]:
        """Replace the system sample and return ``(delta, delta_is_valid)``."""

        if not self.system_sample.initialized:
            self.system_sample = SystemCPUSample(total_seconds=total_seconds, initialized=True)
            return 0.0, False
        delta = max(0.0, total_seconds - self.system_sample.total_seconds)
        self.system_sample = SystemCPUSample(total_seconds=total_seconds, initialized=True)
        if delta <= 0:
            return 0.0, False
        return delta, True

    def prune_samples(self, active: set[int]) -> None:
        for pid in [pid for pid in self.cpu_samples if pid not in active]:
            del self.cpu_samples[pid]

    def reset_samples(self) -> None:
        self.cpu_samples.clear()
        self.system_sample = SystemCPUSample()
