"""Per-device GPU telemetry plus node-level CPU and memory utilisation."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from nvidia_gpu_exporter.core.errors import NoDataError
from nvidia_gpu_exporter.data.host import HostAccounting, resolve_hostname
from nvidia_gpu_exporter.data.nvml import DriverError, FieldId, GPUUnavailableError, NvmlDriver

from .base import Collector, Emit, MetricDescriptor

SUBSYSTEM = "metrics"
_DEVICE_LABELS = ("hostname", "gpu_id", "gpu_name")

GPU_METRIC_FIELDS = (
    FieldId.FB_FREE,
    FieldId.FB_USED,
    FieldId.FB_TOTAL,
    FieldId.GPU_TEMP,
    FieldId.GPU_UTIL,
    FieldId.MEM_COPY_UTIL,
)


class GPUMetricsCollector(Collector):
    """Reads a fixed set of fields from every visible device."""

    name = "gpu_metrics"

    def __init__(
        self,
        logger: logging.Logger | None = None,
        driver: Any | None = None,
        host: HostAccounting | None = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.driver = driver if driver is not None else NvmlDriver()
        self.host = host if host is not None else HostAccounting()

        def _device(name: str, documentation: str) -> MetricDescriptor:
            return MetricDescriptor.build(SUBSYSTEM, name, documentation, _DEVICE_LABELS)

        self.field_descriptors: dict[FieldId, MetricDescriptor] = {
            FieldId.FB_FREE: _device("free_memory", "GPU free memory in bytes."),
            FieldId.FB_USED: _device("used_memory", "GPU used memory in bytes."),
            FieldId.FB_TOTAL: _device("total_memory", "GPU total memory in bytes."),
            FieldId.GPU_TEMP: _device("temperature", "GPU temperature in Celsius."),
            FieldId.GPU_UTIL: _device("gpu_utilization", "GPU utilization percentage."),
            FieldId.MEM_COPY_UTIL: _device(
                "memory_copy_utilization", "GPU memory copy engine utilization percentage."
            ),
        }
        self.cpu_utilization = MetricDescriptor.build(
            SUBSYSTEM, "cpu_utilization", "Node total CPU utilization percentage.", ("hostname",)
        )
        self.memory_utilization = MetricDescriptor.build(
            SUBSYSTEM, "memory_utilization", "Node total memory utilization percentage.", ("hostname",)
        )

    def update(self, emit: Emit) -> None:
        hostname = resolve_hostname()
        try:
            with self.driver.session():
                self._collect_devices(emit, hostname)
        except GPUUnavailableError as exc:
            raise NoDataError(f"gpu metrics unavailable: {exc}") from exc
        self._collect_node(emit, hostname)

    def _collect_devices(self, emit: Emit, hostname: str) -> None:
        devices = self.driver.enumerate_devices()
        if not devices:
            self.logger.warning("driver did not report any GPUs on this node")
            return

        for index, handle in devices:
            try:
                info = self.driver.device_info(index, handle)
            except DriverError as exc:
                self.logger.warning("failed to query device info: gpu_id=%d err=%s", index, exc)
                continue

            with self.field_watch(index) as watch_id:
                try:
                    values = self.driver.latest_values(watch_id, handle)
                except DriverError as exc:
                    self.logger.warning("failed to collect field values: gpu_id=%d err=%s", index, exc)
                    continue

            labels = (hostname, str(index), info.name)
            for field_id in GPU_METRIC_FIELDS:
                if field_id in values:
                    emit(self.field_descriptors[field_id].sample(values[field_id], *labels))

    @contextmanager
    def field_watch(self, gpu_index: int) -> Iterator[int]:
        """Create a field group and a watch on it, releasing both on exit.

        Setup failures propagate; release failures are only logged.
        """

        suffix = time.time_ns()
        group_id = self.driver.create_field_group(f"gpu-metrics-fields-{gpu_index}-{suffix}", GPU_METRIC_FIELDS)
        try:
            watch_id = self.driver.watch_fields(gpu_index, group_id, f"gpu-metrics-watch-{gpu_index}-{suffix}")
            try:
                yield watch_id
            finally:
                try:
                    self.driver.destroy_watch(watch_id)
                except DriverError as exc:
                    self.logger.debug("failed to destroy watch: gpu_id=%d err=%s", gpu_index, exc)
        finally:
            try:
                self.driver.destroy_field_group(group_id)
            except DriverError as exc:
                self.logger.debug("failed to destroy field group: gpu_id=%d err=%s", gpu_index, exc)

    def _collect_node(self, emit: Emit, hostname: str) -> None:
        # Node readings are best effort; device metrics stand on their own.
        try:
            emit(self.cpu_utilization.sample(self.host.cpu_percent(), hostname))
        except Exception as exc:
            self.logger.debug("failed to read node cpu utilization: %s", exc)
        try:
            emit(self.memory_utilization.sample(self.host.memory_percent(), hostname))
        except Exception as exc:
            self.logger.debug("failed to read node memory utilization: %s", exc)
