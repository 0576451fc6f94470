"""Tests for the per-device telemetry collector."""

from __future__ import annotations

import logging

import pynvml
import pytest

from conftest import FakeDriver, FakeHost, driver_error
from nvidia_gpu_exporter.collector.metrics import GPUMetricsCollector
from nvidia_gpu_exporter.core.errors import NoDataError
from nvidia_gpu_exporter.data.nvml import DriverError, FieldId, GPUUnavailableError

FULL_READING = {
    FieldId.FB_FREE: 1000.0,
    FieldId.FB_USED: 3000.0,
    FieldId.FB_TOTAL: 4000.0,
    FieldId.GPU_TEMP: 65.0,
    FieldId.GPU_UTIL: 90.0,
    FieldId.MEM_COPY_UTIL: 30.0,
}


@pytest.fixture
def collector(fake_driver: FakeDriver, fake_host: FakeHost) -> GPUMetricsCollector:
    return GPUMetricsCollector(logging.getLogger("test.gpu_metrics"), driver=fake_driver, host=fake_host)


def run_cycle(collector: GPUMetricsCollector) -> dict[str, dict[tuple[str, ...], float]]:
    samples = []
    collector.update(samples.append)
    result: dict[str, dict[tuple[str, ...], float]] = {}
    for sample in samples:
        result.setdefault(sample.descriptor.name, {})[sample.label_values] = sample.value
    return result


def test_all_fields_emitted(collector, fake_driver):
    fake_driver.device_names[0] = "NVIDIA A100"
    fake_driver.field_values[0] = FULL_READING
    result = run_cycle(collector)

    labels = ("node-a", "0", "NVIDIA A100")
    assert result["gpu_metrics_free_memory"] == {labels: 1000.0}
    assert result["gpu_metrics_used_memory"] == {labels: 3000.0}
    assert result["gpu_metrics_total_memory"] == {labels: 4000.0}
    assert result["gpu_metrics_temperature"] == {labels: 65.0}
    assert result["gpu_metrics_gpu_utilization"] == {labels: 90.0}
    assert result["gpu_metrics_memory_copy_utilization"] == {labels: 30.0}
    assert result["gpu_metrics_cpu_utilization"] == {("node-a",): 12.5}
    assert result["gpu_metrics_memory_utilization"] == {("node-a",): 40.0}


def test_missing_temperature_is_omitted(collector, fake_driver):
    reading = dict(FULL_READING)
    del reading[FieldId.GPU_TEMP]
    fake_driver.field_values[0] = reading
    result = run_cycle(collector)

    assert "gpu_metrics_temperature" not in result
    for name in (
        "gpu_metrics_free_memory",
        "gpu_metrics_used_memory",
        "gpu_metrics_total_memory",
        "gpu_metrics_gpu_utilization",
        "gpu_metrics_memory_copy_utilization",
    ):
        assert len(result[name]) == 1


def test_watch_and_group_released_every_cycle(collector, fake_driver):
    fake_driver.devices = [(0, "h0"), (1, "h1")]
    fake_driver.field_values = {0: FULL_READING, 1: FULL_READING}
    run_cycle(collector)
    run_cycle(collector)

    assert fake_driver.groups == set()
    assert fake_driver.watches == set()
    assert fake_driver.destroyed.count("watch") == 4
    assert fake_driver.destroyed.count("group") == 4


def test_read_failure_skips_device_and_still_releases(collector, fake_driver):
    fake_driver.devices = [(0, "h0"), (1, "h1")]
    fake_driver.field_values = {0: driver_error(pynvml.NVML_ERROR_GPU_IS_LOST), 1: FULL_READING}
    result = run_cycle(collector)

    assert [labels[1] for labels in result["gpu_metrics_used_memory"]] == ["1"]
    assert fake_driver.groups == set()
    assert fake_driver.watches == set()


def test_watch_setup_failure_aborts_cycle_and_releases_group(collector, fake_driver):
    fake_driver.field_values[0] = FULL_READING
    fake_driver.watch_error = driver_error(pynvml.NVML_ERROR_UNKNOWN, "watch fields")

    with pytest.raises(DriverError):
        run_cycle(collector)
    assert fake_driver.groups == set()
    assert fake_driver.destroyed == ["group"]


def test_group_setup_failure_aborts_cycle(collector, fake_driver):
    fake_driver.create_group_error = driver_error(pynvml.NVML_ERROR_UNKNOWN, "create field group")
    with pytest.raises(DriverError):
        run_cycle(collector)
    assert fake_driver.destroyed == []


def test_device_info_failure_skips_device(collector, fake_driver):
    fake_driver.devices = [(0, "h0"), (1, "h1")]
    fake_driver.device_names[0] = driver_error(pynvml.NVML_ERROR_GPU_IS_LOST)
    fake_driver.field_values = {0: FULL_READING, 1: FULL_READING}
    result = run_cycle(collector)

    assert [labels[1] for labels in result["gpu_metrics_free_memory"]] == ["1"]


def test_unavailable_driver_is_no_data(collector, fake_driver):
    fake_driver.session_error = GPUUnavailableError("nvml init", pynvml.NVML_ERROR_DRIVER_NOT_LOADED)
    with pytest.raises(NoDataError):
        run_cycle(collector)


def test_no_devices_still_reports_node_metrics(collector, fake_driver):
    fake_driver.devices = []
    result = run_cycle(collector)

    assert set(result) == {"gpu_metrics_cpu_utilization", "gpu_metrics_memory_utilization"}


def test_node_read_failures_are_skipped(collector, fake_driver, fake_host):
    fake_driver.field_values[0] = FULL_READING
    fake_host.node_cpu = RuntimeError("cpu times unavailable")
    result = run_cycle(collector)

    assert "gpu_metrics_cpu_utilization" not in result
    assert "gpu_metrics_memory_utilization" in result
    assert "gpu_metrics_used_memory" in result
