"""Shared fakes for the driver and host accounting."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator

import pytest

from nvidia_gpu_exporter.data.host import ProcessLookupFailed
from nvidia_gpu_exporter.data.nvml import ContextKind, DriverError, FieldId
from nvidia_gpu_exporter.models import DeviceInfo, ProcessMetadata, ProcessStats


class FakeDriver:
    """In-memory stand-in for :class:`~nvidia_gpu_exporter.data.nvml.NvmlDriver`."""

    def __init__(self) -> None:
        self.devices: list[tuple[int, Any]] = [(0, "handle-0")]
        self.session_error: Exception | None = None
        self.processes: dict[tuple[int, ContextKind], Any] = {}
        self.names: dict[int, str] = {}
        self.device_names: dict[int, Any] = {}
        self.field_values: dict[int, Any] = {}
        self.create_group_error: Exception | None = None
        self.watch_error: Exception | None = None
        self.groups: set[int] = set()
        self.watches: set[tuple[int, int]] = set()
        self.destroyed: list[str] = []
        self._next_id = 0
        self._lock = threading.Lock()
        self.active_sessions = 0
        self.max_active_sessions = 0
        self.on_enumerate: Any = None

    @contextmanager
    def session(self) -> Iterator[FakeDriver]:
        if self.session_error is not None:
            raise self.session_error
        with self._lock:
            self.active_sessions += 1
            self.max_active_sessions = max(self.max_active_sessions, self.active_sessions)
        try:
            yield self
        finally:
            with self._lock:
                self.active_sessions -= 1

    def enumerate_devices(self) -> list[tuple[int, Any]]:
        if self.on_enumerate is not None:
            self.on_enumerate()
        return list(self.devices)

    def set_processes(self, gpu_index: int, kind: ContextKind, value: Any) -> None:
        self.processes[(gpu_index, kind)] = value

    def running_processes(self, handle: Any, kind: ContextKind) -> list[tuple[int, int | None]]:
        index = next(i for i, h in self.devices if h == handle)
        value = self.processes.get((index, kind), [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    def process_name(self, pid: int) -> str:
        return self.names.get(pid, "")

    def device_info(self, index: int, handle: Any) -> DeviceInfo:
        value = self.device_names.get(index, f"Fake GPU {index}")
        if isinstance(value, Exception):
            raise value
        return DeviceInfo(index=index, name=value)

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def create_field_group(self, name: str, fields: Any) -> int:
        if self.create_group_error is not None:
            raise self.create_group_error
        group_id = self._new_id()
        self.groups.add(group_id)
        return group_id

    def destroy_field_group(self, group_id: int) -> None:
        self.groups.remove(group_id)
        self.destroyed.append("group")

    def watch_fields(self, gpu_index: int, group_id: int, name: str) -> int:
        if self.watch_error is not None:
            raise self.watch_error
        watch_id = self._new_id()
        self.watches.add((watch_id, gpu_index))
        return watch_id

    def destroy_watch(self, watch_id: int) -> None:
        match = next(entry for entry in self.watches if entry[0] == watch_id)
        self.watches.remove(match)
        self.destroyed.append("watch")

    def latest_values(self, watch_id: int, handle: Any) -> dict[FieldId, float]:
        gpu_index = next(index for wid, index in self.watches if wid == watch_id)
        value = self.field_values.get(gpu_index, {})
        if isinstance(value, Exception):
            raise value
        return dict(value)


class FakeHost:
    """Host accounting with scripted readings."""

    def __init__(self, cpus: int = 8) -> None:
        self.cpus = cpus
        self.total_seconds = 0.0
        self.cpu_seconds: dict[int, float] = {}
        self.memory: dict[int, float] = {}
        self.failing: set[int] = set()
        self.metadata: dict[int, ProcessMetadata] = {}
        self.lookups: list[int] = []
        self.node_cpu: Any = 12.5
        self.node_memory: Any = 40.0
        self._lock = threading.Lock()

    def process_stats(self, pid: int, fallback_name: str = "") -> ProcessStats:
        with self._lock:
            self.lookups.append(pid)
        if pid in self.failing:
            raise ProcessLookupFailed(pid, "no such process")
        metadata = self.metadata.get(
            pid, ProcessMetadata(name=fallback_name or f"proc-{pid}", uid="1000", command=f"/bin/proc-{pid}")
        )
        return ProcessStats(
            metadata=metadata,
            memory_percent=self.memory.get(pid, 1.5),
            cpu_seconds=self.cpu_seconds.get(pid, 0.0),
        )

    def total_cpu_seconds(self) -> float:
        return self.total_seconds

    def logical_cpus(self) -> int:
        return self.cpus

    def cpu_percent(self) -> float:
        if isinstance(self.node_cpu, Exception):
            raise self.node_cpu
        return self.node_cpu

    def memory_percent(self) -> float:
        if isinstance(self.node_memory, Exception):
            raise self.node_memory
        return self.node_memory


def driver_error(code: int, op: str = "fake op") -> DriverError:
    return DriverError(op, code, "fake failure")


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture(autouse=True)
def _fixed_hostname(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NODE_NAME", "node-a")
