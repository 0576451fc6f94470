"""Thin adapter over NVML (pynvml) used by the collectors.

The adapter converts ``pynvml.NVMLError`` into :class:`DriverError` (and
:class:`GPUUnavailableError` when the driver or library is structurally
unavailable) so callers never depend on pynvml's error classes directly.

Field telemetry follows a group/watch protocol: a caller creates a field
group, attaches a watch for a device, reads the latest values and releases
both handles. NVML has no server-side watches, so the adapter keeps the
group and watch tables itself; reading requires a live watch and releasing
an unknown handle is an error, which keeps leaks observable.
"""

from __future__ import annotations

import enum
import itertools
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import pynvml

from nvidia_gpu_exporter.core.errors import ExporterError
from nvidia_gpu_exporter.models import DeviceInfo

logger = logging.getLogger(__name__)

# pynvml reports "value not available" for per-process memory as this sentinel
# on older releases and as None on newer ones.
NVML_VALUE_NOT_AVAILABLE = 2**64 - 1

# Blank markers NVML uses for 32-bit and 64-bit readings it could not take.
_BLANK_VALUES = frozenset({2**32 - 1, NVML_VALUE_NOT_AVAILABLE})


class ContextKind(str, enum.Enum):
    COMPUTE = "compute"
    GRAPHICS = "graphics"


class FieldId(enum.IntEnum):
    """Telemetry field ids, numbered as DCGM numbers them."""

    FB_FREE = 251
    FB_USED = 252
    FB_TOTAL = 250
    GPU_TEMP = 150
    GPU_UTIL = 203
    MEM_COPY_UTIL = 204


class DriverError(ExporterError):
    """A driver call failed."""

    def __init__(self, op: str, code: int | None = None, detail: str = "") -> None:
        message = f"{op}: {detail}" if detail else op
        super().__init__(message)
        self.op = op
        self.code = code


class GPUUnavailableError(DriverError):
    """The driver, library or capability is not usable on this host."""


UNAVAILABLE_CODES = frozenset(
    {
        pynvml.NVML_ERROR_UNINITIALIZED,
        pynvml.NVML_ERROR_LIBRARY_NOT_FOUND,
        pynvml.NVML_ERROR_DRIVER_NOT_LOADED,
        pynvml.NVML_ERROR_NOT_SUPPORTED,
        pynvml.NVML_ERROR_NO_PERMISSION,
        pynvml.NVML_ERROR_UNKNOWN,
    }
)

# Answers that mean "this query has nothing for you" rather than a fault.
EMPTY_RESULT_CODES = frozenset(
    {
        pynvml.NVML_ERROR_NOT_SUPPORTED,
        pynvml.NVML_ERROR_NO_PERMISSION,
        pynvml.NVML_ERROR_NOT_FOUND,
    }
)

_FIELD_SOURCES: dict[FieldId, tuple[str, str | None]] = {
    FieldId.FB_FREE: ("memory", "free"),
    FieldId.FB_USED: ("memory", "used"),
    FieldId.FB_TOTAL: ("memory", "total"),
    FieldId.GPU_TEMP: ("temperature", None),
    FieldId.GPU_UTIL: ("utilization", "gpu"),
    FieldId.MEM_COPY_UTIL: ("utilization", "memory"),
}


def _error_string(exc: pynvml.NVMLError) -> str:
    try:
        return str(exc)
    except Exception:  # pragma: no cover - pynvml formats lazily through the library
        return f"NVML error {getattr(exc, 'value', '?')}"


def _wrap(op: str, exc: pynvml.NVMLError, *, availability: bool = False) -> DriverError:
    code = getattr(exc, "value", None)
    if availability and code in UNAVAILABLE_CODES:
        return GPUUnavailableError(op, code, _error_string(exc))
    return DriverError(op, code, _error_string(exc))


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    try:
        return int(value) in _BLANK_VALUES
    except (TypeError, ValueError):
        return True


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value) if value is not None else ""


@dataclass(slots=True, frozen=True)
class _Watch:
    gpu_index: int
    group_id: int
    name: str


class NvmlDriver:
    """Device, process and field queries against the NVIDIA driver."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._groups: dict[int, tuple[FieldId, ...]] = {}
        self._watches: dict[int, _Watch] = {}

    @contextmanager
    def session(self) -> Iterator[NvmlDriver]:
        """Initialise NVML for the duration of the block.

        NVML reference-counts init/shutdown, so concurrent sessions from
        different collectors are safe.
        """

        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as exc:
            raise _wrap("nvml init", exc, availability=True) from exc
        try:
            yield self
        finally:
            try:
                pynvml.nvmlShutdown()
            except pynvml.NVMLError as exc:
                logger.debug("failed to shutdown nvml: %s", _error_string(exc))

    def device_count(self) -> int:
        try:
            return int(pynvml.nvmlDeviceGetCount())
        except pynvml.NVMLError as exc:
            raise _wrap("nvml device count", exc, availability=True) from exc

    def device_handle(self, index: int) -> Any:
        try:
            return pynvml.nvmlDeviceGetHandleByIndex(index)
        except pynvml.NVMLError as exc:
            raise _wrap(f"nvml device handle (index={index})", exc) from exc

    def enumerate_devices(self) -> list[tuple[int, Any]]:
        return [(index, self.device_handle(index)) for index in range(self.device_count())]

    def device_info(self, index: int, handle: Any) -> DeviceInfo:
        try:
            name = _decode(pynvml.nvmlDeviceGetName(handle)).strip()
        except pynvml.NVMLError as exc:
            raise _wrap(f"nvml device name (index={index})", exc) from exc
        return DeviceInfo(index=index, name=name or f"gpu-{index}")

    def running_processes(self, handle: Any, kind: ContextKind) -> list[tuple[int, int | None]]:
        """Return ``(pid, used_gpu_memory)`` pairs for one context kind."""

        query = (
            pynvml.nvmlDeviceGetComputeRunningProcesses
            if kind is ContextKind.COMPUTE
            else pynvml.nvmlDeviceGetGraphicsRunningProcesses
        )
        try:
            processes = query(handle)
        except pynvml.NVMLError as exc:
            raise _wrap(f"nvml {kind.value} running processes", exc) from exc
        return [(int(proc.pid), getattr(proc, "usedGpuMemory", None)) for proc in processes]

    def process_name(self, pid: int) -> str:
        """Best-effort driver-side process name; empty when unknown."""

        try:
            return _decode(pynvml.nvmlSystemGetProcessName(pid)).strip()
        except pynvml.NVMLError:
            return ""

    # Field group / watch protocol

    def create_field_group(self, name: str, fields: tuple[FieldId, ...] | list[FieldId]) -> int:
        if not fields:
            raise DriverError(f"create field group {name!r}", detail="no fields requested")
        with self._lock:
            group_id = next(self._ids)
            self._groups[group_id] = tuple(fields)
        return group_id

    def destroy_field_group(self, group_id: int) -> None:
        with self._lock:
            if self._groups.pop(group_id, None) is None:
                raise DriverError(f"destroy field group {group_id}", detail="unknown field group")

    def watch_fields(self, gpu_index: int, group_id: int, name: str) -> int:
        with self._lock:
            if group_id not in self._groups:
                raise DriverError(f"watch fields {name!r}", detail=f"unknown field group {group_id}")
            watch_id = next(self._ids)
            self._watches[watch_id] = _Watch(gpu_index=gpu_index, group_id=group_id, name=name)
        return watch_id

    def destroy_watch(self, watch_id: int) -> None:
        with self._lock:
            if self._watches.pop(watch_id, None) is None:
                raise DriverError(f"destroy watch {watch_id}", detail="unknown watch")

    def open_handles(self) -> int:
        with self._lock:
            return len(self._groups) + len(self._watches)

    def latest_values(self, watch_id: int, handle: Any) -> dict[FieldId, float]:
        """Read the watched fields; blank or unsupported fields are left out."""

        with self._lock:
            watch = self._watches.get(watch_id)
            fields = self._groups.get(watch.group_id, ()) if watch else ()
        if watch is None:
            raise DriverError(f"latest values (watch={watch_id})", detail="unknown watch")

        sources: dict[str, Any] = {}
        values: dict[FieldId, float] = {}
        for field_id in fields:
            source, attr = _FIELD_SOURCES[field_id]
            if source not in sources:
                sources[source] = self._read_source(source, handle, watch.gpu_index)
            raw = sources[source]
            if raw is None:
                continue
            value = getattr(raw, attr, None) if attr else raw
            if _is_blank(value):
                logger.debug("nvml field %s blank for gpu %d", field_id.name, watch.gpu_index)
                continue
            values[field_id] = float(value)
        return values

    def _read_source(self, source: str, handle: Any, gpu_index: int) -> Any:
        try:
            if source == "memory":
                return pynvml.nvmlDeviceGetMemoryInfo(handle)
            if source == "temperature":
                return pynvml.nvmlDeviceGetTemperature(handle, pynvml.NVML_TEMPERATURE_GPU)
            return pynvml.nvmlDeviceGetUtilizationRates(handle)
        except pynvml.NVMLError as exc:
            if getattr(exc, "value", None) in EMPTY_RESULT_CODES:
                logger.debug("nvml %s unavailable for gpu %d: %s", source, gpu_index, _error_string(exc))
                return None
            raise _wrap(f"nvml {source} (gpu={gpu_index})", exc) from exc
