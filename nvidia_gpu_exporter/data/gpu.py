"""Enumeration of processes holding GPU contexts."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from nvidia_gpu_exporter.models import GPUProcessUsage

from .nvml import EMPTY_RESULT_CODES, ContextKind, DriverError

logger = logging.getLogger(__name__)


class ProcessDriver(Protocol):
    def enumerate_devices(self) -> list[tuple[int, Any]]: ...

    def running_processes(self, handle: Any, kind: ContextKind) -> list[tuple[int, int | None]]: ...

    def process_name(self, pid: int) -> str: ...


def _merge_context(
    found: dict[int, int | None],
    driver: ProcessDriver,
    handle: Any,
    kind: ContextKind,
    gpu_index: int,
) -> None:
    try:
        processes = driver.running_processes(handle, kind)
    except DriverError as exc:
        if exc.code in EMPTY_RESULT_CODES:
            logger.debug("process info unavailable for gpu %d (%s): %s", gpu_index, kind.value, exc)
            return
        raise
    for pid, memory in processes:
        if pid <= 0:
            continue
        # A pid can hold both a compute and a graphics context on one device;
        # keep the first non-zero memory reading.
        if not found.get(pid):
            found[pid] = memory


def enumerate_gpu_processes(driver: ProcessDriver) -> list[GPUProcessUsage]:
    """List every (device, pid) pair active across all devices.

    Compute and graphics contexts are merged and deduplicated by pid per
    device. The result is sorted by device index, then pid. The caller must
    hold an open driver session.
    """

    usages: list[GPUProcessUsage] = []
    names: dict[int, str] = {}
    for gpu_index, handle in driver.enumerate_devices():
        found: dict[int, int | None] = {}
        for kind in (ContextKind.COMPUTE, ContextKind.GRAPHICS):
            _merge_context(found, driver, handle, kind, gpu_index)
        for pid in sorted(found):
            if pid not in names:
                names[pid] = driver.process_name(pid)
            usages.append(
                GPUProcessUsage(gpu_index=gpu_index, pid=pid, memory_bytes=found[pid], name=names[pid])
            )
    return usages
