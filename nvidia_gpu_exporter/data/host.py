"""Host OS process and system accounting backed by psutil."""

from __future__ import annotations

import logging
import os
import socket

import psutil

from nvidia_gpu_exporter.core.config import MAX_COMMAND_LABEL_LENGTH, NODE_NAME_ENV, UNKNOWN_LABEL
from nvidia_gpu_exporter.core.errors import ExporterError
from nvidia_gpu_exporter.models import ProcessMetadata, ProcessStats

logger = logging.getLogger(__name__)

# Every accounting category of the system-wide CPU clock. psutil only exposes
# the fields the platform knows about; missing ones count as zero.
_CPU_TIME_FIELDS = (
    "user",
    "system",
    "nice",
    "irq",
    "softirq",
    "steal",
    "idle",
    "iowait",
    "guest",
    "guest_nice",
)

_LOOKUP_ERRORS = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess)


class ProcessLookupFailed(ExporterError):
    """Raised when a pid cannot be inspected on the host."""

    def __init__(self, pid: int, reason: str) -> None:
        super().__init__(f"pid {pid}: {reason}")
        self.pid = pid


def first_non_empty(*values: str | None) -> str:
    for value in values:
        if value and value.strip():
            return value.strip()
    return ""


def truncate_label(value: str, limit: int = MAX_COMMAND_LABEL_LENGTH) -> str:
    """Cut ``value`` to ``limit`` code points; ``str`` slicing never splits a character."""

    if len(value) <= limit:
        return value
    return value[:limit]


def _safe_name(proc: psutil.Process) -> str:
    try:
        return proc.name()
    except _LOOKUP_ERRORS:
        return ""


def _safe_uid(proc: psutil.Process) -> str:
    try:
        uids = proc.uids()
    except (AttributeError, *_LOOKUP_ERRORS):  # uids() is POSIX only
        return UNKNOWN_LABEL
    return str(uids.real)


def _safe_cmdline(proc: psutil.Process) -> str:
    try:
        args = proc.cmdline()
    except _LOOKUP_ERRORS:
        return ""
    return " ".join(arg for arg in args if arg)


def resolve_hostname() -> str:
    """Return the node name used for the ``hostname`` label."""

    node_name = os.environ.get(NODE_NAME_ENV, "").strip()
    if node_name:
        return node_name
    try:
        hostname = socket.gethostname()
    except OSError as exc:
        logger.warning("failed to determine hostname: %s", exc)
        return UNKNOWN_LABEL
    return hostname or UNKNOWN_LABEL


class HostAccounting:
    """Queries the host OS for per-process and system-wide accounting."""

    def process_stats(self, pid: int, fallback_name: str = "") -> ProcessStats:
        try:
            proc = psutil.Process(pid)
        except _LOOKUP_ERRORS as exc:
            raise ProcessLookupFailed(pid, f"open process: {exc}") from exc

        with proc.oneshot():
            name = _safe_name(proc)
            uid = _safe_uid(proc)
            cmdline = _safe_cmdline(proc)
            try:
                memory_percent = float(proc.memory_percent())
                times = proc.cpu_times()
            except _LOOKUP_ERRORS as exc:
                raise ProcessLookupFailed(pid, f"read accounting: {exc}") from exc

        metadata = ProcessMetadata(
            name=first_non_empty(name, fallback_name, UNKNOWN_LABEL),
            uid=first_non_empty(uid, UNKNOWN_LABEL),
            command=truncate_label(first_non_empty(cmdline, name, fallback_name, UNKNOWN_LABEL)),
        )
        return ProcessStats(
            metadata=metadata,
            memory_percent=memory_percent,
            cpu_seconds=float(times.user + times.system),
        )

    def total_cpu_seconds(self) -> float:
        times = psutil.cpu_times(percpu=False)
        return float(sum(getattr(times, name, 0.0) for name in _CPU_TIME_FIELDS))

    def logical_cpus(self) -> int:
        return psutil.cpu_count(logical=True) or 1

    def cpu_percent(self) -> float:
        """Node CPU utilisation since the previous call (non-blocking)."""

        return float(psutil.cpu_percent(interval=None))

    def memory_percent(self) -> float:
        return float(psutil.virtual_memory().percent)
