"""Data provider package."""

from .gpu import enumerate_gpu_processes
from .host import HostAccounting, ProcessLookupFailed, resolve_hostname
from .nvml import ContextKind, DriverError, FieldId, GPUUnavailableError, NvmlDriver

__all__ = [
    "ContextKind",
    "DriverError",
    "FieldId",
    "GPUUnavailableError",
    "HostAccounting",
    "NvmlDriver",
    "ProcessLookupFailed",
    "enumerate_gpu_processes",
    "resolve_hostname",
]
