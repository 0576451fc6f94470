"""Collector interface and the metric types collectors emit."""

from __future__ import annotations

import abc
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client.core import GaugeMetricFamily

from nvidia_gpu_exporter.core.config import NAMESPACE


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass(slots=True, frozen=True)
class MetricDescriptor:
    """Name, help text and label names of one gauge series family."""

    name: str
    documentation: str
    labels: tuple[str, ...] = ()

    @classmethod
    def build(cls, subsystem: str, name: str, documentation: str, labels: tuple[str, ...] = ()) -> MetricDescriptor:
        return cls(build_fq_name(NAMESPACE, subsystem, name), documentation, labels)

    def sample(self, value: float, *label_values: str) -> MetricSample:
        if len(label_values) != len(self.labels):
            raise ValueError(
                f"{self.name}: expected {len(self.labels)} label values, got {len(label_values)}"
            )
        return MetricSample(self, float(value), tuple(label_values))

    def family(self) -> GaugeMetricFamily:
        return GaugeMetricFamily(self.name, self.documentation, labels=list(self.labels))


@dataclass(slots=True, frozen=True)
class MetricSample:
    descriptor: MetricDescriptor
    value: float
    label_values: tuple[str, ...]


Emit = Callable[[MetricSample], None]


class Collector(abc.ABC):
    """One pluggable telemetry source run once per scrape."""

    @abc.abstractmethod
    def update(self, emit: Emit) -> None:
        """Run one cycle, passing every sample to ``emit``.

        Raise :class:`~nvidia_gpu_exporter.core.errors.NoDataError` when there
        is nothing to report; any other exception marks the cycle as failed.
        """
