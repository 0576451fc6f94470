"""Runs every registered collector concurrently for each scrape."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator

from prometheus_client.core import GaugeMetricFamily

from nvidia_gpu_exporter.core.errors import CollectorInitError, NoDataError
from nvidia_gpu_exporter.models import ScrapeOutcome

from .base import Collector, MetricDescriptor, MetricSample
from .registry import CollectorRegistry

SCRAPE_DURATION = MetricDescriptor.build(
    "scrape",
    "controller_duration_seconds",
    "nvidia_gpu_exporter: Duration of a collector scrape.",
    ("collector",),
)
SCRAPE_SUCCESS = MetricDescriptor.build(
    "scrape",
    "controller_success",
    "nvidia_gpu_exporter: Whether a collector succeeded.",
    ("collector",),
)


def execute(name: str, collector: Collector, samples: list[MetricSample], logger: logging.Logger) -> ScrapeOutcome:
    """Run one collector cycle, appending its samples, and report the outcome."""

    begin = time.perf_counter()
    try:
        collector.update(samples.append)
    except NoDataError as exc:
        duration = time.perf_counter() - begin
        logger.debug("collector returned no data: name=%s duration_seconds=%.6f err=%s", name, duration, exc)
        success = 0.0
    except Exception:
        duration = time.perf_counter() - begin
        logger.exception("collector failed: name=%s duration_seconds=%.6f", name, duration)
        success = 0.0
    else:
        duration = time.perf_counter() - begin
        logger.debug("collector succeeded: name=%s duration_seconds=%.6f", name, duration)
        success = 1.0
    return ScrapeOutcome(name=name, duration_seconds=duration, success=success)


class ScrapeOrchestrator:
    """prometheus_client custom collector fanning out to every registered collector."""

    def __init__(self, registry: CollectorRegistry, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self.collectors: dict[str, Collector] = {}
        for name in registry.names():
            try:
                self.collectors[name] = registry.get_or_create(name, self._logger.getChild(name))
            except Exception as exc:
                raise CollectorInitError(name, exc) from exc

    def describe(self) -> list[GaugeMetricFamily]:
        return [SCRAPE_DURATION.family(), SCRAPE_SUCCESS.family()]

    def scrape(self) -> tuple[list[ScrapeOutcome], list[MetricSample]]:
        """Run every collector on its own thread and wait for all of them."""

        buffers: dict[str, list[MetricSample]] = {name: [] for name in self.collectors}
        outcomes: dict[str, ScrapeOutcome] = {}

        def _run(name: str, collector: Collector) -> None:
            outcomes[name] = execute(name, collector, buffers[name], self._logger)

        threads = [
            threading.Thread(target=_run, args=(name, collector), name=f"collector-{name}", daemon=True)
            for name, collector in self.collectors.items()
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        samples = [sample for name in self.collectors for sample in buffers[name]]
        return [outcomes[name] for name in self.collectors], samples

    def collect(self) -> Iterator[GaugeMetricFamily]:
        outcomes, samples = self.scrape()

        families: dict[str, GaugeMetricFamily] = {}
        for sample in samples:
            family = families.get(sample.descriptor.name)
            if family is None:
                family = families[sample.descriptor.name] = sample.descriptor.family()
            family.add_metric(list(sample.label_values), sample.value)
        yield from families.values()

        duration = SCRAPE_DURATION.family()
        success = SCRAPE_SUCCESS.family()
        for outcome in outcomes:
            duration.add_metric([outcome.name], outcome.duration_seconds)
            success.add_metric([outcome.name], outcome.success)
        yield duration
        yield success
