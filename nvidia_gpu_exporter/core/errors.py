"""Exception hierarchy shared across the exporter."""

from __future__ import annotations


class ExporterError(Exception):
    """Base class for errors raised by the exporter."""


class NoDataError(ExporterError):
    """A collector had nothing to report for this scrape.

    Scrapes treat it as a non-fatal failure: success is 0 and it is only
    logged at debug level.
    """

    def __init__(self, reason: str = "collector returned no data") -> None:
        super().__init__(reason)


class CollectorInitError(ExporterError):
    """A registered collector could not be constructed."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"collector {name!r}: {cause}")
        self.name = name
