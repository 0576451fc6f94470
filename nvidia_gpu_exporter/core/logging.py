"""Logging setup for the exporter process."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, TextIO

from .config import APP_NAME, LOG_FORMATS, LOG_LEVELS

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in vars(record).items() if key not in _RESERVED}


def _quote(value: Any) -> str:
    text = str(value)
    if not text or any(ch in text for ch in ' ="'):
        return json.dumps(text)
    return text


class LogfmtFormatter(logging.Formatter):
    """Render records as ``time=... level=... source=... msg=...`` lines."""

    def format(self, record: logging.LogRecord) -> str:
        pairs = [
            ("time", self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z")),
            ("level", record.levelname.lower()),
            ("source", f"{record.module}:{record.lineno}"),
            ("msg", record.getMessage()),
        ]
        pairs.extend(_extras(record).items())
        if record.exc_info:
            pairs.append(("err", self.formatException(record.exc_info)))
        return " ".join(f"{key}={_quote(value)}" for key, value in pairs)


class JSONFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname.lower(),
            "source": f"{record.module}:{record.lineno}",
            "msg": record.getMessage(),
        }
        payload.update(_extras(record))
        if record.exc_info:
            payload["err"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def parse_level(level: str) -> int:
    try:
        return _LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"unknown log level {level!r}, expected one of {', '.join(LOG_LEVELS)}") from None


def configure_logging(level: str = "info", fmt: str = "logfmt", stream: TextIO | None = None) -> logging.Logger:
    """Install a single stream handler on the package logger and return it."""

    if fmt not in LOG_FORMATS:
        raise ValueError(f"unknown log format {fmt!r}, expected one of {', '.join(LOG_FORMATS)}")
    logger = logging.getLogger(APP_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else LogfmtFormatter())
    logger.addHandler(handler)
    logger.setLevel(parse_level(level))
    logger.propagate = False
    return logger
