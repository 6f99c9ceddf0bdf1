"""Structured logging for the front door: JSON lines to stdout or a daily file."""

import json
import logging
import re
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from frontdoor.domain.correlation_id import CorrelationLoggerAdapter

LOGGER_NAME = "frontdoor"
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
BACKUP_COUNT = 14
REDACTED = "[REDACTED]"

_SECRET_HINT = re.compile(
    r"(?i)(authorization|token|key|signature|password|secret|api[_-]?key)"
)
_OPAQUE_VALUE = re.compile(r"\b(?:[A-Fa-f0-9]{32,}|[A-Za-z0-9+/]{32,}={0,2})\b")

# Request paths and identities are logged verbatim even when they look secret-ish.
VERBATIM_FIELDS = frozenset({"route", "identity", "client_ip", "content_root"})

# Attributes every LogRecord has; anything else arrived through ``extra``.
_RECORD_FIELDS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "correlation_id", "component", "event", "taskName"}


def redact_sensitive(value: str) -> str:
    """Replace values that look like credentials with a fixed marker."""
    if value and (_SECRET_HINT.search(value) or _OPAQUE_VALUE.search(value)):
        return REDACTED
    return value


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Give records logged outside a request a placeholder correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key, value in vars(record).items():
        if key in _RECORD_FIELDS or key.startswith("_"):
            continue
        if isinstance(value, str) and key not in VERBATIM_FIELDS:
            value = redact_sensitive(value)
        fields[key] = value
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per record, keys sorted so lines diff cleanly."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
            **_extra_fields(record),
        }
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handler(destination: Optional[str], use_json: bool) -> logging.Handler:
    """stdout, or a file rotated at UTC midnight keeping two weeks of history."""
    handler: logging.Handler
    if destination and destination.lower() != "stdout":
        target_path = Path(destination)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        handler = TimedRotatingFileHandler(
            target_path, when="midnight", backupCount=BACKUP_COUNT, utc=True
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    if use_json:
        handler.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, DATE_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    return handler


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, use_json: bool = True
) -> CorrelationLoggerAdapter:
    """Install a single handler on the ``frontdoor`` logger and return its adapter.

    Calling this again replaces the previous handler, closing its file.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_resolve_level(level))
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.addHandler(_build_handler(destination, use_json))

    adapter = CorrelationLoggerAdapter(logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "destination": destination or "stdout",
            "use_json": use_json,
        },
    )
    return adapter
