"""Per-request correlation ids carried in a context variable."""

import contextlib
import contextvars
import logging
import uuid
from typing import Any, Iterator, MutableMapping, Optional

LOGGER_PREFIX = "frontdoor."
MAX_INCOMING_LENGTH = 128

_correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


def adopt_correlation_id(candidate: Optional[str]) -> bool:
    """Use a caller-supplied id when it is short and printable.

    Returns False, leaving the current id untouched, for anything else.
    """
    value = (candidate or "").strip()
    if not value or len(value) > MAX_INCOMING_LENGTH or not value.isprintable():
        return False
    set_correlation_id(value)
    return True


@contextlib.contextmanager
def correlation_scope() -> Iterator[str]:
    """Bind a fresh id for one request and clear it afterwards."""
    correlation_id = generate_correlation_id()
    set_correlation_id(correlation_id)
    try:
        yield correlation_id
    finally:
        clear_correlation_id()


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Adds ``correlation_id`` and ``component`` to every record it emits.

    The component is the logger name below ``frontdoor.``, e.g.
    ``transport.worker``; loggers outside the project keep their full name.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[dict] = None) -> None:
        super().__init__(logger, extra or {})
        name = logger.name
        self.component = name[len(LOGGER_PREFIX) :] if name.startswith(LOGGER_PREFIX) else name

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        correlation_id = get_correlation_id()
        extra["correlation_id"] = correlation_id if correlation_id is not None else "-"
        extra["component"] = self.component
        kwargs["extra"] = extra
        return msg, kwargs


def component_logger(name: str) -> CorrelationLoggerAdapter:
    """Return the adapter for the ``frontdoor.<name>`` logger."""
    return CorrelationLoggerAdapter(logging.getLogger(f"{LOGGER_PREFIX}{name}"))
