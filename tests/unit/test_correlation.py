"""Unit tests for correlation ids and the correlation-aware logger adapter."""

import logging
import uuid

from frontdoor.domain.correlation_id import (
    CorrelationLoggerAdapter,
    adopt_correlation_id,
    clear_correlation_id,
    component_logger,
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


def test_generate_correlation_id_is_uuid4() -> None:
    """Generated ids are random UUIDs."""
    value = generate_correlation_id()
    assert uuid.UUID(value).version == 4
    assert value != generate_correlation_id()


def test_set_get_and_clear() -> None:
    """The context variable round-trips and clears to None."""
    set_correlation_id("abc")
    assert get_correlation_id() == "abc"
    clear_correlation_id()
    assert get_correlation_id() is None


def test_adapter_injects_correlation_and_component() -> None:
    """Records get the current id and the logger name below 'frontdoor.'."""
    adapter = component_logger("transport.worker")
    set_correlation_id("cid-42")
    try:
        _, kwargs = adapter.process("msg", {"extra": {"status_code": 200}})
    finally:
        clear_correlation_id()
    assert kwargs["extra"] == {
        "status_code": 200,
        "correlation_id": "cid-42",
        "component": "transport.worker",
    }


def test_adapter_defaults_and_foreign_loggers() -> None:
    """Without an id the placeholder is used; foreign names pass through."""
    clear_correlation_id()
    adapter = CorrelationLoggerAdapter(logging.getLogger("other.module"), {})
    _, kwargs = adapter.process("msg", {})
    assert kwargs["extra"]["correlation_id"] == "-"
    assert kwargs["extra"]["component"] == "other.module"


def test_adapter_does_not_mutate_caller_extra() -> None:
    """The caller's extra mapping is copied, not modified."""
    extra = {"event": "x"}
    component_logger("io").process("msg", {"extra": extra})
    assert extra == {"event": "x"}


def test_adopt_only_accepts_sane_values() -> None:
    """Oversized or non-printable ids are ignored; whitespace is trimmed."""
    set_correlation_id("original")
    try:
        assert adopt_correlation_id("x" * 129) is False
        assert adopt_correlation_id("bad\nid") is False
        assert adopt_correlation_id(None) is False
        assert get_correlation_id() == "original"
        assert adopt_correlation_id(" trace-7 ") is True
        assert get_correlation_id() == "trace-7"
    finally:
        clear_correlation_id()


def test_correlation_scope_binds_and_clears() -> None:
    with correlation_scope() as correlation_id:
        assert get_correlation_id() == correlation_id
    assert get_correlation_id() is None
