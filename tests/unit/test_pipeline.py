"""Unit tests for pipeline ordering and end-to-end stage behavior."""

import json
import logging
from pathlib import Path

import pytest

from frontdoor.bootstrap.config import HostingConfiguration
from frontdoor.domain.fixed_window import FixedWindowLimiter, FixedWindowSettings
from frontdoor.domain.http_types import HttpRequest, HttpResponse, status_line
from frontdoor.pipeline.stages import (
    STAGE_ORDER,
    ExceptionBoundary,
    PipelineExhausted,
    PipelineStage,
    RequestPipeline,
    build_pipeline,
)
from frontdoor.handlers.error_responder import ErrorResponder


def _request(path: str, method: str = "GET", peer: str = "203.0.113.9", **headers) -> HttpRequest:
    return HttpRequest(
        method,
        path,
        {k.replace("_", "-"): v for k, v in headers.items()},
        b"",
        client_ip=peer,
        peer_ip=peer,
    )


def _config(content_root: Path, **overrides) -> HostingConfiguration:
    log_directory = content_root.parent / "logs"
    log_directory.mkdir(exist_ok=True)
    values = {
        "content_root": str(content_root),
        "log_directory": str(log_directory),
        "environment": "development",
    }
    values.update(overrides)
    return HostingConfiguration(**values)


def _drain(response: HttpResponse) -> bytes:
    if response.body_iter is None:
        return response.body
    try:
        return b"".join(response.body_iter)
    finally:
        response.close_body()


def test_stage_order_is_explicit(content_root: Path) -> None:
    """The assembled pipeline exposes its stage names in execution order."""
    pipeline = build_pipeline(_config(content_root))
    assert pipeline.stage_names == list(STAGE_ORDER)
    assert pipeline.stage_names[0] == "exception_boundary"
    assert pipeline.stage_names[-1] == "router"
    assert pipeline.stage_names.index("https_enforcement") < pipeline.stage_names.index(
        "authentication"
    )


def test_stages_run_in_order_and_unwind_in_reverse() -> None:
    """Each stage sees the request before its successors and the response after."""
    trace = []

    def make(name):
        def handler(request, call_next):
            trace.append(f"in:{name}")
            response = call_next(request)
            trace.append(f"out:{name}")
            return response

        return handler

    def terminal(request, call_next):
        trace.append("terminal")
        return HttpResponse(status_line(204), {}, b"", False)

    pipeline = RequestPipeline(
        [PipelineStage("a", make("a")), PipelineStage("b", make("b")), PipelineStage("t", terminal)]
    )
    pipeline.handle(_request("/"))
    assert trace == ["in:a", "in:b", "terminal", "out:b", "out:a"]


def test_last_stage_cannot_call_next() -> None:
    """Falling off the end of the pipeline is a programming error."""
    pipeline = RequestPipeline([PipelineStage("only", lambda request, call_next: call_next(request))])
    with pytest.raises(PipelineExhausted):
        pipeline.handle(_request("/"))


def test_exception_boundary_turns_faults_into_500(tmp_path: Path, caplog) -> None:
    """A downstream exception becomes a logged 500 and never escapes."""
    caplog.set_level(logging.ERROR, logger="frontdoor")

    def explode(request, call_next):
        raise RuntimeError("kaboom")

    pipeline = RequestPipeline(
        [
            PipelineStage("exception_boundary", ExceptionBoundary(ErrorResponder(str(tmp_path)))),
            PipelineStage("router", explode),
        ]
    )
    response = pipeline.handle(_request("/boom"))
    assert response.status_code == 500
    assert json.loads(response.body)["instance"] == "/boom"
    assert any(getattr(r, "event", "") == "unhandled_exception" for r in caplog.records)


def test_index_served_with_security_headers(content_root: Path) -> None:
    """GET / serves the index document with no-store caching."""
    response = build_pipeline(_config(content_root)).handle(_request("/"))
    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert _drain(response).startswith(b"<!doctype html>")


def test_health_endpoints_are_routed(content_root: Path) -> None:
    """Probes are matched before the asset resolver."""
    pipeline = build_pipeline(_config(content_root))
    assert pipeline.handle(_request("/healthz")).status_code == 200
    assert json.loads(pipeline.handle(_request("/readyz")).body)["status"] == "ready"
    assert "version" in json.loads(pipeline.handle(_request("/version")).body)


def test_unknown_path_is_404(content_root: Path) -> None:
    """Misses fall through to the not-found branch."""
    response = build_pipeline(_config(content_root)).handle(_request("/missing.png"))
    assert response.status_code == 404


def test_file_removed_after_resolution_is_404(
    content_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A file deleted between stat and open becomes a clean 404, not a broken 200."""

    def vanished(path, **_kwargs):
        raise FileNotFoundError(path)

    monkeypatch.setattr("frontdoor.handlers.asset_handler.stream_file", vanished)
    response = build_pipeline(_config(content_root)).handle(_request("/robots.txt"))
    assert response.status_code == 404


def test_disallowed_method_is_405(content_root: Path) -> None:
    """Only GET and HEAD are served."""
    response = build_pipeline(_config(content_root)).handle(_request("/", method="POST"))
    assert response.status_code == 405
    assert response.headers["Allow"] == "GET, HEAD"


def test_rate_limit_rejects_with_headers(content_root: Path) -> None:
    """The request after the permit limit gets 429 with Retry-After."""
    limiter = FixedWindowLimiter(FixedWindowSettings(permit_limit=2, window_seconds=60))
    pipeline = build_pipeline(_config(content_root), limiter=limiter)

    for _ in range(2):
        ok = pipeline.handle(_request("/robots.txt"))
        _drain(ok)
        assert ok.status_code == 200
        assert "RateLimit-Remaining" in ok.headers

    rejected = pipeline.handle(_request("/robots.txt"))
    assert rejected.status_code == 429
    assert int(rejected.headers["Retry-After"]) >= 1
    assert rejected.headers["RateLimit-Limit"] == "2"


def test_rate_limit_keys_on_forwarded_client(content_root: Path) -> None:
    """Behind a known proxy the limiter counts the forwarded client, not the proxy."""
    limiter = FixedWindowLimiter(FixedWindowSettings(permit_limit=1, window_seconds=60))
    pipeline = build_pipeline(_config(content_root), limiter=limiter)

    first = pipeline.handle(_request("/healthz", peer="127.0.0.1", x_forwarded_for="198.51.100.1"))
    second = pipeline.handle(_request("/healthz", peer="127.0.0.1", x_forwarded_for="198.51.100.2"))
    third = pipeline.handle(_request("/healthz", peer="127.0.0.1", x_forwarded_for="198.51.100.1"))
    assert (first.status_code, second.status_code, third.status_code) == (200, 200, 429)


def test_request_logging_levels(content_root: Path, caplog) -> None:
    """Probe traffic logs at DEBUG while documents log at INFO."""
    caplog.set_level(logging.DEBUG, logger="frontdoor")
    pipeline = build_pipeline(_config(content_root))
    _drain(pipeline.handle(_request("/healthz")))
    _drain(pipeline.handle(_request("/robots.txt")))

    completed = {
        r.route: r.levelno
        for r in caplog.records
        if getattr(r, "event", "") == "request_completed"
    }
    assert completed["/healthz"] == logging.DEBUG
    assert completed["/robots.txt"] == logging.INFO


def test_auth_required_except_anonymous_paths(content_root: Path) -> None:
    """With proxy-header auth, probes stay open and everything else needs a user."""
    config = _config(
        content_root,
        auth_mode="proxy-header",
        allowed_users=("alice",),
    )
    pipeline = build_pipeline(config)

    assert pipeline.handle(_request("/healthz")).status_code == 200
    assert pipeline.handle(_request("/version")).status_code == 401
    denied = pipeline.handle(_request("/", peer="127.0.0.1", x_remote_user="mallory"))
    assert denied.status_code == 403
    allowed = pipeline.handle(_request("/", peer="127.0.0.1", x_remote_user="alice"))
    _drain(allowed)
    assert allowed.status_code == 200
