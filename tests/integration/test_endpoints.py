"""Integration tests exercising the public HTTP surface over plaintext."""

from __future__ import annotations

import gzip
from typing import TYPE_CHECKING

import brotli
import pytest
import requests

from tests.conftest import APP_JS, INDEX_HTML
from tests.utils.http import raw_request

pytestmark = pytest.mark.integration

if TYPE_CHECKING:
    from tests.conftest import ServerProcessInfo


def test_root_serves_index_without_caching(base_url: str) -> None:
    """The SPA shell is served for / and must never be cached."""
    response = requests.get(f"{base_url}/", timeout=5)
    assert response.status_code == 200
    assert response.content == INDEX_HTML
    assert response.headers["Content-Type"] == "text/html; charset=utf-8"
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "ETag" in response.headers


def test_hashed_assets_are_immutable(base_url: str) -> None:
    response = requests.get(
        f"{base_url}/assets/app.3f2a9c.js",
        headers={"Accept-Encoding": "identity"},
        timeout=5,
    )
    assert response.status_code == 200
    assert response.content == APP_JS
    assert response.headers["Cache-Control"] == "public, max-age=31536000, immutable"


def test_directory_request_serves_nested_index(base_url: str) -> None:
    response = requests.get(f"{base_url}/docs/", timeout=5)
    assert response.status_code == 200
    assert response.content == b"<h1>docs</h1>"


def test_plain_files_get_short_cache(base_url: str) -> None:
    response = requests.get(f"{base_url}/robots.txt", timeout=5)
    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "public, max-age=600"
    assert response.headers["Content-Type"] == "text/plain; charset=utf-8"


def test_missing_file_is_404(base_url: str) -> None:
    assert requests.get(f"{base_url}/nope.png", timeout=5).status_code == 404


def test_traversal_is_not_served(server_process: "ServerProcessInfo") -> None:
    """Escapes from the content root look exactly like missing files."""
    response = raw_request(
        server_process["host"], server_process["port"], "GET", "/../../etc/passwd"
    )
    assert response.status_code == 404
    assert b"root:" not in response.body


def test_conditional_get_returns_304(base_url: str) -> None:
    first = requests.get(f"{base_url}/robots.txt", timeout=5)
    second = requests.get(
        f"{base_url}/robots.txt",
        headers={"If-None-Match": first.headers["ETag"]},
        timeout=5,
    )
    assert second.status_code == 304
    assert second.content == b""
    assert second.headers["ETag"] == first.headers["ETag"]


def test_text_assets_are_gzipped_on_request(base_url: str) -> None:
    with requests.get(
        f"{base_url}/assets/app.3f2a9c.js",
        headers={"Accept-Encoding": "gzip"},
        timeout=5,
        stream=True,
    ) as response:
        assert response.status_code == 200
        assert response.headers["Content-Encoding"] == "gzip"
        assert response.headers["Vary"] == "Accept-Encoding"
        response.raw.decode_content = False
        payload = response.raw.read()
    assert gzip.decompress(payload) == APP_JS


def test_text_assets_prefer_brotli(server_process: "ServerProcessInfo") -> None:
    response = raw_request(
        server_process["host"],
        server_process["port"],
        "GET",
        "/assets/app.3f2a9c.js",
        {"Accept-Encoding": "gzip, deflate, br"},
    )
    assert response.status_code == 200
    assert response.headers["content-encoding"] == "br"
    assert response.headers["transfer-encoding"] == "chunked"
    assert brotli.decompress(response.body) == APP_JS


def test_http10_file_is_length_framed(server_process: "ServerProcessInfo") -> None:
    """HTTP/1.0 clients get Content-Length and never chunk markers."""
    response = raw_request(
        server_process["host"],
        server_process["port"],
        "GET",
        "/robots.txt",
        {"Accept-Encoding": "identity"},
        http_version="HTTP/1.0",
    )
    assert response.status_code == 200
    assert "transfer-encoding" not in response.headers
    assert response.body == b"User-agent: *\nDisallow:\n"


def test_head_reports_length_without_body(server_process: "ServerProcessInfo") -> None:
    response = raw_request(
        server_process["host"],
        server_process["port"],
        "HEAD",
        "/robots.txt",
        {"Accept-Encoding": "identity"},
    )
    assert response.status_code == 200
    assert response.headers["content-length"] == str(len(b"User-agent: *\nDisallow:\n"))
    assert response.body == b""


@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE"])
def test_write_methods_are_refused(base_url: str, method: str) -> None:
    response = requests.request(method, f"{base_url}/index.html", timeout=5)
    assert response.status_code == 405
    assert response.headers["Allow"] == "GET, HEAD"


def test_health_and_version_endpoints(base_url: str) -> None:
    healthz = requests.get(f"{base_url}/healthz", timeout=5)
    assert healthz.status_code == 200
    assert healthz.json()["status"] == "ok"

    readyz = requests.get(f"{base_url}/readyz", timeout=5)
    assert readyz.status_code == 200
    body = readyz.json()
    assert body["status"] == "ready"
    assert body["checks"]["staticFiles"] is True
    assert body["checks"]["logWritable"] is True

    version = requests.get(f"{base_url}/version", timeout=5)
    assert version.status_code == 200
    assert "version" in version.json()


def test_request_id_is_echoed_or_generated(base_url: str) -> None:
    echoed = requests.get(
        f"{base_url}/healthz", headers={"X-Request-ID": "trace-1234"}, timeout=5
    )
    assert echoed.headers["X-Request-ID"] == "trace-1234"

    generated = requests.get(f"{base_url}/healthz", timeout=5)
    assert len(generated.headers["X-Request-ID"]) == 36


def test_keep_alive_connection_is_reused(base_url: str) -> None:
    with requests.Session() as session:
        first = session.get(f"{base_url}/robots.txt", timeout=5)
        second = session.get(f"{base_url}/healthz", timeout=5)
    assert first.status_code == 200
    assert second.status_code == 200


def test_requests_are_logged(server_process: "ServerProcessInfo") -> None:
    """Completed requests reach the JSON log with their route and status."""
    requests.get(f"{server_process['base_url']}/robots.txt", timeout=5)
    log_file = server_process["log_file"]
    assert log_file is not None
    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert any(
        '"event": "request_completed"' in line and '"/robots.txt"' in line
        for line in lines
    )
