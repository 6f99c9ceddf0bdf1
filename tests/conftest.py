"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"

INDEX_HTML = b"<!doctype html><html><body><div id=app></div></body></html>"
APP_JS = b"console.log('frontdoor');\n" * 200


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    content_root: Path
    log_directory: Path
    process: subprocess.Popen[str]
    log_file: Path | None


def populate_content_root(root: Path) -> Path:
    """Lay out a small single-page-app bundle under ``root``."""
    (root / "assets").mkdir(parents=True, exist_ok=True)
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "assets" / "app.3f2a9c.js").write_bytes(APP_JS)
    (root / "robots.txt").write_bytes(b"User-agent: *\nDisallow:\n")
    (root / "docs").mkdir(exist_ok=True)
    (root / "docs" / "index.html").write_bytes(b"<h1>docs</h1>")
    return root


def launch_server(
    host: str,
    port: int,
    content_root: Path,
    log_directory: Path,
    extra_args: list[str] | None = None,
    log_file: Path | None = None,
    scheme: str = "http",
) -> Generator[ServerProcessInfo, None, None]:
    """Run ``main.py`` in a subprocess until the generator is closed."""
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--host",
        host,
        "--content-root",
        str(content_root),
        "--log-directory",
        str(log_directory),
    ]
    if scheme == "http":
        args.extend(["--http-port", str(port)])
    if log_file:
        args.extend(["--log-destination", str(log_file)])
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"{scheme}://{host}:{port}",
            "host": host,
            "port": port,
            "content_root": content_root,
            "log_directory": log_directory,
            "process": process,
            "log_file": log_file,
        }

        process.terminate()
        try:
            process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""
    return PROJECT_ROOT


@pytest.fixture()
def content_root(tmp_path: Path) -> Path:
    """A populated asset bundle for unit tests."""
    return populate_content_root(tmp_path / "build")


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the front door over plaintext HTTP for integration tests."""
    host = "127.0.0.1"
    port = reserve_port(host)
    workspace = tmp_path_factory.mktemp("frontdoor")
    root = populate_content_root(workspace / "build")
    log_directory = workspace / "logs"
    log_directory.mkdir()
    extra = ["--environment", "development", "--rate-limit", "1000"]
    yield from launch_server(
        host,
        port,
        root,
        log_directory,
        extra,
        log_file=log_directory / "frontdoor.log",
    )


@pytest.fixture(name="limited_server_process")
def _limited_server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the front door with a strict rate limit."""
    host = "127.0.0.1"
    port = reserve_port(host)
    workspace = tmp_path_factory.mktemp("frontdoor-limited")
    root = populate_content_root(workspace / "build")
    log_directory = workspace / "logs"
    log_directory.mkdir()
    limit_args = [
        "--environment",
        "development",
        "--rate-limit",
        "3",
        "--rate-window-seconds",
        "60",
    ]
    yield from launch_server(
        host,
        port,
        root,
        log_directory,
        limit_args,
        log_file=log_directory / "frontdoor.log",
    )


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""
    return server_process["base_url"]
