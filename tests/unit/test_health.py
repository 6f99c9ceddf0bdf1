"""Unit tests for liveness, readiness and version reporting."""

import datetime
import json
from pathlib import Path
from unittest.mock import patch

from frontdoor.bootstrap.config import HostingConfiguration
from frontdoor.handlers import health
from frontdoor.handlers.health import HealthReporter, installed_version
from frontdoor.security.certificates import CertificateNotFound, load_certificate
from tests.utils.certs import write_pair


def _config(tmp_path: Path, **overrides) -> HostingConfiguration:
    root = tmp_path / "build"
    logs = tmp_path / "logs"
    root.mkdir(exist_ok=True)
    logs.mkdir(exist_ok=True)
    values = {"content_root": str(root), "log_directory": str(logs)}
    values.update(overrides)
    return HostingConfiguration(**values)


def test_healthz_is_always_ok(tmp_path: Path) -> None:
    """Liveness performs no checks."""
    response = HealthReporter(_config(tmp_path, content_root="/does/not/exist")).healthz()
    payload = json.loads(response.body)
    assert response.status_code == 200
    assert payload["status"] == "ok"
    assert datetime.datetime.fromisoformat(payload["timestamp"]).tzinfo is not None


def test_ready_when_content_and_logs_are_fine(tmp_path: Path) -> None:
    """Both checks pass without TLS, so readiness is 200."""
    config = _config(tmp_path)
    response = HealthReporter(config).readyz()
    payload = json.loads(response.body)
    assert response.status_code == 200
    assert payload["status"] == "ready"
    assert payload["checks"] == {"staticFiles": True, "logWritable": True}
    assert list(Path(config.log_directory).iterdir()) == []


def test_missing_content_root_is_not_ready(tmp_path: Path) -> None:
    """A missing bundle flips staticFiles and yields 503."""
    response = HealthReporter(_config(tmp_path, content_root=str(tmp_path / "gone"))).readyz()
    payload = json.loads(response.body)
    assert response.status_code == 503
    assert payload["status"] == "not-ready"
    assert payload["checks"]["staticFiles"] is False


def test_missing_log_directory_is_created(tmp_path: Path) -> None:
    """A fresh deploy without a log directory is still ready."""
    logs = tmp_path / "fresh" / "logs"
    report = HealthReporter(_config(tmp_path, log_directory=str(logs))).readiness()
    assert report.checks["logWritable"] is True
    assert report.ready is True
    assert logs.is_dir()
    assert list(logs.iterdir()) == []


def test_unwritable_log_directory_is_not_ready(tmp_path: Path) -> None:
    """A log path blocked by a regular file fails readiness."""
    blocker = tmp_path / "logs-file"
    blocker.write_text("not a directory")
    config = _config(tmp_path, log_directory=str(blocker))
    report = HealthReporter(config).readiness()
    assert report.checks["logWritable"] is False
    assert report.ready is False


def test_expired_certificate_is_not_ready(tmp_path: Path) -> None:
    """An expired certificate reports certNotExpired=false and zero days."""
    pair = write_pair(tmp_path, expired=True)
    config = _config(
        tmp_path, use_tls=True, cert_path=str(pair.cert_path), key_path=str(pair.key_path)
    )
    response = HealthReporter(config).readyz()
    payload = json.loads(response.body)
    assert response.status_code == 503
    assert payload["checks"]["certNotExpired"] is False
    assert payload["checks"]["certDaysLeft"] == 0


def test_short_lived_certificate_reports_days_left(tmp_path: Path) -> None:
    """A certificate two days from expiry is ready and reports 1 or 2 days."""
    pair = write_pair(tmp_path, valid_for=datetime.timedelta(days=2))
    config = _config(
        tmp_path, use_tls=True, cert_path=str(pair.cert_path), key_path=str(pair.key_path)
    )
    report = HealthReporter(config, loader=load_certificate).readiness()
    assert report.ready is True
    assert report.checks["certNotExpired"] is True
    assert report.checks["certDaysLeft"] in (1, 2)


def test_unloadable_certificate_is_not_ready(tmp_path: Path) -> None:
    """A certificate that cannot be reloaded counts as expired."""

    def failing_loader(cert_path: str, key_path: str):
        raise CertificateNotFound(cert_path)

    config = _config(tmp_path, use_tls=True)
    report = HealthReporter(config, loader=failing_loader).readiness()
    assert report.checks["certNotExpired"] is False
    assert report.checks["certDaysLeft"] == 0
    assert report.ready is False


def test_clock_is_injectable(tmp_path: Path) -> None:
    """Certificate expiry is judged against the injected clock."""
    pair = write_pair(tmp_path, valid_for=datetime.timedelta(days=30))
    future = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(days=60)
    config = _config(
        tmp_path, use_tls=True, cert_path=str(pair.cert_path), key_path=str(pair.key_path)
    )
    report = HealthReporter(config, clock=lambda: future).readiness()
    assert report.checks["certNotExpired"] is False


def test_version_reports_distribution_or_unknown(tmp_path: Path) -> None:
    """/version falls back to 'unknown' when the package is not installed."""
    with patch.object(
        health.metadata, "version", side_effect=health.metadata.PackageNotFoundError
    ):
        assert installed_version() == "unknown"
    with patch.object(health.metadata, "version", return_value="1.2.3"):
        payload = json.loads(HealthReporter(_config(tmp_path)).version().body)
    assert payload["version"] == "1.2.3"
