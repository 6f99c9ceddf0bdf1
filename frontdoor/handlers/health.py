"""Liveness, readiness and version endpoints."""

import datetime
import os
import uuid
from dataclasses import dataclass, field
from importlib import metadata
from pathlib import Path
from typing import Callable, Optional, Union

from frontdoor.bootstrap.config import HostingConfiguration
from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.domain.http_types import HttpRequest, HttpResponse
from frontdoor.domain.response_builders import json_response
from frontdoor.security.certificates import (
    CertificateLoadError,
    CertificateMaterial,
    load_certificate,
)

HEALTH_LOGGER = component_logger("handlers.health")

DISTRIBUTION_NAME = "frontdoor"

CheckValue = Union[bool, int]
Clock = Callable[[], datetime.datetime]


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class ReadinessReport:
    """Result of one readiness evaluation."""

    checks: dict[str, CheckValue] = field(default_factory=dict)
    timestamp: str = ""

    @property
    def ready(self) -> bool:
        """True only when every boolean check passed."""
        return all(
            value for value in self.checks.values() if isinstance(value, bool)
        )

    @property
    def status(self) -> str:
        return "ready" if self.ready else "not-ready"

    def as_payload(self) -> dict:
        return {"status": self.status, "checks": self.checks, "timestamp": self.timestamp}


def installed_version() -> str:
    """Return the installed distribution version, or ``"unknown"``."""
    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return "unknown"


class HealthReporter:
    """Evaluates probes against the live configuration on every call."""

    def __init__(
        self,
        config: HostingConfiguration,
        loader: Callable[[str, str], CertificateMaterial] = load_certificate,
        clock: Clock = _utc_now,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self._config = config
        self._loader = loader
        self._clock = clock
        self._logger = logger or HEALTH_LOGGER

    def _timestamp(self) -> str:
        return self._clock().isoformat()

    def healthz(self, request: Optional[HttpRequest] = None) -> HttpResponse:
        """Liveness: the process is up and answering."""
        return json_response(200, {"status": "ok", "timestamp": self._timestamp()}, request)

    def _static_files_present(self) -> bool:
        return Path(self._config.content_root).is_dir()

    def _log_directory_writable(self) -> bool:
        log_directory = Path(self._config.log_directory)
        probe = log_directory / f".ready-probe-{uuid.uuid4().hex}"
        try:
            log_directory.mkdir(parents=True, exist_ok=True)
            with open(probe, "xb") as probe_file:
                probe_file.write(b"ok")
            os.remove(probe)
        except OSError as error:
            self._logger.warning(
                "Log directory is not writable",
                extra={"event": "readiness_log_probe_failed", "error_type": type(error).__name__},
            )
            return False
        return True

    def _certificate_checks(self, now: datetime.datetime) -> dict[str, CheckValue]:
        try:
            material = self._loader(self._config.cert_path or "", self._config.key_path or "")
        except CertificateLoadError as error:
            self._logger.warning(
                "Certificate could not be loaded for readiness",
                extra={"event": "readiness_cert_failed", "error_type": type(error).__name__},
            )
            return {"certNotExpired": False, "certDaysLeft": 0}
        return {
            "certNotExpired": not material.is_expired(now),
            "certDaysLeft": material.days_remaining(now),
        }

    def readiness(self) -> ReadinessReport:
        """Run every readiness check and collect the results."""
        now = self._clock()
        checks: dict[str, CheckValue] = {
            "staticFiles": self._static_files_present(),
            "logWritable": self._log_directory_writable(),
        }
        if self._config.use_tls:
            checks.update(self._certificate_checks(now))
        return ReadinessReport(checks=checks, timestamp=now.isoformat())

    def readyz(self, request: Optional[HttpRequest] = None) -> HttpResponse:
        """Readiness: 200 when every check passes, 503 otherwise."""
        report = self.readiness()
        if not report.ready:
            self._logger.info(
                "Readiness check failed",
                extra={"event": "readiness_failed", "reason": report.checks},
            )
        return json_response(200 if report.ready else 503, report.as_payload(), request)

    def version(self, request: Optional[HttpRequest] = None) -> HttpResponse:
        """Report the installed build version."""
        payload = {"version": installed_version(), "timestamp": self._timestamp()}
        return json_response(200, payload, request)
