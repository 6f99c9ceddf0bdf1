"""One structured log line per completed request."""

import logging
import time
from typing import Optional

from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.domain.http_types import HttpRequest, HttpResponse

REQUEST_LOGGER = component_logger("pipeline.requests")

QUIET_PREFIXES = ("/healthz", "/readyz", "/assets")


def _is_quiet(path: str) -> bool:
    lowered = path.lower()
    return any(
        lowered == prefix or lowered.startswith(prefix + "/") for prefix in QUIET_PREFIXES
    )


def request_log_level(path: str, status_code: int) -> int:
    """Pick the level for a request line: ERROR for 5xx, DEBUG for probes and assets."""
    if status_code >= 500:
        return logging.ERROR
    if _is_quiet(path):
        return logging.DEBUG
    return logging.INFO


class RequestLogging:
    """Times the downstream pipeline and logs the outcome."""

    def __init__(self, logger: Optional[CorrelationLoggerAdapter] = None) -> None:
        self._logger = logger or REQUEST_LOGGER

    def _emit(self, request: HttpRequest, status_code: int, started: float) -> None:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 3)
        level = request_log_level(request.path, status_code)
        if not self._logger.logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            "HTTP %s %s responded %s in %.1f ms",
            request.method,
            request.path,
            status_code,
            elapsed_ms,
            extra={
                "event": "request_completed",
                "method": request.method,
                "route": request.path,
                "status_code": status_code,
                "duration_ms": elapsed_ms,
                "client_ip": request.client_ip,
                "identity": request.identity or "anonymous",
                "scheme": request.scheme,
            },
        )

    def __call__(self, request: HttpRequest, call_next) -> HttpResponse:
        started = time.perf_counter()
        try:
            response = call_next(request)
        except Exception:
            self._emit(request, 500, started)
            raise
        self._emit(request, response.status_code, started)
        return response
