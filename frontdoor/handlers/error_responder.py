"""Centralized translation of faults and misses into HTTP responses."""

import os
from pathlib import Path
from typing import Optional

from frontdoor.bootstrap.config import SECURITY_HEADERS
from frontdoor.domain.correlation_id import (
    CorrelationLoggerAdapter,
    component_logger,
    generate_correlation_id,
    get_correlation_id,
)
from frontdoor.domain.http_types import HttpRequest, HttpResponse, should_close, status_line
from frontdoor.domain.response_builders import empty_response, json_response
from frontdoor.handlers.asset_handler import stream_file

ERROR_LOGGER = component_logger("handlers.errors")

NOT_FOUND_DOCUMENT = "404.html"
SERVER_ERROR_DOCUMENT = "500.html"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"
PROBLEM_CONTENT_TYPE = "application/problem+json; charset=utf-8"
NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def wants_html(accept_header: str) -> bool:
    """Return True when any media range in Accept names text/html."""
    for media_range in accept_header.split(","):
        media_type = media_range.split(";", 1)[0].strip().lower()
        if "text/html" in media_type:
            return True
    return False


class ErrorResponder:
    """Builds 404 and 500 responses, preferring custom documents when present."""

    def __init__(
        self,
        content_root: str,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self._content_root = Path(content_root)
        self._logger = logger or ERROR_LOGGER

    def _document(self, name: str) -> Optional[Path]:
        candidate = self._content_root / name
        return candidate if candidate.is_file() else None

    def _html_document_response(
        self, status: int, document: Path, request: HttpRequest, extra: dict[str, str]
    ) -> HttpResponse:
        headers = {"Content-Type": HTML_CONTENT_TYPE, **extra, **SECURITY_HEADERS}
        if request.method == "HEAD":
            headers["Content-Length"] = str(document.stat().st_size)
            return HttpResponse(
                status_line(status), headers, b"", should_close(request.headers)
            )
        body = stream_file(document, logger=self._logger)
        headers["Content-Length"] = str(os.fstat(body.file_handle.fileno()).st_size)
        return HttpResponse(
            status_line(status),
            headers,
            b"",
            should_close(request.headers),
            body_iter=body,
        )

    def not_found(self, request: HttpRequest) -> HttpResponse:
        """Return the custom not-found document, or a bare 404 without a body."""
        document = self._document(NOT_FOUND_DOCUMENT)
        if document is not None:
            try:
                return self._html_document_response(404, document, request, {})
            except OSError:
                self._logger.warning(
                    "Not-found document could not be opened",
                    extra={"event": "error_document_unreadable", "route": request.path},
                )
        return empty_response(404, request)

    def internal_error(self, request: HttpRequest, error: BaseException) -> HttpResponse:
        """Log ``error`` and return a 500 that leaks neither traces nor paths."""
        trace_id = get_correlation_id() or generate_correlation_id()
        self._logger.error(
            "Unhandled exception",
            extra={
                "event": "unhandled_exception",
                "route": request.path,
                "method": request.method,
                "error_type": type(error).__name__,
                "trace_id": trace_id,
            },
            exc_info=(type(error), error, error.__traceback__),
        )

        document = self._document(SERVER_ERROR_DOCUMENT)
        if document is not None and wants_html(request.headers.get("accept", "")):
            try:
                return self._html_document_response(
                    500, document, request, NO_STORE_HEADERS
                )
            except OSError:
                self._logger.warning(
                    "Error document could not be opened",
                    extra={"event": "error_document_unreadable", "route": request.path},
                )

        problem = {
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred.",
            "instance": request.path,
            "traceId": trace_id,
        }
        response = json_response(
            500,
            problem,
            request,
            content_type=PROBLEM_CONTENT_TYPE,
            extra_headers=NO_STORE_HEADERS,
        )
        return response
