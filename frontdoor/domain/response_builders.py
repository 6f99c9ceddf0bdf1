"""Pure HTTP response builders."""

import json
from typing import Any, Optional

from frontdoor.bootstrap.config import SECURITY_HEADERS
from frontdoor.domain.http_types import (
    HttpRequest,
    HttpResponse,
    should_close,
    status_line,
)


def _close_requested(request: Optional[HttpRequest]) -> bool:
    return should_close(request.headers) if request is not None else True


def empty_response(
    status: int,
    request: Optional[HttpRequest],
    extra_headers: Optional[dict[str, str]] = None,
) -> HttpResponse:
    """Return a bodiless response carrying the security headers."""
    headers = {**SECURITY_HEADERS, **(extra_headers or {})}
    return HttpResponse(status_line(status), headers, b"", _close_requested(request))


def json_response(
    status: int,
    payload: dict[str, Any],
    request: Optional[HttpRequest],
    content_type: str = "application/json; charset=utf-8",
    extra_headers: Optional[dict[str, str]] = None,
) -> HttpResponse:
    """Serialize ``payload`` as a JSON response."""
    body = json.dumps(payload).encode()
    headers = {
        "Content-Type": content_type,
        "Cache-Control": "no-store",
        **SECURITY_HEADERS,
        **(extra_headers or {}),
    }
    return HttpResponse(status_line(status), headers, body, _close_requested(request))


def bad_request_response(request: Optional[HttpRequest]) -> HttpResponse:
    """Produce a 400 response honoring the caller's connection preference."""
    return empty_response(400, request)


def forbidden_response(request: Optional[HttpRequest]) -> HttpResponse:
    """Produce a 403 response honoring the caller's connection preference."""
    return empty_response(403, request)


def unauthorized_response(
    request: HttpRequest, challenge: Optional[str] = None
) -> HttpResponse:
    """Produce a 401 response, with a challenge when the scheme defines one."""
    extra = {"WWW-Authenticate": challenge} if challenge else None
    return empty_response(401, request, extra)


def entity_too_large_response() -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    return HttpResponse(
        status_line(413), SECURITY_HEADERS.copy(), b"", True
    )


def header_too_large_response() -> HttpResponse:
    """Produce a 431 response that always closes the connection."""
    return HttpResponse(
        status_line(431), SECURITY_HEADERS.copy(), b"", True
    )


def method_not_allowed_response(
    request: HttpRequest, allowed_methods: set[str]
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    return empty_response(405, request, {"Allow": ", ".join(sorted(allowed_methods))})


def redirect_response(request: HttpRequest, location: str) -> HttpResponse:
    """Produce a 307 redirect that preserves the request method."""
    return empty_response(307, request, {"Location": location})


def not_modified_response(
    request: HttpRequest, validators: dict[str, str]
) -> HttpResponse:
    """Produce a 304 response echoing the cache validators."""
    return empty_response(304, request, validators)


def rate_limited_response(decision, request: HttpRequest) -> HttpResponse:
    """Create a 429 response populated with RateLimit headers."""
    retry_after = max(1, int(decision.reset_seconds + 0.999))
    headers = {
        "Retry-After": str(retry_after),
        "Content-Type": "text/plain; charset=utf-8",
        **decision.headers,
        **SECURITY_HEADERS,
    }
    return HttpResponse(
        status_line(429),
        headers,
        b"Rate limit exceeded",
        should_close(request.headers),
    )


def draining_response() -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    headers = {"Connection": "close", **SECURITY_HEADERS}
    return HttpResponse(status_line(503), headers, b"draining", True)
