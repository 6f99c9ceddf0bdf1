"""Request validation applied before routing."""

from typing import Optional

from frontdoor.bootstrap.config import ALLOWED_METHODS
from frontdoor.domain.http_types import HttpRequest, HttpResponse
from frontdoor.domain.response_builders import (
    bad_request_response,
    method_not_allowed_response,
)


class RequestEntityTooLarge(Exception):
    """Raised when a request body exceeds the configured limit."""


class RequestHeaderTooLarge(Exception):
    """Raised when the request line plus headers exceed the configured limit."""


def enforce_allowed_method(
    request: HttpRequest, allowed_methods: set[str] = ALLOWED_METHODS
) -> Optional[HttpResponse]:
    """Reject methods outside the read-only allowlist with 405."""
    if request.method in allowed_methods:
        return None
    return method_not_allowed_response(request, allowed_methods)


def enforce_safe_path(request: HttpRequest) -> Optional[HttpResponse]:
    """Reject paths that are not origin-form or that smuggle NUL bytes."""
    if not request.path.startswith("/") or "\x00" in request.path:
        return bad_request_response(request)
    return None


def validate_request(request: HttpRequest) -> Optional[HttpResponse]:
    """Return an error response when the request fails validation checks."""
    method_error = enforce_allowed_method(request)
    if method_error is not None:
        return method_error
    return enforce_safe_path(request)
