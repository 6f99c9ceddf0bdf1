"""HSTS and plaintext-to-HTTPS redirection."""

from typing import Optional

from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.domain.http_types import HttpRequest, HttpResponse
from frontdoor.domain.response_builders import redirect_response

HTTPS_LOGGER = component_logger("pipeline.https")

DEFAULT_HTTPS_PORT = 443


def _host_without_port(host_header: str) -> str:
    if host_header.startswith("["):
        return host_header.split("]", 1)[0] + "]"
    return host_header.rsplit(":", 1)[0] if host_header.count(":") == 1 else host_header


def https_location(request: HttpRequest, https_port: int) -> str:
    """Build the HTTPS URL for ``request`` on ``https_port``."""
    host = _host_without_port(request.headers.get("host", "localhost"))
    authority = host if https_port == DEFAULT_HTTPS_PORT else f"{host}:{https_port}"
    target = request.path + (f"?{request.query}" if request.query else "")
    return f"https://{authority}{target}"


class HttpsEnforcement:
    """Redirects plaintext requests and stamps HSTS on secure responses.

    Disabled outside production and whenever the listener is not terminating
    TLS, so a certificate fallback never redirects clients into a closed port.
    """

    def __init__(
        self,
        active: bool,
        https_port: int,
        hsts_max_age: int,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self._active = active
        self._https_port = https_port
        self._hsts_value = f"max-age={hsts_max_age}; includeSubDomains"
        self._logger = logger or HTTPS_LOGGER

    @property
    def active(self) -> bool:
        return self._active

    def __call__(self, request: HttpRequest, call_next) -> HttpResponse:
        if not self._active:
            return call_next(request)
        if request.scheme != "https":
            location = https_location(request, self._https_port)
            self._logger.info(
                "Redirecting plaintext request to HTTPS",
                extra={"event": "https_redirect", "route": request.path},
            )
            return redirect_response(request, location)
        response = call_next(request)
        response.headers["Strict-Transport-Security"] = self._hsts_value
        return response
