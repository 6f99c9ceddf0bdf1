"""Authentication and authorization stages."""

import logging
from typing import Iterable, Optional, Protocol

from frontdoor.bootstrap.config import HostingConfiguration
from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.domain.http_types import HttpRequest, HttpResponse
from frontdoor.domain.response_builders import forbidden_response, unauthorized_response
from frontdoor.pipeline.forwarded import is_trusted, parse_networks

AUTH_LOGGER = component_logger("pipeline.auth")

ANONYMOUS_PATHS = frozenset({"/healthz", "/readyz"})


class Authenticator(Protocol):
    """Resolves the caller's identity from a request, or returns None."""

    challenge: Optional[str]

    def authenticate(self, request: HttpRequest) -> Optional[str]:
        ...


class AnonymousAuthenticator:
    """Never resolves an identity; used when authentication is off."""

    challenge: Optional[str] = None

    def authenticate(self, request: HttpRequest) -> Optional[str]:
        return None


def common_name(peer_certificate: Optional[dict]) -> Optional[str]:
    """Extract the subject commonName from an ``ssl.getpeercert()`` mapping."""
    if not peer_certificate:
        return None
    for rdn in peer_certificate.get("subject", ()):
        for key, value in rdn:
            if key == "commonName":
                return value
    return None


class ClientCertificateAuthenticator:
    """Identifies callers by the CN of a verified TLS client certificate."""

    challenge: Optional[str] = None

    def authenticate(self, request: HttpRequest) -> Optional[str]:
        return common_name(request.peer_certificate)


class ProxyHeaderAuthenticator:
    """Trusts an identity header, but only when a known proxy sent it."""

    challenge: Optional[str] = None

    def __init__(self, header_name: str, known_proxies: Iterable[str]) -> None:
        self._header = header_name.lower()
        self._networks = parse_networks(known_proxies)

    def authenticate(self, request: HttpRequest) -> Optional[str]:
        if not is_trusted(request.peer_ip, self._networks):
            return None
        identity = request.headers.get(self._header, "").strip()
        return identity or None


def build_authenticator(config: HostingConfiguration) -> Authenticator:
    """Return the authenticator for the configured mode."""
    if config.auth_mode == "client-certificate":
        return ClientCertificateAuthenticator()
    if config.auth_mode == "proxy-header":
        return ProxyHeaderAuthenticator(config.trusted_user_header, config.known_proxies)
    return AnonymousAuthenticator()


class AuthorizationPolicy:
    """Fallback policy: authenticated users only, except anonymous paths.

    ``allowed_users`` narrows access further when non-empty.
    """

    def __init__(
        self,
        enabled: bool,
        anonymous_paths: Iterable[str] = ANONYMOUS_PATHS,
        allowed_users: Iterable[str] = (),
    ) -> None:
        self._enabled = enabled
        self._anonymous_paths = frozenset(anonymous_paths)
        self._allowed_users = frozenset(allowed_users)

    def is_anonymous(self, path: str) -> bool:
        return path in self._anonymous_paths

    def decide(self, request: HttpRequest) -> Optional[int]:
        """Return None to allow, or the 401/403 status that denies."""
        if not self._enabled or self.is_anonymous(request.path):
            return None
        if request.identity is None:
            return 401
        if self._allowed_users and request.identity not in self._allowed_users:
            return 403
        return None


class Authentication:
    """Stage that attaches the resolved identity to the request."""

    def __init__(
        self,
        authenticator: Authenticator,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self.authenticator = authenticator
        self._logger = logger or AUTH_LOGGER

    def __call__(self, request: HttpRequest, call_next) -> HttpResponse:
        request.identity = self.authenticator.authenticate(request)
        if request.identity and self._logger.logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(
                "Caller authenticated",
                extra={"event": "authenticated", "identity": request.identity},
            )
        return call_next(request)


class Authorization:
    """Stage that enforces an :class:`AuthorizationPolicy`."""

    def __init__(
        self,
        policy: AuthorizationPolicy,
        challenge: Optional[str] = None,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self.policy = policy
        self._challenge = challenge
        self._logger = logger or AUTH_LOGGER

    def __call__(self, request: HttpRequest, call_next) -> HttpResponse:
        denial = self.policy.decide(request)
        if denial is None:
            return call_next(request)
        self._logger.warning(
            "Request denied",
            extra={
                "event": "authorization_denied",
                "route": request.path,
                "status_code": denial,
                "identity": request.identity or "anonymous",
            },
        )
        if denial == 401:
            return unauthorized_response(request, self._challenge)
        return forbidden_response(request)
