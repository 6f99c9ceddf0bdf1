"""The ordered request pipeline.

Each stage is a callable ``(request, call_next) -> response``. Stages run in
list order on the way in and unwind in reverse on the way out, so
``exception_boundary`` (first) sees every fault raised further down.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from frontdoor.bootstrap.config import HostingConfiguration
from frontdoor.domain.correlation_id import CorrelationLoggerAdapter
from frontdoor.domain.fixed_window import FixedWindowLimiter, FixedWindowSettings
from frontdoor.domain.http_types import HttpRequest, HttpResponse
from frontdoor.handlers.asset_handler import AssetResolver
from frontdoor.handlers.error_responder import ErrorResponder
from frontdoor.handlers.health import HealthReporter
from frontdoor.pipeline.auth import (
    Authentication,
    Authenticator,
    Authorization,
    AuthorizationPolicy,
    build_authenticator,
)
from frontdoor.pipeline.compression import Compression
from frontdoor.pipeline.forwarded import ForwardedHeaders
from frontdoor.pipeline.https import HttpsEnforcement
from frontdoor.pipeline.rate_limiting import RateLimiting
from frontdoor.pipeline.request_logging import RequestLogging
from frontdoor.pipeline.router import Router

CallNext = Callable[[HttpRequest], HttpResponse]
StageHandler = Callable[[HttpRequest, CallNext], HttpResponse]

STAGE_ORDER = (
    "exception_boundary",
    "forwarded_headers",
    "https_enforcement",
    "authentication",
    "authorization",
    "request_logging",
    "compression",
    "rate_limiting",
    "router",
)


class PipelineExhausted(RuntimeError):
    """Raised when the last stage calls ``call_next``; the router must not."""


@dataclass(frozen=True)
class PipelineStage:
    """A named pipeline step."""

    name: str
    handler: StageHandler


class ExceptionBoundary:
    """Converts any downstream exception into the error responder's 500."""

    def __init__(self, errors: ErrorResponder) -> None:
        self._errors = errors

    def __call__(self, request: HttpRequest, call_next: CallNext) -> HttpResponse:
        try:
            return call_next(request)
        except Exception as error:  # pylint: disable=broad-except
            return self._errors.internal_error(request, error)


class RequestPipeline:
    """Runs a request through an explicit, ordered list of stages."""

    def __init__(self, stages: Sequence[PipelineStage]) -> None:
        if not stages:
            raise ValueError("A pipeline needs at least one stage")
        self._stages = tuple(stages)

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self._stages]

    def stage(self, name: str) -> PipelineStage:
        """Look up a stage by name."""
        for stage in self._stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def _dispatch(self, index: int, request: HttpRequest) -> HttpResponse:
        if index >= len(self._stages):
            raise PipelineExhausted(self._stages[-1].name)
        handler = self._stages[index].handler
        return handler(request, lambda next_request: self._dispatch(index + 1, next_request))

    def handle(self, request: HttpRequest) -> HttpResponse:
        """Produce the response for ``request``."""
        return self._dispatch(0, request)


def build_pipeline(
    config: HostingConfiguration,
    tls_active: bool = False,
    limiter: Optional[FixedWindowLimiter] = None,
    authenticator: Optional[Authenticator] = None,
    health: Optional[HealthReporter] = None,
    logger: Optional[CorrelationLoggerAdapter] = None,
) -> RequestPipeline:
    """Assemble the production stage order for ``config``."""
    errors = ErrorResponder(config.content_root)
    resolver = AssetResolver(config.content_root)
    health = health or HealthReporter(config)
    limiter = limiter or FixedWindowLimiter(
        FixedWindowSettings(
            permit_limit=config.rate_limit,
            window_seconds=config.rate_window_seconds,
            max_keys=config.rate_limit_max_keys,
        )
    )
    authenticator = authenticator or build_authenticator(config)

    handlers: dict[str, StageHandler] = {
        "exception_boundary": ExceptionBoundary(errors),
        "forwarded_headers": ForwardedHeaders(config.known_proxies),
        "https_enforcement": HttpsEnforcement(
            active=config.enforce_https and tls_active,
            https_port=config.https_port,
            hsts_max_age=config.hsts_max_age,
        ),
        "authentication": Authentication(authenticator),
        "authorization": Authorization(
            AuthorizationPolicy(
                enabled=config.auth_enabled, allowed_users=config.allowed_users
            ),
            challenge=authenticator.challenge,
        ),
        "request_logging": RequestLogging(logger),
        "compression": Compression(),
        "rate_limiting": RateLimiting(limiter),
        "router": Router(resolver, errors, health),
    }
    return RequestPipeline([PipelineStage(name, handlers[name]) for name in STAGE_ORDER])
