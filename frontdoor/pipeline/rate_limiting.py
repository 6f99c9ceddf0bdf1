"""Per-client fixed window rate limiting stage."""

import logging
from typing import Optional

from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.domain.fixed_window import UNKNOWN_CLIENT, FixedWindowLimiter
from frontdoor.domain.http_types import HttpRequest, HttpResponse
from frontdoor.domain.response_builders import rate_limited_response

LIMITER_LOGGER = component_logger("pipeline.rate_limiting")


class RateLimiting:
    """Admits or rejects each request against its client's current window."""

    def __init__(
        self,
        limiter: FixedWindowLimiter,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self.limiter = limiter
        self._logger = logger or LIMITER_LOGGER

    def __call__(self, request: HttpRequest, call_next) -> HttpResponse:
        if not self.limiter.enabled:
            return call_next(request)

        client_key = request.client_ip or UNKNOWN_CLIENT
        decision = self.limiter.acquire(client_key)

        if not decision.allowed:
            self._logger.warning(
                "Rate limit enforced",
                extra={
                    "event": "rate_limit_enforced",
                    "client_ip": client_key,
                    "limit_type": "fixed_window",
                    "limit": decision.limit,
                    "window_seconds": decision.window_seconds,
                },
            )
            return rate_limited_response(decision, request)

        if self._logger.logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(
                "Rate limit check passed",
                extra={
                    "event": "rate_limit_allowed",
                    "client_ip": client_key,
                    "remaining": decision.remaining,
                },
            )
        response = call_next(request)
        for name, value in decision.headers.items():
            response.headers.setdefault(name, value)
        return response
