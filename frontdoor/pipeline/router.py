"""Terminal routing stage: probes first, then assets, then not-found."""

import logging
from typing import Callable, Optional

from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.domain.http_types import HttpRequest, HttpResponse
from frontdoor.handlers.asset_handler import AssetFound, AssetResolver
from frontdoor.handlers.error_responder import ErrorResponder
from frontdoor.handlers.health import HealthReporter
from frontdoor.pipeline.validation import validate_request

ROUTER_LOGGER = component_logger("pipeline.router")


class Router:
    """Dispatches a request to the health endpoints or the asset resolver."""

    def __init__(
        self,
        resolver: AssetResolver,
        errors: ErrorResponder,
        health: HealthReporter,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self._resolver = resolver
        self._errors = errors
        self._logger = logger or ROUTER_LOGGER
        self._routes: dict[str, Callable[[HttpRequest], HttpResponse]] = {
            "/healthz": health.healthz,
            "/readyz": health.readyz,
            "/version": health.version,
        }

    def __call__(self, request: HttpRequest, call_next=None) -> HttpResponse:
        rejection = validate_request(request)
        if rejection is not None:
            return rejection

        endpoint = self._routes.get(request.path)
        if endpoint is not None:
            if self._logger.logger.isEnabledFor(logging.DEBUG):
                self._logger.debug(
                    "Route matched", extra={"event": "route_matched", "route": request.path}
                )
            return endpoint(request)

        resolution = self._resolver.resolve(request.path)
        if isinstance(resolution, AssetFound):
            try:
                return self._resolver.serve(request, resolution)
            except FileNotFoundError:
                self._logger.info(
                    "Asset removed before it could be opened",
                    extra={"event": "asset_vanished", "route": request.path},
                )
                return self._errors.not_found(request)

        if self._logger.logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(
                "No matching asset",
                extra={
                    "event": "route_not_found",
                    "route": request.path,
                    "reason": resolution.reason,
                },
            )
        return self._errors.not_found(request)
