"""Listener selection: HTTPS-only when the certificate loads, HTTP otherwise."""

import socket
import ssl
from dataclasses import dataclass
from typing import Callable, Optional

from frontdoor.bootstrap.config import HostingConfiguration
from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.security.certificates import (
    CertificateLoadError,
    CertificateMaterial,
    load_certificate,
)

LISTENER_LOGGER = component_logger("listener")

ALPN_PROTOCOLS = ["h2", "http/1.1"]

CertificateLoader = Callable[[str, str], CertificateMaterial]


@dataclass
class ListenerPlan:
    """The bind decision: where to listen and with which TLS identity."""

    host: str
    port: int
    scheme: str
    ssl_context: Optional[ssl.SSLContext] = None
    material: Optional[CertificateMaterial] = None
    fallback_reason: Optional[str] = None

    @property
    def tls(self) -> bool:
        """Return True when the listener terminates TLS."""
        return self.ssl_context is not None


def build_tls_context(
    material: CertificateMaterial, client_ca_path: Optional[str] = None
) -> ssl.SSLContext:
    """Create a server context for TLS 1.2+ advertising HTTP/2 and HTTP/1.1."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_alpn_protocols(ALPN_PROTOCOLS)
    material.install_into(context)
    if client_ca_path:
        try:
            context.load_verify_locations(cafile=client_ca_path)
        except (OSError, ssl.SSLError) as exc:
            raise CertificateLoadError("Cannot load the client CA bundle") from exc
        context.verify_mode = ssl.CERT_OPTIONAL
    return context


def _plaintext_plan(config: HostingConfiguration, reason: Optional[str]) -> ListenerPlan:
    return ListenerPlan(config.host, config.http_port, "http", fallback_reason=reason)


def select_listener(
    config: HostingConfiguration,
    loader: CertificateLoader = load_certificate,
    logger: Optional[CorrelationLoggerAdapter] = None,
) -> ListenerPlan:
    """Decide between HTTPS-only and plaintext HTTP binding.

    A certificate that fails to load never stops the service: the plan falls
    back to plaintext on ``http_port`` and the failure is logged at WARNING.
    """
    logger = logger or LISTENER_LOGGER
    if not config.use_tls:
        logger.warning(
            "TLS disabled; serving plaintext HTTP",
            extra={"event": "tls_disabled", "port": config.http_port},
        )
        return _plaintext_plan(config, "tls_disabled")

    try:
        material = loader(config.cert_path or "", config.key_path or "")
        client_ca = (
            config.client_ca_path if config.auth_mode == "client-certificate" else None
        )
        context = build_tls_context(material, client_ca)
    except CertificateLoadError as error:
        logger.warning(
            "Failed to load certificate from PEM; falling back to plaintext HTTP",
            extra={
                "event": "tls_fallback",
                "port": config.http_port,
                "error_type": type(error).__name__,
                "reason": str(error),
            },
            exc_info=True,
        )
        return _plaintext_plan(config, type(error).__name__)

    logger.info(
        "Certificate loaded",
        extra={
            "event": "certificate_loaded",
            "port": config.https_port,
            "reason": material.subject,
        },
    )
    return ListenerPlan(
        config.host, config.https_port, "https", ssl_context=context, material=material
    )


def bind_listener(plan: ListenerPlan) -> socket.socket:
    """Bind the single listening socket described by ``plan``."""
    family = socket.AF_INET6 if ":" in plan.host else socket.AF_INET
    server_socket = socket.create_server((plan.host, plan.port), family=family)
    server_socket.settimeout(0.5)
    if plan.ssl_context is not None:
        server_socket = plan.ssl_context.wrap_socket(
            server_socket, server_side=True, do_handshake_on_connect=False
        )
    return server_socket
