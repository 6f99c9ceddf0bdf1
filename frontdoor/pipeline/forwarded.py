"""X-Forwarded-For / X-Forwarded-Proto normalization for trusted proxies."""

import ipaddress
import logging
from typing import Iterable, Optional, Union

from frontdoor.bootstrap.config import ConfigurationError
from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.domain.http_types import HttpRequest, HttpResponse

FORWARDED_LOGGER = component_logger("pipeline.forwarded")

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_networks(entries: Iterable[str]) -> list[Network]:
    """Parse proxy addresses or CIDR blocks; a bare address is a /32 or /128."""
    networks: list[Network] = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry.strip(), strict=False))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid known proxy: {entry!r}") from exc
    return networks


def normalize_ip(value: str) -> str:
    """Canonicalize an address, unwrapping IPv4-mapped IPv6 addresses."""
    candidate = value.strip()
    if candidate.startswith("[") and "]" in candidate:
        candidate = candidate[1 : candidate.index("]")]
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return candidate
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return str(address.ipv4_mapped)
    return str(address)


def is_trusted(peer_ip: str, networks: list[Network]) -> bool:
    """Return True when ``peer_ip`` falls inside one of ``networks``."""
    try:
        address = ipaddress.ip_address(normalize_ip(peer_ip))
    except ValueError:
        return False
    return any(address in network for network in networks)


def _last_entry(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    entries = [item.strip() for item in header_value.split(",") if item.strip()]
    return entries[-1] if entries else None


class ForwardedHeaders:
    """Rewrites client address and scheme when the peer is a known proxy."""

    def __init__(
        self,
        known_proxies: Iterable[str],
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self._networks = parse_networks(known_proxies)
        self._logger = logger or FORWARDED_LOGGER

    def __call__(self, request: HttpRequest, call_next) -> HttpResponse:
        request.client_ip = normalize_ip(request.client_ip or request.peer_ip)
        if is_trusted(request.peer_ip, self._networks):
            forwarded_for = _last_entry(request.headers.get("x-forwarded-for"))
            if forwarded_for:
                request.client_ip = normalize_ip(forwarded_for)
            forwarded_proto = _last_entry(request.headers.get("x-forwarded-proto"))
            if forwarded_proto and forwarded_proto.lower() in ("http", "https"):
                request.scheme = forwarded_proto.lower()
            if self._logger.logger.isEnabledFor(logging.DEBUG):
                self._logger.debug(
                    "Applied forwarded headers",
                    extra={
                        "event": "forwarded_applied",
                        "client_ip": request.client_ip,
                        "scheme": request.scheme,
                    },
                )
        return call_next(request)
