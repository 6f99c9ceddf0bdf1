"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Iterable, Optional


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request.

    ``peer_ip`` is the address of the socket peer and never changes.
    ``client_ip`` and ``scheme`` start out equal to the peer values and may be
    rewritten by forwarded-header normalization. ``identity`` is filled in by
    the authentication stage.
    """

    method: str
    path: str
    headers: dict[str, str]
    body: bytes
    client_ip: str = ""
    scheme: str = "http"
    peer_ip: str = ""
    query: str = ""
    identity: Optional[str] = None
    peer_certificate: Optional[dict[str, Any]] = None
    http_version: str = "HTTP/1.1"


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    body_iter: Optional[Iterable[bytes]] = None
    use_chunked: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        """Numeric status parsed from the status line."""
        return int(self.status_line.split(" ", 2)[1])

    def close_body(self) -> None:
        """Release the streaming body, closing any open file handle."""
        close = getattr(self.body_iter, "close", None)
        if close is not None:
            close()


def status_line(status: int) -> str:
    """Build an HTTP/1.1 status line for the given code."""
    return f"HTTP/1.1 {status} {HTTPStatus(status).phrase}"


def should_close(headers: dict[str, str]) -> bool:
    """Determine whether the connection should be closed after responding."""
    return headers.get("connection", "").lower() == "close"
