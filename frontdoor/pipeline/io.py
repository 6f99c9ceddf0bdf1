"""HTTP/1.1 wire input and output."""

import email.utils
import logging
import socket
import urllib.parse
from typing import Optional, Tuple

from frontdoor.bootstrap.config import HEADER_DELIMITER, MAX_BODY_BYTES, MAX_HEADER_BYTES
from frontdoor.domain.correlation_id import (
    adopt_correlation_id,
    component_logger,
    get_correlation_id,
)
from frontdoor.domain.http_types import HttpRequest, HttpResponse
from frontdoor.pipeline.validation import RequestEntityTooLarge, RequestHeaderTooLarge

IO_LOGGER = component_logger("io")

SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")
BODYLESS_STATUSES = (204, 304)


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed: dict[str, str] = {}
    for line in lines:
        if ":" not in line:
            continue
        name, value = line.split(":", 1)
        name = name.strip().lower()
        if name:
            parsed[name] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str, str]:
    """Split the request line into method, decoded path, raw query and version."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if version not in SUPPORTED_VERSIONS:
        raise ValueError("Unsupported HTTP version")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path)
    return method, path, parsed_target.query, version


def determine_content_length(headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    if "transfer-encoding" in headers:
        raise ValueError("Chunked request bodies are not accepted")
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise RequestEntityTooLarge
    return content_length


def receive_request(
    client_socket: socket.socket,
    buffer: bytes,
    client_address: Optional[tuple] = None,
    scheme: str = "http",
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available."""
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise RequestHeaderTooLarge
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    if len(header_block) > MAX_HEADER_BYTES:
        raise RequestHeaderTooLarge
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, path, query, version = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])
    adopt_correlation_id(headers.get("x-request-id"))

    content_length = determine_content_length(headers)

    while len(remainder) < content_length:
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        remainder += chunk

    body = remainder[:content_length]
    leftover = remainder[content_length:]
    peer_ip = client_address[0] if client_address else ""
    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Parsed request",
            extra={"event": "request_parsed", "method": method, "route": path},
        )
    request = HttpRequest(
        method,
        path,
        headers,
        body,
        client_ip=peer_ip,
        scheme=scheme,
        peer_ip=peer_ip,
        query=query,
        http_version=version,
    )
    return request, leftover


def _serialize_head(response: HttpResponse, headers: dict[str, str]) -> bytes:
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    return "\r\n".join(header_lines).encode("latin-1") + b"\r\n\r\n"


def _choose_framing(
    response: HttpResponse, headers: dict[str, str], chunked_allowed: bool
) -> str:
    """Pick how the body is delimited and adjust the headers to match.

    Streams of known length keep their Content-Length. Streams of unknown
    length are chunked, or for HTTP/1.0 peers delimited by closing the
    connection.
    """
    if response.status_code in BODYLESS_STATUSES:
        headers.pop("Content-Length", None)
        return "none"
    if response.body_iter is None:
        headers.setdefault("Content-Length", str(len(response.body)))
        return "buffered"
    if "Content-Length" in headers and not response.use_chunked:
        return "length"
    headers.pop("Content-Length", None)
    if chunked_allowed:
        headers["Transfer-Encoding"] = "chunked"
        return "chunked"
    response.close_connection = True
    return "close"


def send_response(
    client_socket: socket.socket,
    response: HttpResponse,
    include_body: bool = True,
    chunked_allowed: bool = True,
) -> None:
    """Serialize and send the response; the body iterator is always closed.

    Pass ``chunked_allowed=False`` for HTTP/1.0 requests.
    """
    try:
        headers = dict(response.headers)
        headers.setdefault("Date", email.utils.formatdate(usegmt=True))

        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id

        framing = _choose_framing(response, headers, chunked_allowed)
        if response.close_connection:
            headers["Connection"] = "close"

        header_block = _serialize_head(response, headers)
        if not include_body or framing == "none":
            client_socket.sendall(header_block)
        elif framing == "buffered":
            client_socket.sendall(header_block + response.body)
        else:
            client_socket.sendall(header_block)
            for chunk in response.body_iter:  # type: ignore[union-attr]
                if not chunk:
                    continue
                if framing == "chunked":
                    chunk = f"{len(chunk):X}\r\n".encode() + chunk + b"\r\n"
                client_socket.sendall(chunk)
            if framing == "chunked":
                client_socket.sendall(b"0\r\n\r\n")
    finally:
        response.close_body()

    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Sent response",
            extra={"event": "response_sent", "status_code": response.status_code},
        )
