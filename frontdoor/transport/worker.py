"""Per-connection worker: TLS handshake, protocol selection and request loop."""

import logging
import socket
import ssl
import threading
from dataclasses import dataclass
from typing import Optional

from frontdoor.bootstrap.config import MAX_BODY_BYTES, MAX_HEADER_BYTES
from frontdoor.domain.correlation_id import (
    clear_correlation_id,
    component_logger,
    correlation_scope,
)
from frontdoor.domain.http_types import HttpRequest, HttpResponse, should_close
from frontdoor.domain.response_builders import (
    bad_request_response,
    draining_response,
    entity_too_large_response,
    header_too_large_response,
)
from frontdoor.lifecycle.state import ServerLifecycle
from frontdoor.pipeline.io import receive_request, send_response
from frontdoor.pipeline.validation import RequestEntityTooLarge, RequestHeaderTooLarge
from frontdoor.transport.context import WorkerContext
from frontdoor.transport.h2_connection import H2ConnectionHandler

WORKER_LOGGER = component_logger("transport.worker")


def _client_label(client_address: tuple) -> str:
    return f"{client_address[0]}:{client_address[1]}"


def _complete_handshake(client_socket: socket.socket, client_label: str) -> bool:
    """Finish the TLS handshake off the accept thread; False drops the client."""
    if not isinstance(client_socket, ssl.SSLSocket):
        return True
    try:
        client_socket.do_handshake()
    except (ssl.SSLError, OSError) as error:
        WORKER_LOGGER.warning(
            "TLS handshake failed",
            extra={
                "event": "tls_handshake_failed",
                "client": client_label,
                "error_type": type(error).__name__,
            },
        )
        return False
    return True


def _read_request(
    client_socket: socket.socket,
    buffer: bytes,
    client_address: tuple,
    scheme: str,
) -> tuple[Optional[HttpRequest], bytes, bool]:
    """Read one request, answering framing errors directly on the socket."""
    client_label = _client_label(client_address)
    try:
        request, buffer = receive_request(client_socket, buffer, client_address, scheme)
    except RequestEntityTooLarge:
        WORKER_LOGGER.warning(
            "Request body size exceeded limit",
            extra={
                "event": "body_size_exceeded",
                "client": client_label,
                "limit": MAX_BODY_BYTES,
            },
        )
        send_response(client_socket, entity_too_large_response())
        return None, b"", True
    except RequestHeaderTooLarge:
        WORKER_LOGGER.warning(
            "Request headers exceeded limit",
            extra={
                "event": "headers_too_large",
                "client": client_label,
                "limit": MAX_HEADER_BYTES,
            },
        )
        send_response(client_socket, header_too_large_response())
        return None, b"", True
    except ValueError:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client_label},
        )
        send_response(client_socket, bad_request_response(None))
        return None, b"", True

    if request is None:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Client disconnected",
                extra={"event": "client_disconnected", "client": client_label},
            )
        return None, buffer, True
    return request, buffer, False


def _keep_alive_refused(request: HttpRequest, response: HttpResponse) -> bool:
    if response.close_connection or should_close(request.headers):
        return True
    if request.http_version == "HTTP/1.0":
        return request.headers.get("connection", "").lower() != "keep-alive"
    return False


def _serve_one(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
    buffer: bytes,
) -> tuple[bool, bytes]:
    """Answer one request; returns whether to keep the connection and leftover bytes."""
    lifecycle = context.lifecycle
    # Idle keep-alive connections are closed rather than kept through a drain.
    if lifecycle is not None and lifecycle.is_draining() and not buffer:
        return False, b""

    request, buffer, should_terminate = _read_request(
        client_socket, buffer, client_address, context.scheme
    )
    if should_terminate or request is None:
        return False, b""
    if lifecycle is not None and lifecycle.is_draining():
        send_response(client_socket, draining_response())
        return False, b""
    if context.scheme == "https":
        request.peer_certificate = _peer_certificate(client_socket)

    response = context.pipeline.handle(request)
    response.close_connection = _keep_alive_refused(request, response)
    send_response(
        client_socket,
        response,
        include_body=request.method != "HEAD",
        chunked_allowed=request.http_version != "HTTP/1.0",
    )
    return not response.close_connection, buffer


def _serve_http1(
    client_socket: socket.socket, client_address: tuple, context: WorkerContext
) -> None:
    buffer = b""
    keep_open = True
    while keep_open:
        with correlation_scope():
            keep_open, buffer = _serve_one(
                client_socket, client_address, context, buffer
            )


def _peer_certificate(client_socket: socket.socket) -> Optional[dict]:
    if not isinstance(client_socket, ssl.SSLSocket):
        return None
    try:
        return client_socket.getpeercert() or None
    except (ValueError, ssl.SSLError):
        return None


@dataclass
class _WorkerResources:
    thread: threading.Thread
    client_socket: socket.socket
    client_label: str


def _cleanup_worker(
    context: WorkerContext,
    lifecycle: Optional[ServerLifecycle],
    resources: _WorkerResources,
) -> None:
    if lifecycle is not None:
        lifecycle.cleanup_worker(resources.thread)
    try:
        resources.client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    resources.client_socket.close()
    if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Socket closed",
            extra={"event": "socket_closed", "client": resources.client_label},
        )
    clear_correlation_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
) -> None:
    """Serve one accepted connection until it closes."""
    current_thread = threading.current_thread()
    lifecycle = context.lifecycle
    if lifecycle is not None:
        lifecycle.register_worker(current_thread)
    client_label = _client_label(client_address)
    resources = _WorkerResources(current_thread, client_socket, client_label)

    try:
        client_socket.settimeout(context.config.socket_timeout)
        if not _complete_handshake(client_socket, client_label):
            return
        alpn = (
            client_socket.selected_alpn_protocol()
            if isinstance(client_socket, ssl.SSLSocket)
            else None
        )
        if alpn == "h2":
            if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                WORKER_LOGGER.debug(
                    "Negotiated HTTP/2",
                    extra={"event": "alpn_selected", "client": client_label, "alpn": alpn},
                )
            H2ConnectionHandler(
                client_socket,
                client_address,
                context.pipeline.handle,
                peer_certificate=_peer_certificate(client_socket),
                lifecycle=lifecycle,
            ).serve()
        else:
            _serve_http1(client_socket, client_address, context)
    except TimeoutError:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Idle connection timed out",
                extra={"event": "connection_timeout", "client": client_label},
            )
    except (ConnectionError, OSError, ssl.SSLError) as error:
        WORKER_LOGGER.warning(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_label,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_label,
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
    finally:
        _cleanup_worker(context, lifecycle, resources)
