"""HTTP/2 connection handling for sockets that negotiated ``h2`` over ALPN.

Streams are answered one at a time, in the order their requests complete.
While a response waits for flow-control credit the connection keeps reading,
so WINDOW_UPDATE frames arrive and further requests queue up behind it.
"""

import collections
import logging
import socket
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.errors import ErrorCodes
from h2.events import (
    ConnectionTerminated,
    DataReceived,
    RequestReceived,
    StreamEnded,
    StreamReset,
)
from h2.exceptions import ProtocolError, StreamClosedError

from frontdoor.bootstrap.config import MAX_BODY_BYTES
from frontdoor.domain.correlation_id import (
    CorrelationLoggerAdapter,
    adopt_correlation_id,
    component_logger,
    correlation_scope,
    get_correlation_id,
)
from frontdoor.domain.http_types import HttpRequest, HttpResponse
from frontdoor.domain.response_builders import draining_response
from frontdoor.lifecycle.state import ServerLifecycle

H2_LOGGER = component_logger("transport.h2")

READ_SIZE = 65535
CONNECTION_SPECIFIC_HEADERS = frozenset(
    {"connection", "keep-alive", "proxy-connection", "transfer-encoding", "upgrade"}
)
BODYLESS_STATUSES = (204, 304)


@dataclass
class _StreamState:
    headers: list[tuple[str, str]]
    body: bytearray = field(default_factory=bytearray)


class H2ConnectionHandler:
    """Serves every stream of one HTTP/2 connection through ``dispatch``."""

    def __init__(
        self,
        sock: socket.socket,
        client_address: tuple,
        dispatch: Callable[[HttpRequest], HttpResponse],
        peer_certificate: Optional[dict[str, Any]] = None,
        lifecycle: Optional[ServerLifecycle] = None,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self._sock = sock
        self._peer_ip = client_address[0] if client_address else ""
        self._dispatch = dispatch
        self._peer_certificate = peer_certificate
        self._lifecycle = lifecycle
        self._logger = logger or H2_LOGGER
        self._conn = H2Connection(
            config=H2Configuration(client_side=False, header_encoding="utf-8")
        )
        self._streams: dict[int, _StreamState] = {}
        self._ready: collections.deque[int] = collections.deque()
        self._reset: set[int] = set()
        self._closed = False

    def _flush(self) -> None:
        outbound = self._conn.data_to_send()
        if outbound:
            self._sock.sendall(outbound)

    def _draining(self) -> bool:
        return self._lifecycle is not None and self._lifecycle.is_draining()

    def serve(self) -> None:
        """Run the connection until the peer leaves or the server drains."""
        self._conn.initiate_connection()
        self._flush()
        while not self._closed:
            while self._ready and not self._closed:
                self._respond(self._ready.popleft())
            if self._draining():
                self._conn.close_connection()
                self._flush()
                return
            data = self._sock.recv(READ_SIZE)
            if not data:
                return
            self._receive(data)

    def _receive(self, data: bytes) -> None:
        try:
            events = self._conn.receive_data(data)
        except ProtocolError as error:
            self._logger.warning(
                "HTTP/2 protocol error",
                extra={"event": "h2_protocol_error", "error_type": type(error).__name__},
            )
            self._flush()
            self._closed = True
            return
        for event in events:
            self._handle_event(event)
        self._flush()

    def _handle_event(self, event) -> None:
        if isinstance(event, RequestReceived):
            self._streams[event.stream_id] = _StreamState(list(event.headers))
        elif isinstance(event, DataReceived):
            self._conn.acknowledge_received_data(
                event.flow_controlled_length, event.stream_id
            )
            state = self._streams.get(event.stream_id)
            if state is None:
                return
            state.body.extend(event.data)
            if len(state.body) > MAX_BODY_BYTES:
                self._logger.warning(
                    "Request body size exceeded limit",
                    extra={"event": "body_size_exceeded", "limit": MAX_BODY_BYTES},
                )
                self._streams.pop(event.stream_id, None)
                self._conn.reset_stream(event.stream_id, ErrorCodes.REFUSED_STREAM)
        elif isinstance(event, StreamEnded):
            if event.stream_id in self._streams:
                self._ready.append(event.stream_id)
        elif isinstance(event, StreamReset):
            self._reset.add(event.stream_id)
            self._streams.pop(event.stream_id, None)
        elif isinstance(event, ConnectionTerminated):
            self._closed = True

    def _build_request(self, state: _StreamState) -> HttpRequest:
        pseudo: dict[str, str] = {}
        headers: dict[str, str] = {}
        for name, value in state.headers:
            if name.startswith(":"):
                pseudo[name] = value
            elif name in headers:
                headers[name] = f"{headers[name]}, {value}"
            else:
                headers[name] = value
        if "host" not in headers and ":authority" in pseudo:
            headers["host"] = pseudo[":authority"]
        target = urllib.parse.urlsplit(pseudo.get(":path", "/"))
        return HttpRequest(
            pseudo.get(":method", "GET"),
            urllib.parse.unquote(target.path),
            headers,
            bytes(state.body),
            client_ip=self._peer_ip,
            scheme="https",
            peer_ip=self._peer_ip,
            query=target.query,
            peer_certificate=self._peer_certificate,
            http_version="HTTP/2",
        )

    def _respond(self, stream_id: int) -> None:
        state = self._streams.pop(stream_id, None)
        if state is None:
            return
        with correlation_scope():
            request = self._build_request(state)
            adopt_correlation_id(request.headers.get("x-request-id"))
            response = (
                draining_response() if self._draining() else self._dispatch(request)
            )
            try:
                self._send_response(stream_id, request, response)
            finally:
                response.close_body()

    def _response_headers(
        self, request: HttpRequest, response: HttpResponse
    ) -> list[tuple[str, str]]:
        headers = [(":status", str(response.status_code))]
        for name, value in response.headers.items():
            lowered = name.lower()
            if lowered not in CONNECTION_SPECIFIC_HEADERS:
                headers.append((lowered, str(value)))
        correlation_id = get_correlation_id()
        if correlation_id:
            headers.append(("x-request-id", correlation_id))
        if (
            response.body_iter is None
            and "content-length" not in response.headers
            and "Content-Length" not in response.headers
            and response.status_code not in BODYLESS_STATUSES
        ):
            headers.append(("content-length", str(len(response.body))))
        return headers

    def _send_response(
        self, stream_id: int, request: HttpRequest, response: HttpResponse
    ) -> None:
        headers = self._response_headers(request, response)
        bodyless = request.method == "HEAD" or response.status_code in BODYLESS_STATUSES
        try:
            self._conn.send_headers(stream_id, headers, end_stream=bodyless)
        except StreamClosedError:
            return
        self._flush()
        if bodyless:
            return

        chunks: Iterable[bytes] = (
            response.body_iter if response.body_iter is not None else (response.body,)
        )
        for chunk in chunks:
            if chunk and not self._send_data(stream_id, chunk):
                self._logger.debug(
                    "Stream reset while sending body",
                    extra={"event": "h2_stream_reset", "route": request.path},
                )
                return
        if self._usable(stream_id):
            self._conn.end_stream(stream_id)
            self._flush()
        if self._logger.logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(
                "Sent HTTP/2 response",
                extra={"event": "response_sent", "status_code": response.status_code},
            )

    def _usable(self, stream_id: int) -> bool:
        return not self._closed and stream_id not in self._reset

    def _await_window(self, stream_id: int) -> int:
        """Read from the peer until the stream has send credit, or 0 if it is gone."""
        while self._usable(stream_id):
            try:
                window = self._conn.local_flow_control_window(stream_id)
            except StreamClosedError:
                return 0
            if window > 0:
                return window
            data = self._sock.recv(READ_SIZE)
            if not data:
                raise ConnectionError("Peer closed while awaiting flow-control credit")
            self._receive(data)
        return 0

    def _send_data(self, stream_id: int, data: bytes) -> bool:
        view = memoryview(data)
        while view:
            window = self._await_window(stream_id)
            if window <= 0:
                return False
            size = min(window, len(view), self._conn.max_outbound_frame_size)
            self._conn.send_data(stream_id, view[:size].tobytes())
            self._flush()
            view = view[size:]
        return True
