"""Listener bootstrap and the connection accept loop."""

import logging
import socket
import ssl
import threading
from typing import Callable, Optional

from frontdoor.bootstrap.config import HostingConfiguration
from frontdoor.bootstrap.listener import ListenerPlan, bind_listener, select_listener
from frontdoor.domain.correlation_id import component_logger
from frontdoor.domain.response_builders import draining_response
from frontdoor.lifecycle.state import ServerLifecycle
from frontdoor.pipeline.io import send_response
from frontdoor.pipeline.stages import build_pipeline
from frontdoor.security.certificates import CertificateMaterial, load_certificate
from frontdoor.transport.context import WorkerContext
from frontdoor.transport.worker import handle_client

ACCEPT_LOGGER = component_logger("transport.accept")


def _reject(client_socket: socket.socket, response) -> None:
    """Best-effort plaintext refusal; TLS sockets are closed without a reply."""
    try:
        if not isinstance(client_socket, ssl.SSLSocket):
            send_response(client_socket, response)
    except OSError:
        pass
    finally:
        client_socket.close()


def _handle_accepted_client(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
) -> None:
    client_label = f"{client_address[0]}:{client_address[1]}"
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={"event": "client_accepted", "client": client_label},
        )

    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        daemon=True,
    )
    thread.start()


def build_worker_context(
    config: HostingConfiguration,
    plan: ListenerPlan,
    lifecycle: Optional[ServerLifecycle] = None,
) -> WorkerContext:
    """Wire the pipeline for the chosen listener."""
    return WorkerContext(
        pipeline=build_pipeline(config, tls_active=plan.tls),
        config=config,
        scheme=plan.scheme,
        lifecycle=lifecycle,
    )


def run_server(
    config: HostingConfiguration,
    lifecycle: ServerLifecycle,
    loader: Callable[[str, str], CertificateMaterial] = load_certificate,
) -> None:
    """Bind the single listener and serve connections until shutdown."""
    plan = select_listener(config, loader)
    server_socket = bind_listener(plan)
    context = build_worker_context(config, plan, lifecycle)

    ACCEPT_LOGGER.info(
        "Front door listening for connections",
        extra={
            "event": "server_listening",
            "host": plan.host,
            "port": plan.port,
            "scheme": plan.scheme,
            "tls": plan.tls,
            "content_root": config.content_root,
        },
    )

    try:
        while True:
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                if lifecycle.should_stop():
                    break
                continue
            except OSError as error:
                if lifecycle.should_stop():
                    break
                ACCEPT_LOGGER.error(
                    "Socket accept failed",
                    extra={"event": "accept_error", "error_type": type(error).__name__},
                )
                continue

            if lifecycle.is_draining():
                _reject(client_socket, draining_response())
                continue

            _handle_accepted_client(
                client_socket,
                client_address,
                context,
            )
    finally:
        server_socket.close()
        ACCEPT_LOGGER.info(
            "Waiting for active connections to complete",
            extra={
                "event": "shutdown_waiting",
                "shutdown_grace_seconds": config.shutdown_grace_seconds,
            },
        )
        lifecycle.wait_for_workers(config.shutdown_grace_seconds)
        ACCEPT_LOGGER.info("Front door stopped", extra={"event": "server_stopped"})
