"""Entry point for the static asset front door."""

import signal
import sys
from typing import Optional

from frontdoor.bootstrap.config import (
    ConfigurationError,
    load_hosting_configuration,
    parse_cli_args,
)
from frontdoor.bootstrap.logging_setup import configure_logging
from frontdoor.domain.correlation_id import component_logger
from frontdoor.lifecycle.state import ServerLifecycle
from frontdoor.transport.accept_loop import run_server

SERVER_LOGGER = component_logger("server")


def main(argv: Optional[list[str]] = None) -> int:
    """Start the front door and block until it has drained."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination)

    try:
        config = load_hosting_configuration(args)
    except ConfigurationError as error:
        SERVER_LOGGER.critical(
            "Invalid hosting configuration",
            extra={"event": "configuration_invalid", "reason": str(error)},
        )
        return 1

    lifecycle = ServerLifecycle()

    def shutdown_handler(signum: int, _frame) -> None:
        signal_name = signal.Signals(signum).name
        SERVER_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "shutdown_signal", "signal": signal_name},
        )
        lifecycle.begin_draining(signal_name)

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    SERVER_LOGGER.info(
        "Starting front door",
        extra={
            "event": "server_starting",
            "host": config.host,
            "content_root": config.content_root,
            "log_destination": args.log_destination,
            "log_level": args.log_level,
            "tls": config.use_tls,
            "socket_timeout": config.socket_timeout,
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
        },
    )
    try:
        run_server(config, lifecycle)
    except Exception:  # pylint: disable=broad-except
        SERVER_LOGGER.critical(
            "Host terminated unexpectedly",
            extra={"event": "host_terminated"},
            exc_info=True,
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
