"""Hosting configuration, layered from defaults, a JSON file, env and CLI."""

import argparse
import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Optional

ENV_PREFIX = "FRONTDOOR_"
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


MAX_BODY_BYTES = _env_int("FRONTDOOR_MAX_BODY_BYTES", 50 * 1024 * 1024)
MAX_HEADER_BYTES = _env_int("FRONTDOOR_MAX_HEADER_BYTES", 64 * 1024)

HEADER_DELIMITER = b"\r\n\r\n"
ALLOWED_METHODS = {"GET", "HEAD"}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "X-Frame-Options": "DENY",
}

ENVIRONMENTS = ("production", "development")
AUTH_MODES = ("none", "client-certificate", "proxy-header")


class ConfigurationError(Exception):
    """Raised when the hosting configuration is invalid; fatal at startup."""


@dataclass(frozen=True)
class HostingConfiguration:
    """Validated, immutable hosting settings handed to the front door."""

    # pylint: disable=too-many-instance-attributes
    use_tls: bool = False
    http_port: int = 8080
    https_port: int = 8443
    cert_path: Optional[str] = "certs/server.crt"
    key_path: Optional[str] = "certs/server.key"
    host: str = "0.0.0.0"
    content_root: str = "build"
    log_directory: str = "logs"
    environment: str = "production"
    rate_limit: int = 100
    rate_window_seconds: int = 60
    rate_limit_max_keys: int = 10_000
    socket_timeout: int = 120
    shutdown_grace_seconds: int = 30
    known_proxies: tuple[str, ...] = ("127.0.0.1", "::1")
    auth_mode: str = "none"
    client_ca_path: Optional[str] = None
    trusted_user_header: str = "X-Remote-User"
    allowed_users: tuple[str, ...] = ()
    hsts_max_age: int = 63072000

    def __post_init__(self) -> None:
        for name in ("http_port", "https_port"):
            port = getattr(self, name)
            if not 1 <= port <= 65535:
                raise ConfigurationError(f"{name} must be within 1-65535, got {port}")
        if self.use_tls and not (
            self.cert_path and self.cert_path.strip()
            and self.key_path and self.key_path.strip()
        ):
            raise ConfigurationError(
                "use_tls requires both cert_path and key_path to be set"
            )
        if self.environment not in ENVIRONMENTS:
            raise ConfigurationError(f"Unknown environment: {self.environment!r}")
        if self.auth_mode not in AUTH_MODES:
            raise ConfigurationError(f"Unknown auth mode: {self.auth_mode!r}")
        if self.auth_mode == "client-certificate":
            if not self.use_tls:
                raise ConfigurationError("client-certificate auth requires use_tls")
            if not self.client_ca_path:
                raise ConfigurationError("client-certificate auth requires client_ca_path")
        for name in (
            "rate_limit",
            "rate_window_seconds",
            "hsts_max_age",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")
        if self.rate_limit_max_keys < 1:
            raise ConfigurationError("rate_limit_max_keys must be at least 1")
        if self.socket_timeout <= 0:
            raise ConfigurationError("socket_timeout must be positive")

    @property
    def is_production(self) -> bool:
        """Return True when running with production hardening enabled."""
        return self.environment == "production"

    @property
    def enforce_https(self) -> bool:
        """HSTS and HTTPS redirection apply only in production with TLS on."""
        return self.is_production and self.use_tls

    @property
    def auth_enabled(self) -> bool:
        """Return True when requests must carry an identity."""
        return self.auth_mode != "none"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
    raise ConfigurationError(f"Expected a boolean, got {value!r}")


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Expected an integer, got {value!r}") from exc


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _as_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    raise ConfigurationError(f"Expected a list, got {value!r}")


_PARSERS: dict[str, Callable[[Any], Any]] = {
    "use_tls": _as_bool,
    "http_port": _as_int,
    "https_port": _as_int,
    "cert_path": _as_str,
    "key_path": _as_str,
    "host": _as_str,
    "content_root": _as_str,
    "log_directory": _as_str,
    "environment": lambda value: str(value).lower(),
    "rate_limit": _as_int,
    "rate_window_seconds": _as_int,
    "rate_limit_max_keys": _as_int,
    "socket_timeout": _as_int,
    "shutdown_grace_seconds": _as_int,
    "known_proxies": _as_list,
    "auth_mode": lambda value: str(value).lower(),
    "client_ca_path": _as_str,
    "trusted_user_header": _as_str,
    "allowed_users": _as_list,
    "hsts_max_age": _as_int,
}

_ENV_NAMES = {
    "use_tls": "USE_HTTPS",
    "cert_path": "CERT_PATH",
    "key_path": "KEY_PATH",
}

# Keys of the JSON "Hosting" section; nested sections use dotted paths.
_FILE_KEYS = {
    "useHttps": "use_tls",
    "httpPort": "http_port",
    "httpsPort": "https_port",
    "certificate.crtPath": "cert_path",
    "certificate.keyPath": "key_path",
    "host": "host",
    "contentRoot": "content_root",
    "logDirectory": "log_directory",
    "environment": "environment",
    "rateLimit.permitLimit": "rate_limit",
    "rateLimit.windowSeconds": "rate_window_seconds",
    "rateLimit.maxKeys": "rate_limit_max_keys",
    "socketTimeout": "socket_timeout",
    "shutdownGraceSeconds": "shutdown_grace_seconds",
    "knownProxies": "known_proxies",
    "authentication.mode": "auth_mode",
    "authentication.clientCaPath": "client_ca_path",
    "authentication.trustedUserHeader": "trusted_user_header",
    "authentication.allowedUsers": "allowed_users",
    "hstsMaxAge": "hsts_max_age",
}


def env_name(field_name: str) -> str:
    """Return the environment variable consulted for a configuration field."""
    return ENV_PREFIX + _ENV_NAMES.get(field_name, field_name.upper())


def read_config_file(path: str) -> dict[str, Any]:
    """Read the ``Hosting`` section of a JSON settings file into field values."""
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read configuration file {path}") from exc
    except ValueError as exc:
        raise ConfigurationError(f"Configuration file {path} is not valid JSON") from exc

    section = document.get("Hosting", {}) if isinstance(document, dict) else None
    if not isinstance(section, dict):
        raise ConfigurationError("The Hosting section must be a JSON object")

    values: dict[str, Any] = {}
    for dotted_key, field_name in _FILE_KEYS.items():
        node: Any = section
        for part in dotted_key.split("."):
            if not isinstance(node, dict) or part not in node:
                node = None
                break
            node = node[part]
        if node is not None:
            values[field_name] = _PARSERS[field_name](node)
    return values


def read_environment() -> dict[str, Any]:
    """Collect configuration values set through ``FRONTDOOR_*`` variables."""
    values: dict[str, Any] = {}
    for field_name, parser in _PARSERS.items():
        raw = os.getenv(env_name(field_name))
        if raw is not None:
            values[field_name] = parser(raw)
    return values


def load_hosting_configuration(args: argparse.Namespace) -> HostingConfiguration:
    """Merge defaults, config file, environment and CLI flags, then validate."""
    values: dict[str, Any] = {}
    config_path = getattr(args, "config", None)
    if config_path:
        values.update(read_config_file(config_path))
    values.update(read_environment())
    for item in fields(HostingConfiguration):
        cli_value = getattr(args, item.name, None)
        if cli_value is not None:
            values[item.name] = _PARSERS[item.name](cli_value)
    return HostingConfiguration(**values)


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments; unset hosting flags stay ``None``."""
    parser = argparse.ArgumentParser(description="Static asset front door")
    parser.add_argument("--config", help="Path to a JSON settings file")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--http-port", type=int)
    parser.add_argument("--https-port", type=int)
    parser.add_argument(
        "--use-https",
        dest="use_tls",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Serve HTTPS only, falling back to HTTP if the certificate fails",
    )
    parser.add_argument("--cert", dest="cert_path", help="PEM certificate chain")
    parser.add_argument("--key", dest="key_path", help="PEM private key")
    parser.add_argument("--content-root", help="Directory holding the asset bundle")
    parser.add_argument("--log-directory", help="Directory probed by /readyz")
    parser.add_argument("--environment", choices=ENVIRONMENTS)
    parser.add_argument(
        "--rate-limit",
        type=int,
        help="Requests allowed per client per window (0 to disable)",
    )
    parser.add_argument("--rate-window-seconds", type=int)
    parser.add_argument(
        "--rate-limit-max-keys",
        type=int,
        help="Client windows kept before the least recently seen is evicted",
    )
    parser.add_argument(
        "--socket-timeout",
        type=int,
        help="Keep-alive/idle timeout in seconds",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=int,
        help="Grace period in seconds for graceful shutdown",
    )
    parser.add_argument(
        "--known-proxies",
        help="Comma-separated addresses or networks allowed to send X-Forwarded-*",
    )
    parser.add_argument("--auth-mode", choices=AUTH_MODES)
    parser.add_argument("--client-ca", dest="client_ca_path")
    parser.add_argument("--trusted-user-header")
    parser.add_argument("--allowed-users", help="Comma-separated identities")
    parser.add_argument("--hsts-max-age", type=int)

    default_log_level = os.getenv("FRONTDOOR_LOG_LEVEL", "INFO").upper()
    default_destination = os.getenv("FRONTDOOR_LOG_DESTINATION", "stdout")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    return parser.parse_args(argv)
