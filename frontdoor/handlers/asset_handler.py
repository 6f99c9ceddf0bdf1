"""Static asset resolution and file streaming."""

import email.utils
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from frontdoor.bootstrap.config import SECURITY_HEADERS
from frontdoor.domain.asset_policy import (
    AssetPathClass,
    cache_control_for,
    classify,
    content_type_for,
)
from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.domain.http_types import HttpRequest, HttpResponse, should_close, status_line
from frontdoor.domain.response_builders import not_modified_response
from frontdoor.domain.sandbox import ContentRoot, ForbiddenPath

FILE_LOGGER = component_logger("handlers.assets")

DEFAULT_DOCUMENT = "index.html"
CHUNK_SIZE = 65536


class FileBody:
    """An open file read in fixed-size chunks.

    ``close`` releases the handle whether or not iteration ever started.
    """

    def __init__(
        self,
        file_handle: BinaryIO,
        chunk_size: int = CHUNK_SIZE,
        logger: CorrelationLoggerAdapter = FILE_LOGGER,
    ) -> None:
        self.file_handle = file_handle
        self._chunk_size = chunk_size
        self._logger = logger

    def __iter__(self) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.file_handle.read(self._chunk_size)
                if not chunk:
                    break
                if self._logger.logger.isEnabledFor(logging.DEBUG):
                    self._logger.debug(
                        "File chunk sent",
                        extra={"event": "file_chunk_sent", "bytes_out": len(chunk)},
                    )
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        self.file_handle.close()


def stream_file(
    filepath: Path,
    chunk_size: int = CHUNK_SIZE,
    logger: CorrelationLoggerAdapter = FILE_LOGGER,
) -> FileBody:
    """Open ``filepath`` now so a vanished file fails before any header is sent."""
    return FileBody(open(filepath, "rb"), chunk_size, logger)


@dataclass(frozen=True)
class AssetFound:
    """A request path that maps to a regular file under the content root."""

    path: Path
    path_class: AssetPathClass
    size: int
    mtime: float

    @property
    def etag(self) -> str:
        """Weak validator derived from size and modification time."""
        return f'W/"{self.size:x}-{int(self.mtime * 1000):x}"'

    @property
    def last_modified(self) -> str:
        """HTTP-date form of the modification time."""
        return email.utils.formatdate(self.mtime, usegmt=True)


@dataclass(frozen=True)
class AssetNotFound:
    """A request path with no servable file behind it."""

    request_path: str
    reason: str = "missing"


AssetResolution = Union[AssetFound, AssetNotFound]


class AssetResolver:
    """Maps URL paths to files beneath a fixed content root."""

    def __init__(
        self,
        content_root: str,
        logger: Optional[CorrelationLoggerAdapter] = None,
    ) -> None:
        self._root = ContentRoot(content_root)
        self._logger = logger or FILE_LOGGER

    @property
    def content_root(self) -> str:
        """Directory that all served files must live under."""
        return self._root.directory

    def resolve(self, request_path: str) -> AssetResolution:
        """Resolve ``request_path`` to a file, never leaving the content root."""
        try:
            target = self._root.resolve(request_path)
            if target.is_dir():
                target = self._root.resolve_child(target, DEFAULT_DOCUMENT)
        except ForbiddenPath:
            self._logger.warning(
                "Path traversal blocked",
                extra={"event": "forbidden_path", "route": request_path},
            )
            return AssetNotFound(request_path, "forbidden")

        try:
            stat_result = os.stat(target)
        except OSError:
            return AssetNotFound(request_path)
        if not target.is_file():
            return AssetNotFound(request_path)

        return AssetFound(
            path=target,
            path_class=classify(request_path, target.name),
            size=stat_result.st_size,
            mtime=stat_result.st_mtime,
        )

    def serve(self, request: HttpRequest, asset: AssetFound) -> HttpResponse:
        """Build the streaming response for a resolved asset."""
        validators = {"ETag": asset.etag, "Last-Modified": asset.last_modified}
        policy_headers = {
            "Cache-Control": cache_control_for(asset.path_class),
            **SECURITY_HEADERS,
        }

        if _is_not_modified(request, asset):
            return not_modified_response(request, {**validators, **policy_headers})

        headers = {
            "Content-Type": content_type_for(asset.path.name),
            **validators,
            **policy_headers,
        }
        if self._logger.logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(
                "Serving static asset",
                extra={
                    "event": "asset_served",
                    "route": request.path,
                    "reason": asset.path_class.value,
                },
            )
        if request.method == "HEAD":
            headers["Content-Length"] = str(asset.size)
            return HttpResponse(
                status_line(200), headers, b"", should_close(request.headers)
            )
        body = stream_file(asset.path, logger=self._logger)
        # Length of the handle actually being sent, not of the earlier stat.
        headers["Content-Length"] = str(os.fstat(body.file_handle.fileno()).st_size)
        return HttpResponse(
            status_line(200),
            headers,
            b"",
            should_close(request.headers),
            body_iter=body,
        )


def _is_not_modified(request: HttpRequest, asset: AssetFound) -> bool:
    """Evaluate If-None-Match, falling back to If-Modified-Since."""
    if_none_match = request.headers.get("if-none-match")
    if if_none_match is not None:
        candidates = {tag.strip() for tag in if_none_match.split(",")}
        return "*" in candidates or asset.etag in candidates or (
            asset.etag[2:] in candidates
        )
    if_modified_since = request.headers.get("if-modified-since")
    if if_modified_since:
        try:
            since = email.utils.parsedate_to_datetime(if_modified_since)
        except (TypeError, ValueError):
            return False
        return int(asset.mtime) <= int(since.timestamp())
    return False
