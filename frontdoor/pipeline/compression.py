"""Brotli and gzip response compression for compressible MIME types."""

import gzip
import logging
import zlib
from typing import Iterable, Iterator, Optional, Protocol

import brotli

from frontdoor.domain.correlation_id import CorrelationLoggerAdapter, component_logger
from frontdoor.domain.http_types import HttpRequest, HttpResponse

COMPRESSION_LOGGER = component_logger("pipeline.compression")

COMPRESSION_LEVEL = 6
BROTLI_QUALITY = 5
GZIP_WBITS = 16 + zlib.MAX_WBITS
MIN_COMPRESS_BYTES = 256

# Preference order when the client rates encodings equally.
SUPPORTED_ENCODINGS = ("br", "gzip")

COMPRESSIBLE_TYPES = frozenset(
    {
        "text/plain",
        "text/css",
        "text/html",
        "text/xml",
        "text/json",
        "text/javascript",
        "application/javascript",
        "application/json",
        "application/xml",
        "application/rss+xml",
        "application/atom+xml",
        "application/wasm",
        "image/svg+xml",
    }
)


def _quality(params: str) -> float:
    for param in params.split(";"):
        key, _, raw_value = param.strip().partition("=")
        if key.lower() == "q" and raw_value:
            try:
                return float(raw_value)
            except ValueError:
                return 0.0
    return 1.0


def encoding_qualities(headers: dict[str, str]) -> dict[str, float]:
    """Map each coding named in Accept-Encoding (``*`` included) to its q-value."""
    qualities: dict[str, float] = {}
    for token in headers.get("accept-encoding", "").split(","):
        value = token.strip()
        if not value:
            continue
        coding, _, params = value.partition(";")
        qualities[coding.strip().lower()] = _quality(params)
    return qualities


def select_encoding(headers: dict[str, str]) -> Optional[str]:
    """Return the best supported coding the client accepts, or None.

    The highest q-value wins; ties go to brotli. A coding that is not named
    explicitly takes the wildcard's q-value.
    """
    qualities = encoding_qualities(headers)
    wildcard = qualities.get("*", 0.0)
    best: Optional[str] = None
    best_quality = 0.0
    for coding in SUPPORTED_ENCODINGS:
        quality = qualities.get(coding, wildcard)
        if quality > best_quality:
            best, best_quality = coding, quality
    return best


def accepts_gzip(headers: dict[str, str]) -> bool:
    """Return True when the Accept-Encoding header includes gzip with q>0."""
    qualities = encoding_qualities(headers)
    return qualities.get("gzip", qualities.get("*", 0.0)) > 0


def is_compressible(content_type: str) -> bool:
    """Return True when the media type (parameters ignored) is worth compressing."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type in COMPRESSIBLE_TYPES


class _Encoder(Protocol):
    def compress(self, data: bytes) -> bytes: ...

    def finish(self) -> bytes: ...


class _GzipEncoder:
    def __init__(self) -> None:
        self._compressor = zlib.compressobj(COMPRESSION_LEVEL, zlib.DEFLATED, GZIP_WBITS)

    def compress(self, data: bytes) -> bytes:
        return self._compressor.compress(data)

    def finish(self) -> bytes:
        return self._compressor.flush()


class _BrotliEncoder:
    def __init__(self) -> None:
        self._compressor = brotli.Compressor(quality=BROTLI_QUALITY)

    def compress(self, data: bytes) -> bytes:
        return self._compressor.process(data)

    def finish(self) -> bytes:
        return self._compressor.finish()


class EncodedStream:
    """Compresses a streamed body lazily.

    ``close`` always reaches the source, even when iteration never started,
    so the file behind a dropped response is released.
    """

    def __init__(self, source: Iterable[bytes], encoder: _Encoder) -> None:
        self._source = source
        self._encoder = encoder

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._source:
                compressed = self._encoder.compress(chunk)
                if compressed:
                    yield compressed
            tail = self._encoder.finish()
            if tail:
                yield tail
        finally:
            self.close()

    def close(self) -> None:
        close = getattr(self._source, "close", None)
        if close is not None:
            close()


def gzip_stream(chunks: Iterable[bytes]) -> EncodedStream:
    return EncodedStream(chunks, _GzipEncoder())


def brotli_stream(chunks: Iterable[bytes]) -> EncodedStream:
    return EncodedStream(chunks, _BrotliEncoder())


_STREAMERS = {"br": brotli_stream, "gzip": gzip_stream}


def _compress_buffer(coding: str, body: bytes) -> bytes:
    if coding == "br":
        return brotli.compress(body, quality=BROTLI_QUALITY)
    return gzip.compress(body, COMPRESSION_LEVEL)


def _add_vary(headers: dict[str, str]) -> None:
    vary = headers.get("Vary")
    if not vary:
        headers["Vary"] = "Accept-Encoding"
    elif "accept-encoding" not in vary.lower():
        headers["Vary"] = f"{vary}, Accept-Encoding"


class Compression:
    """Compresses eligible responses produced by the downstream stages."""

    def __init__(self, logger: Optional[CorrelationLoggerAdapter] = None) -> None:
        self._logger = logger or COMPRESSION_LOGGER

    def __call__(self, request: HttpRequest, call_next) -> HttpResponse:
        response = call_next(request)
        if not is_compressible(response.headers.get("Content-Type", "")):
            return response
        _add_vary(response.headers)
        if "Content-Encoding" in response.headers:
            return response
        coding = select_encoding(request.headers)
        if coding is None:
            return response

        if response.body_iter is not None:
            response.body_iter = _STREAMERS[coding](response.body_iter)
            response.use_chunked = True
            response.headers.pop("Content-Length", None)
        elif len(response.body) >= MIN_COMPRESS_BYTES:
            response.body = _compress_buffer(coding, response.body)
            response.headers.pop("Content-Length", None)
            if self._logger.logger.isEnabledFor(logging.DEBUG):
                self._logger.debug(
                    "Compressed payload",
                    extra={
                        "event": "response_compressed",
                        "encoding": coding,
                        "bytes_out": len(response.body),
                    },
                )
        else:
            return response
        response.headers["Content-Encoding"] = coding
        return response
