"""Cache-control and content-type policy per static asset class."""

import enum
import mimetypes
from pathlib import PurePosixPath

IMMUTABLE_PREFIX = "/assets"
HTML_EXTENSIONS = frozenset({".html", ".htm"})
DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPE_OVERRIDES = {
    ".wasm": "application/wasm",
    ".json": "application/json; charset=utf-8",
    ".csv": "text/csv; charset=utf-8",
    ".txt": "text/plain; charset=utf-8",
    ".log": "text/plain; charset=utf-8",
}


class AssetPathClass(enum.Enum):
    """Classification of a served file used to select cache policy."""

    LONG_LIVED_IMMUTABLE = "long_lived_immutable"
    HTML_DOCUMENT = "html_document"
    GENERIC_FILE = "generic_file"


CACHE_CONTROL = {
    AssetPathClass.LONG_LIVED_IMMUTABLE: "public, max-age=31536000, immutable",
    AssetPathClass.HTML_DOCUMENT: "no-store",
    AssetPathClass.GENERIC_FILE: "public, max-age=600",
}


def is_immutable_asset_path(request_path: str) -> bool:
    """Return True when the first path segment is the immutable asset prefix."""
    lowered = request_path.lower()
    return lowered == IMMUTABLE_PREFIX or lowered.startswith(f"{IMMUTABLE_PREFIX}/")


def classify(request_path: str, file_name: str) -> AssetPathClass:
    """Classify a request by its URL path and the name of the file it maps to."""
    if is_immutable_asset_path(request_path):
        return AssetPathClass.LONG_LIVED_IMMUTABLE
    if PurePosixPath(file_name).suffix.lower() in HTML_EXTENSIONS:
        return AssetPathClass.HTML_DOCUMENT
    return AssetPathClass.GENERIC_FILE


def cache_control_for(path_class: AssetPathClass) -> str:
    """Return the Cache-Control value for an asset class."""
    return CACHE_CONTROL[path_class]


def content_type_for(file_name: str) -> str:
    """Resolve the Content-Type by extension, preferring explicit overrides."""
    suffix = PurePosixPath(file_name).suffix.lower()
    if suffix in CONTENT_TYPE_OVERRIDES:
        return CONTENT_TYPE_OVERRIDES[suffix]
    if suffix in HTML_EXTENSIONS:
        return "text/html; charset=utf-8"
    mime_type, _ = mimetypes.guess_type(file_name)
    return mime_type or DEFAULT_CONTENT_TYPE
