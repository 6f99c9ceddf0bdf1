"""Containment of URL paths inside the content root."""

from pathlib import Path, PurePosixPath


class ForbiddenPath(Exception):
    """Raised when a URL path would leave the content root."""


class ContentRoot:
    """A resolved directory that request paths are confined to.

    The root is resolved once. Every candidate is resolved again after joining,
    so a symlink inside the bundle that points outside it is rejected the same
    way a literal ``..`` segment is.
    """

    def __init__(self, directory: str) -> None:
        self.directory = directory
        self.path = Path(directory).resolve()

    def contains(self, candidate: Path) -> bool:
        return candidate == self.path or self.path in candidate.parents

    def resolve(self, url_path: str) -> Path:
        """Map ``url_path`` to a filesystem path under the root.

        ``/`` maps to the root itself so callers can pick a default document.
        """
        if "\x00" in url_path or "\\" in url_path:
            raise ForbiddenPath(url_path)

        segments = PurePosixPath(url_path.lstrip("/")).parts
        if ".." in segments:
            raise ForbiddenPath(url_path)

        target = self.path.joinpath(*segments).resolve()
        if not self.contains(target):
            raise ForbiddenPath(url_path)
        return target

    def resolve_child(self, directory: Path, name: str) -> Path:
        """Resolve ``name`` inside an already contained ``directory``.

        Used for default documents, which may themselves be symlinks.
        """
        target = (directory / name).resolve()
        if not self.contains(target):
            raise ForbiddenPath(str(directory / name))
        return target
