"""Local library directory layout.

This module provides:
- LibraryPaths: Resolution of library-relative filepaths to local paths

Every book lives at ``<root>/<user_id>/<filename>``; its library-relative
filepath ``<user_id>/<filename>`` is also its remote blob path and the
key of its LocalFileRecord and queue entry.
"""

from __future__ import annotations

import logging
from pathlib import Path

from bookadapter.client.sync.types import FilesystemError

logger = logging.getLogger(__name__)

# Suffix of in-progress downloads
PARTIAL_SUFFIX = ".part"


def make_filepath(user_id: str, filename: str) -> str:
    """Return the library-relative filepath of a user's file."""
    return f"{user_id}/{filename}"


def split_filepath(filepath: str) -> tuple[str, str]:
    """Split a filepath into (user_id, filename)."""
    user_id, sep, filename = filepath.partition("/")
    if not sep or not user_id or not filename or "/" in filename:
        raise ValueError(f"Invalid library filepath: {filepath!r}")
    return user_id, filename


class LibraryPaths:
    """Per-user directories under an application-owned storage root."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        """Library root directory."""
        return self._root

    def user_directory(self, user_id: str) -> Path:
        """Directory holding a user's books."""
        return self._root / user_id

    def create_user_directory(self, user_id: str) -> Path:
        """Create a user's directory if needed and return it."""
        directory = self.user_directory(user_id)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Cannot create library directory {directory}: {e}", e.__class__.__name__
            ) from e
        return directory

    def path_for(self, user_id: str, filename: str) -> Path:
        """Local path of a user's file."""
        return self.user_directory(user_id) / filename

    def path_for_filepath(self, filepath: str) -> Path:
        """Local path of a library-relative filepath."""
        user_id, filename = split_filepath(filepath)
        return self.path_for(user_id, filename)

    def exists(self, filepath: str) -> bool:
        """Check if a non-empty local copy exists."""
        path = self.path_for_filepath(filepath)
        try:
            return path.is_file() and path.stat().st_size > 0
        except OSError:
            return False

    def list_files(self, user_id: str) -> list[str]:
        """List filenames in a user's directory (partial downloads excluded)."""
        directory = self.user_directory(user_id)
        if not directory.is_dir():
            return []
        try:
            return sorted(
                p.name
                for p in directory.iterdir()
                if p.is_file() and not p.name.endswith(PARTIAL_SUFFIX)
            )
        except OSError as e:
            raise FilesystemError(
                f"Cannot list {directory}: {e}", e.__class__.__name__
            ) from e

    def read_bytes(self, filepath: str) -> bytes:
        """Read a local copy.

        Raises:
            FilesystemError: If the file cannot be read.
        """
        path = self.path_for_filepath(filepath)
        try:
            return path.read_bytes()
        except OSError as e:
            raise FilesystemError(f"Cannot read {path}: {e}", e.__class__.__name__) from e
