"""Shared types and dataclasses for library sync operations.

This module provides:
- LibrarySyncError and its subclasses: the error taxonomy
- UploadPhase: Progress of a single upload through the protocol
- UploadResult, DownloadResult, DeletionResult, BatchResult: Operation results
- BookRecord, SeriesRecord: Remote metadata records
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any

EPUB_CONTENT_TYPE = "application/epub+zip"
COVER_CONTENT_TYPE = "image/jpeg"

BOOKS_COLLECTION = "books"
SERIES_COLLECTION = "series"


# =============================================================================
# Errors
# =============================================================================


class LibrarySyncError(Exception):
    """Base exception for library sync errors.

    Attributes:
        message: Short human-readable message.
        code: Underlying cause code (backend status, errno), if known.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class NotAuthenticatedError(LibrarySyncError):
    """Operation requires a signed-in user and none is present."""

    def __init__(self, message: str = "User not logged in", code: str | None = None) -> None:
        super().__init__(message, code)


class DuplicateContentError(LibrarySyncError):
    """Identical content is already present; nothing was written."""


class FileAlreadyExistsError(LibrarySyncError):
    """Target path is already occupied."""


class NoCoverImageError(LibrarySyncError):
    """The book container has no usable image."""


class TransferError(LibrarySyncError):
    """Network or backend failure while reading or writing remotely."""


class BlobNotFoundError(TransferError):
    """Remote object does not exist."""


class FilesystemError(LibrarySyncError):
    """Local read/write/delete failure."""


class DownloadCancelledError(LibrarySyncError):
    """A download was cancelled before completion."""


# =============================================================================
# Upload protocol
# =============================================================================


class UploadPhase(IntEnum):
    """Phases an upload reaches once it is queued, in order.

    A failed upload raises instead of returning a result; its queue entry
    keeps the phase flags it had reached.
    """

    DUPLICATE_CHECKED = 1
    METADATA_WRITTEN = 2
    BLOB_WRITTEN = 3
    COMPLETE = 4


@dataclass
class UploadResult:
    """Result of driving one upload through the protocol.

    Attributes:
        filepath: Library-relative path (``<user_id>/<filename>``).
        book_id: Id of the remote metadata record.
        phase: Last phase reached.
        wrote_metadata: Whether this run wrote the metadata record.
        wrote_blob: Whether this run wrote the book blob.
        url: Download URL of the book blob, when written.
        cover_url: Download URL of the cover, when uploaded.
        cover_error: Why no cover was uploaded, if it wasn't.
    """

    filepath: str
    book_id: str
    phase: UploadPhase
    wrote_metadata: bool = False
    wrote_blob: bool = False
    url: str | None = None
    cover_url: str | None = None
    cover_error: str | None = None

    @property
    def complete(self) -> bool:
        """Check if the upload finished both phases."""
        return self.phase == UploadPhase.COMPLETE


@dataclass
class DownloadResult:
    """Result of a completed download."""

    filepath: str
    local_path: Path
    size: int


@dataclass
class DeletionResult:
    """Result of a batch local deletion.

    Attributes:
        deleted: Filenames whose local file was removed.
        failed: Filename -> error message for files that could not be removed.
    """

    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def has_failures(self) -> bool:
        """Check if any file failed."""
        return bool(self.failed)


@dataclass
class BatchResult:
    """Result of a batch of independent transfers.

    Attributes:
        succeeded: Filepath -> per-item result.
        failed: Filepath -> error raised for that item.
    """

    succeeded: dict[str, Any] = field(default_factory=dict)
    failed: dict[str, LibrarySyncError] = field(default_factory=dict)


# Type alias for download completion hooks
DownloadHook = Callable[[DownloadResult], None]


# =============================================================================
# Remote metadata records
# =============================================================================


def default_collection_id(user_id: str) -> str:
    """Return the id of a user's default collection."""
    return f"{user_id}-Default"


@dataclass
class BookRecord:
    """Book metadata entry in the remote metadata store."""

    id: str
    user_id: str
    title: str
    filename: str
    filepath: str
    filesize: int
    authors: str = ""
    collection_ids: set[str] = field(default_factory=set)
    series_id: str | None = None
    image_url: str | None = None
    added_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the metadata store."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "authors": self.authors,
            "filename": self.filename,
            "filepath": self.filepath,
            "filesize": self.filesize,
            "collectionIds": sorted(self.collection_ids),
            "seriesId": self.series_id,
            "imageUrl": self.image_url,
            "addedDate": self.added_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BookRecord:
        """Create from a metadata store record."""
        return cls(
            id=data["id"],
            user_id=data["userId"],
            title=data["title"],
            authors=data.get("authors", ""),
            filename=data["filename"],
            filepath=data["filepath"],
            filesize=data["filesize"],
            collection_ids=set(data.get("collectionIds") or []),
            series_id=data.get("seriesId"),
            image_url=data.get("imageUrl"),
            added_at=data.get("addedDate", 0.0),
        )

    @property
    def cover_path(self) -> str:
        """Remote path of the cover image."""
        return f"{self.filepath}.jpg"


@dataclass
class SeriesRecord:
    """Series metadata entry in the remote metadata store."""

    id: str
    user_id: str
    title: str
    description: str = ""
    image_url: str = ""
    collection_ids: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the metadata store."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "imageUrl": self.image_url,
            "collectionIds": sorted(self.collection_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SeriesRecord:
        """Create from a metadata store record."""
        return cls(
            id=data["id"],
            user_id=data["userId"],
            title=data["title"],
            description=data.get("description", ""),
            image_url=data.get("imageUrl", ""),
            collection_ids=set(data.get("collectionIds") or []),
        )
