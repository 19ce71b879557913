"""Abstract interfaces for the remote collaborators.

This module provides:
- MetadataStore: Structured records, queryable and subscribable
- BlobStore: Opaque file bytes addressed by path
- IdentityProvider: The signed-in user
- ChangeSet: Record-set change delivered to subscribers
- matches: Equality filter evaluation shared by implementations

Implementations translate their own transport failures into the
LibrarySyncError taxonomy; callers never see library-specific exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

Record = dict[str, Any]
Filters = Mapping[str, Any]
Unsubscribe = Callable[[], None]
CancelCheck = Callable[[], bool]


@dataclass
class ChangeSet:
    """Records added, modified and removed since the previous notification.

    The first notification after subscribing lists every matching record
    as added.
    """

    added: list[Record] = field(default_factory=list)
    modified: list[Record] = field(default_factory=list)
    removed: list[Record] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.added or self.modified or self.removed)


ChangeCallback = Callable[[ChangeSet], None]


def matches(record: Mapping[str, Any], filters: Filters | None) -> bool:
    """Check if a record satisfies every equality filter."""
    if not filters:
        return True
    return all(record.get(key) == value for key, value in filters.items())


class MetadataStore(ABC):
    """Remote document database holding book and series records."""

    @abstractmethod
    def write(self, collection: str, record_id: str, record: Record) -> None:
        """Create or replace a record.

        Raises:
            TransferError: If the backend rejects or cannot be reached.
        """

    @abstractmethod
    def query(self, collection: str, filters: Filters | None = None) -> list[Record]:
        """Return every record of a collection matching the filters."""

    @abstractmethod
    def update(self, collection: str, record_id: str, fields: Record) -> None:
        """Merge fields into an existing record.

        Raises:
            BlobNotFoundError: If the record does not exist.
        """

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> None:
        """Delete a record. No error if it does not exist."""

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        filters: Filters | None,
        on_change: ChangeCallback,
    ) -> Unsubscribe:
        """Register a callback for changes to matching records.

        Returns:
            Callable that stops further notifications when invoked.
        """


class BlobStore(ABC):
    """Remote object storage, treated as append-only by the uploader."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check if an object exists at path."""

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store an object.

        Returns:
            Download URL of the stored object.
        """

    @abstractmethod
    def get_download_url(self, path: str) -> str:
        """Return the download URL of an object.

        Raises:
            BlobNotFoundError: If no object exists at path.
        """

    @abstractmethod
    def write_to_local(
        self,
        path: str,
        destination: Path,
        cancel_check: CancelCheck | None = None,
    ) -> int:
        """Stream an object into a local file.

        Args:
            path: Remote object path.
            destination: Local file to create or overwrite.
            cancel_check: Polled between blocks; returning True aborts.

        Returns:
            Number of bytes written.

        Raises:
            BlobNotFoundError: If no object exists at path.
            DownloadCancelledError: If cancel_check returned True.
        """

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete an object.

        Returns:
            True if it was deleted, False if it didn't exist.
        """


class IdentityProvider(ABC):
    """Source of the signed-in user's id."""

    @abstractmethod
    def current_user_id(self) -> str | None:
        """Return the signed-in user's id, or None when signed out."""
