"""In-process and local filesystem implementations of the remote collaborators.

This module provides:
- InMemoryMetadataStore: Thread-safe dict-backed MetadataStore
- LocalFSBlobStore: Directory tree standing in for object storage
- JSONFileMetadataStore: InMemoryMetadataStore persisted to a JSON file
- StaticIdentity: Fixed user id

Used by the `local` backend and throughout the test suite.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path

from bookadapter.client.remote.base import (
    BlobStore,
    CancelCheck,
    ChangeCallback,
    ChangeSet,
    Filters,
    IdentityProvider,
    MetadataStore,
    Record,
    Unsubscribe,
    matches,
)
from bookadapter.client.sync.types import (
    BlobNotFoundError,
    DownloadCancelledError,
    FilesystemError,
    TransferError,
)

logger = logging.getLogger(__name__)

# Copy block size for write_to_local (1 MB)
COPY_BLOCK_SIZE = 1024 * 1024


class InMemoryMetadataStore(MetadataStore):
    """Metadata store held in memory.

    Subscribers are notified synchronously from the writing thread, after
    the store lock is released.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collections: dict[str, dict[str, Record]] = {}
        self._subscribers: dict[int, tuple[str, Filters | None, ChangeCallback]] = {}
        self._next_subscription = 0

    def write(self, collection: str, record_id: str, record: Record) -> None:
        with self._lock:
            records = self._collections.setdefault(collection, {})
            previous = records.get(record_id)
            records[record_id] = copy.deepcopy(record)
        logger.debug("Wrote %s/%s", collection, record_id)
        self._notify(collection, previous, record)

    def query(self, collection: str, filters: Filters | None = None) -> list[Record]:
        with self._lock:
            records = self._collections.get(collection, {})
            return [copy.deepcopy(r) for r in records.values() if matches(r, filters)]

    def update(self, collection: str, record_id: str, fields: Record) -> None:
        with self._lock:
            records = self._collections.get(collection, {})
            if record_id not in records:
                raise BlobNotFoundError(f"No record {collection}/{record_id}", "not-found")
            previous = copy.deepcopy(records[record_id])
            records[record_id].update(copy.deepcopy(fields))
            current = copy.deepcopy(records[record_id])
        self._notify(collection, previous, current)

    def delete(self, collection: str, record_id: str) -> None:
        with self._lock:
            previous = self._collections.get(collection, {}).pop(record_id, None)
        if previous is not None:
            logger.debug("Deleted %s/%s", collection, record_id)
            self._notify(collection, previous, None)

    def get(self, collection: str, record_id: str) -> Record | None:
        """Return a copy of one record, or None."""
        with self._lock:
            record = self._collections.get(collection, {}).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def subscribe(
        self,
        collection: str,
        filters: Filters | None,
        on_change: ChangeCallback,
    ) -> Unsubscribe:
        with self._lock:
            token = self._next_subscription
            self._next_subscription += 1
            self._subscribers[token] = (collection, filters, on_change)
            initial = ChangeSet(added=self.query(collection, filters))

        if initial:
            on_change(initial)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def _notify(
        self,
        collection: str,
        previous: Record | None,
        current: Record | None,
    ) -> None:
        """Deliver one record transition to every interested subscriber."""
        with self._lock:
            subscribers = [
                (filters, callback)
                for coll, filters, callback in self._subscribers.values()
                if coll == collection
            ]

        for filters, callback in subscribers:
            was = previous is not None and matches(previous, filters)
            now = current is not None and matches(current, filters)
            if was and now:
                change = ChangeSet(modified=[copy.deepcopy(current)])
            elif now:
                change = ChangeSet(added=[copy.deepcopy(current)])
            elif was:
                change = ChangeSet(removed=[copy.deepcopy(previous)])
            else:
                continue
            callback(change)


class LocalFSBlobStore(BlobStore):
    """Blob storage in a local directory tree.

    Objects are stored at ``<root>/<path>``; URLs are ``file://`` URIs.
    """

    def __init__(self, root: Path | str) -> None:
        """Initialize local blob storage.

        Args:
            root: Base directory for stored objects.
        """
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._root}"

    def _object_path(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root):
            raise TransferError(f"Invalid object path: {path}", "invalid-path")
        return target

    def exists(self, path: str) -> bool:
        return self._object_path(path).is_file()

    def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._object_path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise TransferError(f"Failed to store {path}: {e}", e.__class__.__name__) from e
        logger.debug("Stored %s (%d bytes, %s)", path, len(data), content_type)
        return target.as_uri()

    def get_download_url(self, path: str) -> str:
        target = self._object_path(path)
        if not target.is_file():
            raise BlobNotFoundError(f"Object not found: {path}", "object-not-found")
        return target.as_uri()

    def write_to_local(
        self,
        path: str,
        destination: Path,
        cancel_check: CancelCheck | None = None,
    ) -> int:
        source = self._object_path(path)
        if not source.is_file():
            raise BlobNotFoundError(f"Object not found: {path}", "object-not-found")

        written = 0
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with source.open("rb") as src, destination.open("wb") as dst:
                while block := src.read(COPY_BLOCK_SIZE):
                    if cancel_check and cancel_check():
                        raise DownloadCancelledError(f"Download cancelled: {path}")
                    dst.write(block)
                    written += len(block)
        except OSError as e:
            raise FilesystemError(
                f"Failed to write {destination}: {e}", e.__class__.__name__
            ) from e
        return written

    def delete(self, path: str) -> bool:
        target = self._object_path(path)
        if not target.exists():
            return False
        try:
            target.unlink()
        except OSError as e:
            raise TransferError(f"Failed to delete {path}: {e}", e.__class__.__name__) from e
        return True


class StaticIdentity(IdentityProvider):
    """Identity provider returning a fixed user id (None = signed out)."""

    def __init__(self, user_id: str | None) -> None:
        self._user_id = user_id

    def current_user_id(self) -> str | None:
        return self._user_id


class JSONFileMetadataStore(InMemoryMetadataStore):
    """InMemoryMetadataStore persisted to a JSON file after every mutation.

    Backs the `local` CLI backend so records survive between invocations.
    """

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self._path = Path(path)
        if self._path.exists():
            try:
                self._collections = json.loads(self._path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise TransferError(
                    f"Failed to load metadata from {self._path}: {e}", e.__class__.__name__
                ) from e
            logger.debug("Loaded metadata store from %s", self._path)

    def _save(self) -> None:
        with self._lock:
            data = json.dumps(self._collections, indent=2, sort_keys=True)
            tmp_path = self._path.with_suffix(".tmp")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(data, encoding="utf-8")
                tmp_path.replace(self._path)
            except OSError as e:
                raise TransferError(
                    f"Failed to save metadata to {self._path}: {e}", e.__class__.__name__
                ) from e

    def write(self, collection: str, record_id: str, record: Record) -> None:
        super().write(collection, record_id, record)
        self._save()

    def update(self, collection: str, record_id: str, fields: Record) -> None:
        super().update(collection, record_id, fields)
        self._save()

    def delete(self, collection: str, record_id: str) -> None:
        super().delete(collection, record_id)
        self._save()
