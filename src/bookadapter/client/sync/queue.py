"""Durable upload queue.

This module provides:
- UploadQueueEntry: One in-flight upload and the phases it has completed
- UploadQueue: SQLite-backed map of filepath -> UploadQueueEntry

An entry is created before any remote write and removed only once both
the metadata record and the blob are confirmed remotely. The two phase
flags let an interrupted upload resume from the phase that did not
finish, so neither remote write is ever repeated.

Persistence (SQLite):
    Each operation commits immediately (autocommit + WAL) so an entry
    survives a crash the moment enqueue() returns. There is no in-memory
    copy that could diverge from disk.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bookadapter.core.types import FileHash

logger = logging.getLogger(__name__)


@dataclass
class UploadQueueEntry:
    """Pending upload of one file.

    Attributes:
        filepath: Library-relative path; the queue key.
        content_hash: Fingerprint of the file at enqueue time.
        is_document_uploaded: Metadata phase completed.
        is_file_uploaded: Blob phase completed.
        book: Serialized metadata record to write (camelCase dict).
        created_at: When the entry was first enqueued.
    """

    filepath: str
    content_hash: FileHash
    is_document_uploaded: bool = False
    is_file_uploaded: bool = False
    book: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> UploadQueueEntry:
        """Create UploadQueueEntry from database row."""
        return cls(
            filepath=row["filepath"],
            content_hash=FileHash.from_dict(json.loads(row["content_hash"])),
            is_document_uploaded=bool(row["is_document_uploaded"]),
            is_file_uploaded=bool(row["is_file_uploaded"]),
            book=json.loads(row["book"]),
            created_at=row["created_at"],
        )

    @property
    def is_complete(self) -> bool:
        """Check if both phases completed."""
        return self.is_document_uploaded and self.is_file_uploaded


class UploadQueue:
    """Persistent queue of uploads that have not fully completed.

    Thread-safe. Re-enqueueing a filepath replaces its entry.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the upload queue.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

        self._db = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA synchronous=FULL")
        self._db.execute("""
            CREATE TABLE IF NOT EXISTS upload_queue (
                filepath TEXT PRIMARY KEY,
                content_hash TEXT NOT NULL,
                is_document_uploaded INTEGER NOT NULL DEFAULT 0,
                is_file_uploaded INTEGER NOT NULL DEFAULT 0,
                book TEXT NOT NULL,
                created_at REAL NOT NULL
            )
        """)
        logger.debug("Initialized upload queue at %s", self._db_path)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()

    def enqueue(self, entry: UploadQueueEntry) -> None:
        """Insert or replace the entry for entry.filepath."""
        with self._lock:
            self._db.execute(
                """
                INSERT OR REPLACE INTO upload_queue (
                    filepath, content_hash, is_document_uploaded,
                    is_file_uploaded, book, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.filepath,
                    json.dumps(entry.content_hash.to_dict()),
                    int(entry.is_document_uploaded),
                    int(entry.is_file_uploaded),
                    json.dumps(entry.book),
                    entry.created_at,
                ),
            )
        logger.debug("Enqueued upload: %s", entry.filepath)

    def _set_flag(self, filepath: str, column: str) -> None:
        with self._lock:
            cursor = self._db.execute(
                f"UPDATE upload_queue SET {column} = 1 WHERE filepath = ?",
                (filepath,),
            )
        if cursor.rowcount == 0:
            logger.debug("No queued upload for %s, %s not set", filepath, column)

    def mark_document_uploaded(self, filepath: str) -> None:
        """Set the metadata phase flag. No-op if filepath is not queued."""
        self._set_flag(filepath, "is_document_uploaded")

    def mark_file_uploaded(self, filepath: str) -> None:
        """Set the blob phase flag. No-op if filepath is not queued."""
        self._set_flag(filepath, "is_file_uploaded")

    def update_book(self, filepath: str, book: dict[str, Any]) -> None:
        """Replace the stored metadata payload. No-op if filepath is not queued."""
        with self._lock:
            self._db.execute(
                "UPDATE upload_queue SET book = ? WHERE filepath = ?",
                (json.dumps(book), filepath),
            )

    def dequeue(self, filepath: str) -> None:
        """Remove the entry for filepath. No-op if absent."""
        with self._lock:
            self._db.execute("DELETE FROM upload_queue WHERE filepath = ?", (filepath,))
        logger.debug("Dequeued upload: %s", filepath)

    def get(self, filepath: str) -> UploadQueueEntry | None:
        """Get the entry for filepath, or None."""
        with self._lock:
            row = self._db.execute(
                "SELECT * FROM upload_queue WHERE filepath = ?",
                (filepath,),
            ).fetchone()
        return UploadQueueEntry.from_row(row) if row else None

    def list_pending(self) -> list[UploadQueueEntry]:
        """List all entries, oldest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT * FROM upload_queue ORDER BY created_at, filepath"
            ).fetchall()
        return [UploadQueueEntry.from_row(row) for row in rows]

    def find_by_hash(self, content_hash: FileHash) -> list[UploadQueueEntry]:
        """Find entries whose content hash matches."""
        return [e for e in self.list_pending() if e.content_hash == content_hash]

    def __contains__(self, filepath: str) -> bool:
        return self.get(filepath) is not None

    def __len__(self) -> int:
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM upload_queue").fetchone()
        return int(row[0])
