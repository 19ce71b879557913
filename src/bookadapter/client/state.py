"""Local state management for the book library.

This module provides:
- LocalFileRecord: Per-file upload/download status
- LocalStateStore: SQLite-based durable store of LocalFileRecords

Architecture:
    Records are keyed by library-relative filepath. Every write is
    committed before the call returns (autocommit + WAL), so callers may
    assume crash-safety immediately. Reads go through an in-memory
    projection that clear_cache() drops to force a fresh read from disk.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass, replace
from pathlib import Path

from bookadapter.core.types import FileHash, HashAlgorithm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalFileRecord:
    """Tracked state of one library file.

    Attributes:
        filepath: Relative path under the library root.
        content_hash: Fingerprint computed when the file was first seen.
        is_document_uploaded: Remote metadata entry exists.
        is_file_uploaded: Remote blob exists.
        is_downloaded: Local copy exists and is non-empty.
    """

    filepath: str
    content_hash: FileHash | None = None
    is_document_uploaded: bool = False
    is_file_uploaded: bool = False
    is_downloaded: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> LocalFileRecord:
        """Create LocalFileRecord from database row."""
        content_hash = None
        if row["hash_algorithm"]:
            content_hash = FileHash(
                algorithm=HashAlgorithm(row["hash_algorithm"]),
                digest=bytes(row["hash_digest"]),
            )
        return cls(
            filepath=row["filepath"],
            content_hash=content_hash,
            is_document_uploaded=bool(row["is_document_uploaded"]),
            is_file_uploaded=bool(row["is_file_uploaded"]),
            is_downloaded=bool(row["is_downloaded"]),
        )

    @property
    def is_orphaned(self) -> bool:
        """Check if no flag is set (eligible for collection when not queued)."""
        return not (
            self.is_document_uploaded or self.is_file_uploaded or self.is_downloaded
        )

    @property
    def filename(self) -> str:
        """Last path component of the filepath."""
        return self.filepath.rsplit("/", 1)[-1]


class LocalStateStore:
    """Durable key-value store of LocalFileRecords.

    Thread-safe: all access is serialized through a lock, so concurrent
    writes to the same key resolve last-write-wins.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize local state database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._cache: dict[str, LocalFileRecord | None] = {}

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=FULL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS local_files (
                filepath TEXT PRIMARY KEY,
                hash_algorithm TEXT,
                hash_digest BLOB,
                is_document_uploaded INTEGER NOT NULL DEFAULT 0,
                is_file_uploaded INTEGER NOT NULL DEFAULT 0,
                is_downloaded INTEGER NOT NULL DEFAULT 0
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def get(self, filepath: str) -> LocalFileRecord | None:
        """Get the record for a filepath.

        Args:
            filepath: Library-relative path.

        Returns:
            LocalFileRecord if tracked, None otherwise.
        """
        with self._lock:
            if filepath in self._cache:
                return self._cache[filepath]
            row = self._conn.execute(
                "SELECT * FROM local_files WHERE filepath = ?",
                (filepath,),
            ).fetchone()
            record = LocalFileRecord.from_row(row) if row else None
            self._cache[filepath] = record
            return record

    def put(self, filepath: str, record: LocalFileRecord) -> None:
        """Insert or fully replace the record for a filepath."""
        if record.filepath != filepath:
            record = replace(record, filepath=filepath)
        content_hash = record.content_hash
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO local_files (
                    filepath, hash_algorithm, hash_digest,
                    is_document_uploaded, is_file_uploaded, is_downloaded
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    filepath,
                    content_hash.algorithm.value if content_hash else None,
                    content_hash.digest if content_hash else None,
                    int(record.is_document_uploaded),
                    int(record.is_file_uploaded),
                    int(record.is_downloaded),
                ),
            )
            self._cache[filepath] = record
        logger.debug("Stored local record for %s", filepath)

    def delete(self, filepath: str) -> None:
        """Stop tracking a filepath. No error if it is not tracked."""
        with self._lock:
            self._conn.execute("DELETE FROM local_files WHERE filepath = ?", (filepath,))
            self._cache[filepath] = None

    def set_downloaded(self, filepath: str, value: bool) -> None:
        """Update only the downloaded flag of a filepath.

        Creates a bare record when the filepath is untracked. Hash and
        upload flags are left untouched.
        """
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO local_files (filepath, is_downloaded) VALUES (?, ?)
                ON CONFLICT(filepath) DO UPDATE SET is_downloaded = excluded.is_downloaded
                """,
                (filepath, int(value)),
            )
            self._cache.pop(filepath, None)

    def update_upload_flags(
        self,
        filepath: str,
        *,
        is_document_uploaded: bool | None = None,
        is_file_uploaded: bool | None = None,
    ) -> None:
        """Update only the provided upload flags of a tracked filepath."""
        updates: list[str] = []
        values: list[object] = []
        if is_document_uploaded is not None:
            updates.append("is_document_uploaded = ?")
            values.append(int(is_document_uploaded))
        if is_file_uploaded is not None:
            updates.append("is_file_uploaded = ?")
            values.append(int(is_file_uploaded))
        if not updates:
            return
        values.append(filepath)

        with self._lock:
            self._conn.execute(
                f"UPDATE local_files SET {', '.join(updates)} WHERE filepath = ?",
                values,
            )
            self._cache.pop(filepath, None)

    def list_all(self) -> list[tuple[str, LocalFileRecord]]:
        """List every tracked record, ordered by filepath."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM local_files ORDER BY filepath"
            ).fetchall()
        return [(row["filepath"], LocalFileRecord.from_row(row)) for row in rows]

    def find_by_hash(self, content_hash: FileHash) -> list[LocalFileRecord]:
        """Find records whose content hash matches."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM local_files WHERE hash_algorithm = ? AND hash_digest = ?",
                (content_hash.algorithm.value, content_hash.digest),
            ).fetchall()
        return [LocalFileRecord.from_row(row) for row in rows]

    def clear_cache(self) -> None:
        """Drop the in-memory projection; durable storage is untouched."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.debug("Cleared %d cached local records", count)
