"""Book upload protocol.

This module provides:
- BookUploader: Drives a book through Picked -> Hashed -> DuplicateChecked
  -> MetadataWritten -> BlobWritten -> Complete

Durability:
    Every check that can reject an upload (same content pending under
    another name, a different file already at the library path, a remote
    record with the same owner/title/path/size) runs before any durable
    state changes. The queue entry is then written before any remote I/O
    and is the only record of what still needs doing: a failure in the
    metadata or blob phase leaves it in place, and drive() resumes from
    whichever phase flag is still false.
"""

from __future__ import annotations

import logging
import shutil
import threading
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from bookadapter.client.state import LocalFileRecord
from bookadapter.client.sync.ebook import BookInfo, extract_cover, read_book_info
from bookadapter.client.sync.library import PARTIAL_SUFFIX, make_filepath, split_filepath
from bookadapter.client.sync.queue import UploadQueueEntry
from bookadapter.client.sync.retry import (
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_RETRIES,
    retry_with_backoff,
)
from bookadapter.client.sync.types import (
    BOOKS_COLLECTION,
    COVER_CONTENT_TYPE,
    EPUB_CONTENT_TYPE,
    BatchResult,
    BookRecord,
    DuplicateContentError,
    FileAlreadyExistsError,
    FilesystemError,
    LibrarySyncError,
    NotAuthenticatedError,
    UploadPhase,
    UploadResult,
    default_collection_id,
)
from bookadapter.core.hashing import hash_file

if TYPE_CHECKING:
    from collections.abc import Callable

    from bookadapter.client.remote.base import BlobStore, IdentityProvider, MetadataStore
    from bookadapter.client.state import LocalStateStore
    from bookadapter.client.sync.library import LibraryPaths
    from bookadapter.client.sync.queue import UploadQueue
    from bookadapter.core.types import FileHash

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BookUploader:
    """Uploads books: metadata record, cover, then blob.

    Usage:
        uploader = BookUploader(state, queue, metadata, blobs, identity, library)
        result = uploader.add(Path("~/Downloads/novel.epub"))
        # After a restart:
        batch = uploader.resume_pending()
    """

    def __init__(
        self,
        state: LocalStateStore,
        queue: UploadQueue,
        metadata: MetadataStore,
        blobs: BlobStore,
        identity: IdentityProvider,
        library: LibraryPaths,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        cover_extractor: Callable[[Path], bytes] = extract_cover,
        info_reader: Callable[[Path], BookInfo] = read_book_info,
    ) -> None:
        """Initialize the uploader.

        Args:
            state: Local state store.
            queue: Durable queue of in-flight uploads.
            metadata: Remote metadata store.
            blobs: Remote blob store.
            identity: Source of the signed-in user.
            library: Local library layout.
            max_retries: Retries for transient remote failures.
            initial_backoff: First retry delay in seconds.
            cover_extractor: Returns JPEG cover bytes for a book file.
            info_reader: Returns title/authors for a book file.
        """
        self._state = state
        self._queue = queue
        self._metadata = metadata
        self._blobs = blobs
        self._identity = identity
        self._library = library
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff
        self._cover_extractor = cover_extractor
        self._info_reader = info_reader

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _retry(self, func: Callable[[], T]) -> T:
        return retry_with_backoff(
            func,
            max_retries=self._max_retries,
            initial_backoff=self._initial_backoff,
        )

    def _lock_for(self, filepath: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(filepath, threading.Lock())

    def _require_user(self) -> str:
        user_id = self._identity.current_user_id()
        if not user_id:
            raise NotAuthenticatedError()
        return user_id

    # === Picking ===

    def add(self, source: Path, filename: str | None = None) -> UploadResult:
        """Pick a local file and upload it.

        Args:
            source: File chosen by the user.
            filename: Name to store it under (defaults to source name).

        Returns:
            UploadResult of the completed upload.

        Raises:
            NotAuthenticatedError: If no user is signed in.
            DuplicateContentError: If the same content is already pending or
                in the library under another name, or a remote record has
                the same owner/title/path/size.
            FileAlreadyExistsError: If a different file occupies the path.
            TransferError: If a remote phase keeps failing (entry is kept).
            FilesystemError: If the source is empty or cannot be read or copied.
        """
        user_id = self._require_user()
        source = Path(source).expanduser()
        filename = filename or source.name
        filepath = make_filepath(user_id, filename)

        try:
            content_hash = hash_file(source)
            filesize = source.stat().st_size
        except OSError as e:
            raise FilesystemError(f"Cannot read {source}: {e}", e.__class__.__name__) from e
        if filesize == 0:
            raise FilesystemError(f"Cannot upload empty file {source}", "empty")
        logger.debug("Hashed %s: %s", source.name, content_hash)

        with self._lock_for(filepath):
            existing = self._queue.get(filepath)
            if existing is not None and existing.content_hash == content_hash:
                logger.info("Resuming pending upload of %s", filepath)
                return self._drive(existing)

            self._check_local_conflicts(filepath, content_hash)

            info = self._info_reader(source)
            self._check_remote_duplicate(user_id, info.title, filepath, filesize)

            self._copy_into_library(source, filepath)

            record = BookRecord(
                id=uuid.uuid4().hex,
                user_id=user_id,
                title=info.title,
                authors=info.authors,
                filename=filename,
                filepath=filepath,
                filesize=filesize,
                collection_ids={default_collection_id(user_id)},
            )
            entry = UploadQueueEntry(
                filepath=filepath,
                content_hash=content_hash,
                book=record.to_dict(),
            )
            self._queue.enqueue(entry)
            self._state.put(
                filepath,
                LocalFileRecord(
                    filepath=filepath,
                    content_hash=content_hash,
                    is_downloaded=self._library.exists(filepath),
                ),
            )
            logger.info("Enqueued upload of %s (%s)", filepath, info.title)

            return self._drive(entry)

    def _check_local_conflicts(self, filepath: str, content_hash: FileHash) -> None:
        for pending in self._queue.find_by_hash(content_hash):
            if pending.filepath != filepath:
                raise DuplicateContentError(
                    f"Same content is already being uploaded as {pending.filepath}",
                    "pending-duplicate",
                )

        # Completed uploads leave no queue entry, only their local record
        owner = split_filepath(filepath)[0] + "/"
        for record in self._state.find_by_hash(content_hash):
            if (
                record.filepath != filepath
                and record.filepath.startswith(owner)
                and not record.is_orphaned
            ):
                raise DuplicateContentError(
                    f"Same content is already in the library as {record.filepath}",
                    "local-duplicate",
                )

        local_path = self._library.path_for_filepath(filepath)
        if local_path.exists():
            try:
                local_hash = hash_file(local_path)
            except OSError as e:
                raise FilesystemError(
                    f"Cannot read {local_path}: {e}", e.__class__.__name__
                ) from e
            if local_hash != content_hash:
                raise FileAlreadyExistsError(
                    f"A different file named {local_path.name} is already in the library",
                    "library-path-taken",
                )

    def _check_remote_duplicate(
        self, user_id: str, title: str, filepath: str, filesize: int
    ) -> None:
        # Owner/title/path/size only; content hash is not compared remotely.
        matches = self._retry(
            lambda: self._metadata.query(
                BOOKS_COLLECTION,
                {
                    "userId": user_id,
                    "title": title,
                    "filepath": filepath,
                    "filesize": filesize,
                },
            )
        )
        if matches:
            raise DuplicateContentError("Book has already been uploaded", "remote-duplicate")

    def _copy_into_library(self, source: Path, filepath: str) -> None:
        destination = self._library.path_for_filepath(filepath)
        if destination.exists():
            return  # Same content, checked by _check_local_conflicts

        tmp_path = destination.with_name(destination.name + PARTIAL_SUFFIX)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, tmp_path)
            tmp_path.replace(destination)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise FilesystemError(
                f"Cannot copy {source} into library: {e}", e.__class__.__name__
            ) from e
        logger.debug("Copied %s to %s", source, destination)

    # === Protocol ===

    def drive(self, filepath: str) -> UploadResult:
        """Re-drive the pending upload of filepath from its first incomplete phase.

        Raises:
            KeyError: If no upload is pending for filepath.
        """
        with self._lock_for(filepath):
            entry = self._queue.get(filepath)
            if entry is None:
                raise KeyError(filepath)
            return self._drive(entry)

    def _drive(self, entry: UploadQueueEntry) -> UploadResult:
        filepath = entry.filepath
        book = dict(entry.book)
        book_id = str(book["id"])
        result = UploadResult(
            filepath=filepath,
            book_id=book_id,
            phase=UploadPhase.DUPLICATE_CHECKED,
        )

        try:
            if not entry.is_document_uploaded:
                self._retry(lambda: self._metadata.write(BOOKS_COLLECTION, book_id, book))
                self._queue.mark_document_uploaded(filepath)
                self._state.update_upload_flags(filepath, is_document_uploaded=True)
                result.wrote_metadata = True
                logger.info("Metadata written for %s", filepath)
            result.phase = UploadPhase.METADATA_WRITTEN

            if not entry.is_file_uploaded:
                self._upload_cover(filepath, book, result)
                result.url = self._upload_blob(filepath)
                self._queue.mark_file_uploaded(filepath)
                self._state.update_upload_flags(filepath, is_file_uploaded=True)
                result.wrote_blob = True
                logger.info("Blob written for %s", filepath)
            result.phase = UploadPhase.BLOB_WRITTEN

        except LibrarySyncError as e:
            logger.error("Upload of %s stopped after %s: %s", filepath, result.phase.name, e)
            raise

        self._queue.dequeue(filepath)
        self._state.put(
            filepath,
            LocalFileRecord(
                filepath=filepath,
                content_hash=entry.content_hash,
                is_document_uploaded=True,
                is_file_uploaded=True,
                is_downloaded=self._library.exists(filepath),
            ),
        )
        result.phase = UploadPhase.COMPLETE
        logger.info("Upload complete: %s", filepath)
        return result

    def _upload_blob(self, filepath: str) -> str:
        if self._retry(lambda: self._blobs.exists(filepath)):
            raise FileAlreadyExistsError("File already exists", "blob-exists")
        data = self._library.read_bytes(filepath)
        url: str = self._retry(lambda: self._blobs.put(filepath, data, EPUB_CONTENT_TYPE))
        return url

    def _upload_cover(self, filepath: str, book: dict[str, Any], result: UploadResult) -> None:
        """Upload the cover and link it from the metadata record; never fatal."""
        cover_path = f"{filepath}.jpg"
        try:
            if self._retry(lambda: self._blobs.exists(cover_path)):
                url = self._retry(lambda: self._blobs.get_download_url(cover_path))
            else:
                jpeg = self._cover_extractor(self._library.path_for_filepath(filepath))
                url = self._retry(lambda: self._blobs.put(cover_path, jpeg, COVER_CONTENT_TYPE))
            self._retry(
                lambda: self._metadata.update(BOOKS_COLLECTION, book["id"], {"imageUrl": url})
            )
        except LibrarySyncError as e:
            logger.warning("No cover for %s: %s", filepath, e.message)
            result.cover_error = e.message
            return

        book["imageUrl"] = url
        self._queue.update_book(filepath, book)
        result.cover_url = url

    # === Recovery ===

    def resume_pending(self) -> BatchResult:
        """Re-drive every pending upload of the signed-in user.

        One failing entry never stops the others; it stays queued.
        """
        user_id = self._require_user()
        batch = BatchResult()
        pending = [
            e for e in self._queue.list_pending() if e.filepath.startswith(f"{user_id}/")
        ]
        if pending:
            logger.info("Resuming %d pending uploads", len(pending))

        for entry in pending:
            try:
                batch.succeeded[entry.filepath] = self.drive(entry.filepath)
            except KeyError:
                logger.debug("Upload of %s finished concurrently", entry.filepath)
            except LibrarySyncError as e:
                batch.failed[entry.filepath] = e
        return batch

    def cancel(self, filepath: str) -> bool:
        """Drop a pending upload.

        Remote writes already made are left in place.

        Returns:
            True if an entry was removed.
        """
        with self._lock_for(filepath):
            if self._queue.get(filepath) is None:
                return False
            self._queue.dequeue(filepath)
        logger.info("Cancelled upload of %s", filepath)
        return True

