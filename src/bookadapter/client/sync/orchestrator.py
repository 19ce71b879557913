"""Transfer orchestration for the book library.

This module provides:
- TransferOrchestrator: Single entry point for uploads, downloads,
  permanent deletion and library maintenance

Architecture:
    TransferOrchestrator
      ├─ BookUploader        (upload protocol, resume, cancel)
      ├─ BookDownloader      (futures + completion hooks)
      └─ DeletionReconciler  (local cleanup)

The orchestrator holds no persisted state of its own. Everything it
needs is passed in: the Local State Store, the Upload Queue and the
remote collaborators.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bookadapter.client.sync.deletion import DeletionReconciler, expand_items
from bookadapter.client.sync.download import BookDownloader, DownloadHandle
from bookadapter.client.sync.ebook import extract_cover, read_book_info
from bookadapter.client.sync.retry import (
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_RETRIES,
    retry_with_backoff,
)
from bookadapter.client.sync.types import (
    BOOKS_COLLECTION,
    SERIES_COLLECTION,
    BatchResult,
    BookRecord,
    DeletionResult,
    DownloadHook,
    LibrarySyncError,
    NotAuthenticatedError,
    SeriesRecord,
    UploadResult,
)
from bookadapter.client.sync.upload import BookUploader

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from concurrent.futures import Executor
    from pathlib import Path

    from bookadapter.client.remote.base import (
        BlobStore,
        IdentityProvider,
        MetadataStore,
        Unsubscribe,
    )
    from bookadapter.client.state import LocalStateStore
    from bookadapter.client.sync.ebook import BookInfo
    from bookadapter.client.sync.library import LibraryPaths
    from bookadapter.client.sync.queue import UploadQueue, UploadQueueEntry

logger = logging.getLogger(__name__)


class TransferOrchestrator:
    """Drives uploads, downloads and deletions over the local stores.

    Usage:
        orchestrator = TransferOrchestrator(
            state=LocalStateStore(config_dir / "state.db"),
            queue=UploadQueue(config_dir / "queue.db"),
            metadata=metadata_store,
            blobs=blob_store,
            identity=identity,
            library=LibraryPaths(library_root),
        )
        orchestrator.resume_pending()
        orchestrator.upload(Path("novel.epub"))
        orchestrator.download("u1/novel.epub", when_done=refresh_ui)
    """

    def __init__(
        self,
        state: LocalStateStore,
        queue: UploadQueue,
        metadata: MetadataStore,
        blobs: BlobStore,
        identity: IdentityProvider,
        library: LibraryPaths,
        executor: Executor | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        cover_extractor: Callable[[Path], bytes] = extract_cover,
        info_reader: Callable[[Path], BookInfo] = read_book_info,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            state: Local state store.
            queue: Durable upload queue.
            metadata: Remote metadata store.
            blobs: Remote blob store.
            identity: Source of the signed-in user.
            library: Local library layout.
            executor: Executor for downloads (default: own thread pool).
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

        self._uploader = BookUploader(
            state=state,
            queue=queue,
            metadata=metadata,
            blobs=blobs,
            identity=identity,
            library=library,
            max_retries=max_retries,
            initial_backoff=initial_backoff,
            cover_extractor=cover_extractor,
            info_reader=info_reader,
        )
        self._downloader = BookDownloader(
            state=state,
            blobs=blobs,
            library=library,
            executor=executor,
            max_retries=max_retries,
            initial_backoff=initial_backoff,
        )
        self._reconciler = DeletionReconciler(state, library, queue)

    @property
    def reconciler(self) -> DeletionReconciler:
        """Local deletion reconciler."""
        return self._reconciler

    def close(self) -> None:
        """Wait for running downloads and release the thread pool."""
        self._downloader.close()

    def _require_user(self) -> str:
        user_id = self._identity.current_user_id()
        if not user_id:
            raise NotAuthenticatedError()
        return user_id

    # === Uploads ===

    def upload(self, source: Path, filename: str | None = None) -> UploadResult:
        """Pick a local file and run it through the upload protocol."""
        return self._uploader.add(source, filename)

    def resume_pending(self) -> BatchResult:
        """Re-drive every incomplete upload of the signed-in user."""
        return self._uploader.resume_pending()

    def cancel_upload(self, filepath: str) -> bool:
        """Drop a pending upload. Returns False if none was pending."""
        return self._uploader.cancel(filepath)

    def list_pending(self) -> list[UploadQueueEntry]:
        """List incomplete uploads, oldest first."""
        return self._queue.list_pending()

    # === Downloads ===

    def download(self, filepath: str, when_done: DownloadHook | None = None) -> DownloadHandle:
        """Start downloading a book into the library."""
        return self._downloader.download(filepath, when_done)

    def download_many(self, filepaths: Iterable[str], timeout: float | None = None) -> BatchResult:
        """Download several books; one failure never aborts the others."""
        return self._downloader.download_many(filepaths, timeout)

    # === Library maintenance ===

    def refresh_downloaded(self, user_id: str | None = None) -> list[str]:
        """Re-derive downloaded flags from what is on disk.

        Drops the state cache, marks every non-empty file in the user's
        directory as downloaded and clears the flag of tracked files that
        are gone.

        Returns:
            Filenames present on disk.
        """
        user_id = user_id or self._require_user()
        self._state.clear_cache()

        present: list[str] = []
        for filename in self._library.list_files(user_id):
            filepath = f"{user_id}/{filename}"
            if self._library.exists(filepath):
                self._state.set_downloaded(filepath, True)
                present.append(filename)

        prefix = f"{user_id}/"
        for filepath, record in self._state.list_all():
            if (
                filepath.startswith(prefix)
                and record.is_downloaded
                and record.filename not in present
            ):
                self._state.set_downloaded(filepath, False)
                logger.info("Local copy of %s is gone", filepath)

        logger.debug("Refreshed downloaded state: %d files present", len(present))
        return present

    def is_book_downloaded(self, filepath: str) -> bool:
        """Check if a book has a usable local copy.

        Untracked books start being tracked as not downloaded; a stale
        downloaded flag is cleared.
        """
        record = self._state.get(filepath)
        if record is None:
            self._state.set_downloaded(filepath, False)
            return False
        if record.is_downloaded and not self._library.exists(filepath):
            self._state.set_downloaded(filepath, False)
            return False
        return record.is_downloaded

    def read_book(self, filepath: str) -> bytes:
        """Read the local copy of a book."""
        return self._library.read_bytes(filepath)

    def collect_orphans(self) -> list[str]:
        """Forget records with no flag set and no pending upload.

        Returns:
            Filepaths whose records were removed.
        """
        removed = []
        for filepath, record in self._state.list_all():
            if record.is_orphaned and filepath not in self._queue:
                self._state.delete(filepath)
                removed.append(filepath)
        if removed:
            logger.info("Collected %d orphaned records", len(removed))
        return removed

    def list_books(self, user_id: str | None = None) -> list[BookRecord]:
        """List a user's remote book records."""
        user_id = user_id or self._require_user()
        records = retry_with_backoff(
            lambda: self._metadata.query(BOOKS_COLLECTION, {"userId": user_id}),
            max_retries=self._max_retries,
            initial_backoff=self._initial_backoff,
        )
        return [BookRecord.from_dict(r) for r in records]

    # === Deletion ===

    def delete_items_permanently(
        self,
        items: Iterable[BookRecord | SeriesRecord],
        all_books: Iterable[BookRecord] | None = None,
    ) -> DeletionResult:
        """Delete books and series remotely, then remove their local copies.

        For each book the metadata record, blob and cover are deleted and
        any pending upload dropped. Books whose remote deletion fails keep
        their local copy and are reported in `failed`.

        Args:
            items: Books and series to delete.
            all_books: Every known book, used to expand series
                (default: the user's books from the metadata store).

        Returns:
            DeletionResult over local removal, plus remote failures.
        """
        self._require_user()
        items = list(items)
        if all_books is None:
            all_books = self.list_books()
        books = expand_items(items, all_books)

        result = DeletionResult()
        removed_remotely: list[str] = []

        for book in books:
            try:
                self._retry(lambda: self._metadata.delete(BOOKS_COLLECTION, book.id))
                self._retry(lambda: self._blobs.delete(book.filepath))
                self._retry(lambda: self._blobs.delete(book.cover_path))
            except LibrarySyncError as e:
                logger.warning("Failed to delete %s remotely: %s", book.filepath, e)
                result.failed[book.filename] = e.message
                continue
            self._queue.dequeue(book.filepath)
            removed_remotely.append(book.filepath)
            logger.info("Deleted %s remotely", book.filepath)

        for item in items:
            if isinstance(item, SeriesRecord):
                try:
                    self._retry(lambda: self._metadata.delete(SERIES_COLLECTION, item.id))
                except LibrarySyncError as e:
                    logger.warning("Failed to delete series %s: %s", item.title, e)
                    result.failed[item.title] = e.message

        local = self._reconciler.delete_files(removed_remotely)
        result.deleted.extend(local.deleted)
        result.failed.update(local.failed)
        return result

    def watch_deletions(self) -> Unsubscribe:
        """Remove local copies automatically when the user's books are deleted."""
        return self._reconciler.attach(self._metadata, self._require_user())

    def _retry(self, func: Callable[[], object]) -> object:
        return retry_with_backoff(
            func,
            max_retries=self._max_retries,
            initial_backoff=self._initial_backoff,
        )
