"""Local cleanup for books deleted from the library.

This module provides:
- expand_items: Resolve deleted books/series into the books they cover
- DeletionReconciler: Removes local copies, their tracked state and queued uploads

Deletion is per-file: a file that cannot be removed is reported and
keeps its state, and the remaining files are still processed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bookadapter.client.sync.library import split_filepath
from bookadapter.client.sync.types import (
    BOOKS_COLLECTION,
    BookRecord,
    DeletionResult,
    SeriesRecord,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from bookadapter.client.remote.base import ChangeSet, MetadataStore, Unsubscribe
    from bookadapter.client.state import LocalStateStore
    from bookadapter.client.sync.library import LibraryPaths
    from bookadapter.client.sync.queue import UploadQueue

logger = logging.getLogger(__name__)


def expand_items(
    items: Iterable[BookRecord | SeriesRecord],
    all_books: Iterable[BookRecord],
) -> list[BookRecord]:
    """Return the books covered by items, series expanded to their books.

    Order follows items; each book appears once.
    """
    all_books = list(all_books)
    books: dict[str, BookRecord] = {}
    for item in items:
        if isinstance(item, SeriesRecord):
            for book in all_books:
                if book.series_id == item.id:
                    books.setdefault(book.id, book)
        else:
            books.setdefault(item.id, item)
    return list(books.values())


class DeletionReconciler:
    """Removes local copies of deleted books and forgets their state.

    Usage:
        reconciler = DeletionReconciler(state, library)
        result = reconciler.reconcile(deleted_items, all_books)
        print(result.deleted, result.failed)
    """

    def __init__(
        self,
        state: LocalStateStore,
        library: LibraryPaths,
        queue: UploadQueue | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            state: Local state store.
            library: Local library layout.
            queue: Upload queue whose entries for deleted books are dropped.
        """
        self._state = state
        self._library = library
        self._queue = queue

    def reconcile(
        self,
        items: Iterable[BookRecord | SeriesRecord],
        all_books: Iterable[BookRecord],
    ) -> DeletionResult:
        """Remove local copies of the given books and series.

        Args:
            items: Deleted books and series.
            all_books: Every known book, used to expand series.

        Returns:
            DeletionResult listing removed filenames and per-file failures.
        """
        books = expand_items(items, all_books)
        return self.delete_files(book.filepath for book in books)

    def delete_files(self, filepaths: Iterable[str]) -> DeletionResult:
        """Remove local files and their tracked state.

        For each filepath: delete the file if present, then clear its
        downloaded flag, drop its record and any pending upload. A file
        that cannot be deleted is reported and its state left untouched.

        Returns:
            DeletionResult; `deleted` lists filenames actually removed.
        """
        result = DeletionResult()

        for filepath in filepaths:
            try:
                _, filename = split_filepath(filepath)
            except ValueError as e:
                logger.warning("Skipping deletion of %s: %s", filepath, e)
                result.failed[filepath] = str(e)
                continue

            local_path = self._library.path_for_filepath(filepath)
            removed = False
            if local_path.exists():
                try:
                    local_path.unlink()
                    removed = True
                except OSError as e:
                    logger.warning("Failed to delete %s: %s", local_path, e)
                    result.failed[filename] = str(e)
                    continue
            else:
                logger.debug("Local file already absent: %s", filepath)

            self._state.set_downloaded(filepath, False)
            self._state.delete(filepath)
            if self._queue is not None:
                self._queue.dequeue(filepath)

            if removed:
                result.deleted.append(filename)
                logger.info("Deleted local copy of %s", filepath)

        return result

    def attach(self, metadata: MetadataStore, user_id: str) -> Unsubscribe:
        """Reconcile automatically whenever a user's book records are removed.

        Args:
            metadata: Metadata store to watch.
            user_id: Owner whose books are watched.

        Returns:
            Callable that detaches the reconciler.
        """

        def on_change(changes: ChangeSet) -> None:
            if not changes.removed:
                return
            filepaths = [r["filepath"] for r in changes.removed if r.get("filepath")]
            result = self.delete_files(filepaths)
            if result.has_failures:
                logger.warning(
                    "Could not remove %d local files: %s",
                    len(result.failed),
                    ", ".join(sorted(result.failed)),
                )

        logger.debug("Watching %s for deletions of %s", BOOKS_COLLECTION, user_id)
        return metadata.subscribe(BOOKS_COLLECTION, {"userId": user_id}, on_change)
