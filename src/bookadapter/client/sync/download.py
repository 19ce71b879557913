"""Book download with completion hooks.

This module provides:
- DownloadHandle: Future-style handle for one running download
- BookDownloader: Streams remote blobs into the library

Downloads run on a thread pool. Each transfer streams into its own
``<dest>.<random>.part`` file next to the destination and is atomically
renamed on success, so overlapping downloads of one book never share a
staging file. On failure or cancellation the partial file is removed, so
the library never holds a truncated book.
The Local State update and the optional when_done hook run inside the
transfer task, exactly once per successful download, whether or not the
caller ever waits on the handle.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import threading
from concurrent.futures import CancelledError, Executor, Future, ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from bookadapter.client.sync.library import PARTIAL_SUFFIX
from bookadapter.client.sync.retry import (
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_RETRIES,
    retry_with_backoff,
)
from bookadapter.client.sync.types import (
    BatchResult,
    DownloadCancelledError,
    DownloadHook,
    DownloadResult,
    FilesystemError,
    LibrarySyncError,
    TransferError,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from bookadapter.client.remote.base import BlobStore
    from bookadapter.client.state import LocalStateStore
    from bookadapter.client.sync.library import LibraryPaths

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DOWNLOAD_WORKERS = 4


class DownloadHandle:
    """Handle to one download.

    Usage:
        handle = downloader.download("u1/novel.epub")
        handle.add_done_callback(lambda h: print("finished", h.filepath))
        result = handle.result(timeout=60)
    """

    def __init__(
        self,
        filepath: str,
        future: Future[DownloadResult],
        cancel_event: threading.Event,
    ) -> None:
        self._filepath = filepath
        self._future = future
        self._cancel_event = cancel_event

    @property
    def filepath(self) -> str:
        """Library-relative path being downloaded."""
        return self._filepath

    def result(self, timeout: float | None = None) -> DownloadResult:
        """Wait for the download and return its result.

        Raises:
            DownloadCancelledError: If the download was cancelled.
            LibrarySyncError: The error that ended the download.
            TimeoutError: If timeout elapsed first.
        """
        try:
            return self._future.result(timeout=timeout)
        except CancelledError as e:
            raise DownloadCancelledError(f"Download cancelled: {self._filepath}") from e

    def exception(self, timeout: float | None = None) -> BaseException | None:
        """Wait for the download and return its error, or None on success."""
        if self._future.cancelled():
            return DownloadCancelledError(f"Download cancelled: {self._filepath}")
        return self._future.exception(timeout=timeout)

    def cancel(self) -> bool:
        """Abandon the download.

        A queued download never starts. A running one stops at its next
        block and removes its partial file.

        Returns:
            True unless the download had already finished.
        """
        if self._future.done():
            return False
        self._cancel_event.set()
        self._future.cancel()
        logger.info("Cancellation requested for download of %s", self._filepath)
        return True

    def done(self) -> bool:
        """Check if the download has finished (in any way)."""
        return self._future.done()

    def cancelled(self) -> bool:
        """Check if the download ended because it was cancelled."""
        if self._future.cancelled():
            return True
        return self._future.done() and isinstance(
            self._future.exception(), DownloadCancelledError
        )

    def add_done_callback(self, fn: Callable[[DownloadHandle], None]) -> None:
        """Call fn with this handle once the download finishes (in any way).

        Runs immediately if the download has already finished.
        """
        self._future.add_done_callback(lambda _: fn(self))


class BookDownloader:
    """Downloads books into the local library."""

    def __init__(
        self,
        state: LocalStateStore,
        blobs: BlobStore,
        library: LibraryPaths,
        executor: Executor | None = None,
        max_workers: int = DEFAULT_DOWNLOAD_WORKERS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    ) -> None:
        """Initialize the downloader.

        Args:
            state: Local state store.
            blobs: Remote blob store.
            library: Local library layout.
            executor: Executor to run downloads on (default: own thread pool).
            max_workers: Size of the default thread pool.
            max_retries: Retries for transient remote failures.
            initial_backoff: First retry delay in seconds.
        """
        self._state = state
        self._blobs = blobs
        self._library = library
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="download"
        )
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff

    def close(self, wait: bool = True) -> None:
        """Shut down the thread pool if this downloader created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _retry(self, func: Callable[[], T]) -> T:
        return retry_with_backoff(
            func,
            max_retries=self._max_retries,
            initial_backoff=self._initial_backoff,
        )

    def download(self, filepath: str, when_done: DownloadHook | None = None) -> DownloadHandle:
        """Start downloading filepath into the library.

        Args:
            filepath: Library-relative path, also the remote blob path.
            when_done: Called once with the DownloadResult after the local
                state is marked downloaded.

        Returns:
            DownloadHandle for the running transfer.
        """
        cancel_event = threading.Event()
        future = self._executor.submit(self._run, filepath, when_done, cancel_event)
        logger.debug("Download of %s submitted", filepath)
        return DownloadHandle(filepath, future, cancel_event)

    def _run(
        self,
        filepath: str,
        when_done: DownloadHook | None,
        cancel_event: threading.Event,
    ) -> DownloadResult:
        destination = self._library.path_for_filepath(filepath)
        if cancel_event.is_set():
            raise DownloadCancelledError(f"Download cancelled: {filepath}")
        tmp_path = self._staging_path(destination)

        logger.info("Downloading %s", filepath)
        try:
            size = self._retry(
                lambda: self._blobs.write_to_local(
                    filepath, tmp_path, cancel_check=cancel_event.is_set
                )
            )
            if cancel_event.is_set():
                raise DownloadCancelledError(f"Download cancelled: {filepath}")
            if size == 0:
                raise TransferError(f"Remote file is empty: {filepath}", "empty")

            try:
                tmp_path.replace(destination)
            except OSError as e:
                raise FilesystemError(
                    f"Cannot move download into place at {destination}: {e}",
                    e.__class__.__name__,
                ) from e

        except Exception:
            if tmp_path.exists():
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise

        self._state.set_downloaded(filepath, True)
        result = DownloadResult(filepath=filepath, local_path=destination, size=size)
        logger.info("Downloaded %s (%d bytes)", filepath, size)

        if when_done is not None:
            try:
                when_done(result)
            except Exception:
                logger.exception("Download completion hook failed for %s", filepath)
        return result

    @staticmethod
    def _staging_path(destination: Path) -> Path:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(
                dir=destination.parent,
                prefix=destination.name + ".",
                suffix=PARTIAL_SUFFIX,
            )
        except OSError as e:
            raise FilesystemError(
                f"Cannot create download file in {destination.parent}: {e}",
                e.__class__.__name__,
            ) from e
        os.close(fd)
        return Path(name)

    def download_many(
        self,
        filepaths: Iterable[str],
        timeout: float | None = None,
    ) -> BatchResult:
        """Download several books, isolating per-item failures.

        Args:
            filepaths: Library-relative paths.
            timeout: Max seconds to wait for each download.

        Returns:
            BatchResult with a DownloadResult or error per filepath.
        """
        handles = [self.download(fp) for fp in dict.fromkeys(filepaths)]
        batch = BatchResult()
        for handle in handles:
            try:
                batch.succeeded[handle.filepath] = handle.result(timeout=timeout)
            except LibrarySyncError as e:
                logger.warning("Download of %s failed: %s", handle.filepath, e)
                batch.failed[handle.filepath] = e
            except TimeoutError:
                logger.warning("Download of %s timed out", handle.filepath)
                batch.failed[handle.filepath] = TransferError(
                    f"Timed out downloading {handle.filepath}", "timeout"
                )
        return batch
