"""Library sync: uploads, downloads and deletion reconciliation.

Architecture:
    TransferOrchestrator → BookUploader / BookDownloader / DeletionReconciler

Components:
- **UploadQueue**: Durable queue of in-flight uploads and their progress flags
- **BookUploader**: Three-phase upload protocol (metadata, cover, blob), resumable
- **BookDownloader**: Streams blobs into the library, returns DownloadHandle futures
- **DeletionReconciler**: Removes local copies of deleted books and forgets their state
- **TransferOrchestrator**: Composes the above over injected remote collaborators

Local layout:
- LibraryPaths: ``<root>/<user_id>/<filename>`` with ``.part`` staging files

All public symbols are re-exported here.
"""

from bookadapter.client.sync.types import (
    BOOKS_COLLECTION,
    COVER_CONTENT_TYPE,
    EPUB_CONTENT_TYPE,
    SERIES_COLLECTION,
    BatchResult,
    BlobNotFoundError,
    BookRecord,
    DeletionResult,
    DownloadCancelledError,
    DownloadHook,
    DownloadResult,
    DuplicateContentError,
    FileAlreadyExistsError,
    FilesystemError,
    LibrarySyncError,
    NoCoverImageError,
    NotAuthenticatedError,
    SeriesRecord,
    TransferError,
    UploadPhase,
    UploadResult,
    default_collection_id,
)
from bookadapter.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    backoff_delays,
    retry_with_backoff,
)
from bookadapter.client.sync.library import (
    PARTIAL_SUFFIX,
    LibraryPaths,
    make_filepath,
    split_filepath,
)
from bookadapter.client.sync.queue import UploadQueue, UploadQueueEntry
from bookadapter.client.sync.ebook import BookInfo, extract_cover, read_book_info
from bookadapter.client.sync.upload import BookUploader
from bookadapter.client.sync.download import BookDownloader, DownloadHandle
from bookadapter.client.sync.deletion import DeletionReconciler, expand_items
from bookadapter.client.sync.orchestrator import TransferOrchestrator
