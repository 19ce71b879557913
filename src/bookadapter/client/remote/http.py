"""HTTP implementation of the remote collaborators.

This module provides:
- HTTPBackend: httpx session shared by the adapters below
- HTTPMetadataStore: MetadataStore over the REST API, live changes via WebSocket
- HTTPBlobStore: BlobStore over the REST API
- HTTPIdentity: IdentityProvider backed by /api/me

REST layout:
    PUT    /api/collections/{collection}/{id}        write
    POST   /api/collections/{collection}/query       query ({"filters": {...}})
    PATCH  /api/collections/{collection}/{id}        update
    DELETE /api/collections/{collection}/{id}        delete
    HEAD   /api/blobs/{path}                         exists
    PUT    /api/blobs/{path}                         put -> {"url": ...}
    GET    /api/blobs/{path}?url=1                   download URL -> {"url": ...}
    GET    /api/blobs/{path}                         raw bytes
    DELETE /api/blobs/{path}                         delete
    GET    /api/me                                   {"user_id": ...}
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from bookadapter.client.remote.base import (
    BlobStore,
    CancelCheck,
    ChangeCallback,
    Filters,
    IdentityProvider,
    MetadataStore,
    Record,
    Unsubscribe,
)
from bookadapter.client.remote.listener import RemoteChangeListener
from bookadapter.client.sync.types import (
    BlobNotFoundError,
    DownloadCancelledError,
    FileAlreadyExistsError,
    FilesystemError,
    NotAuthenticatedError,
    TransferError,
)
from bookadapter.core.config import BackendConfig

logger = logging.getLogger(__name__)

# Streaming block size for write_to_local (1 MB)
STREAM_BLOCK_SIZE = 1024 * 1024


def _detail(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict):
        return str(data.get("detail", default))
    return default


class HTTPBackend:
    """HTTP session for the BookAdapter backend API."""

    def __init__(self, config: BackendConfig) -> None:
        """Initialize the HTTP session.

        Args:
            config: Server URL, token and connection settings.
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
        )

    @property
    def config(self) -> BackendConfig:
        """Connection settings."""
        return self._config

    @property
    def client(self) -> httpx.Client:
        """Underlying httpx client."""
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPBackend:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def handle_response(self, response: httpx.Response) -> httpx.Response:
        """Translate error statuses into the sync error taxonomy."""
        status = response.status_code
        if status in (401, 403):
            raise NotAuthenticatedError(
                _detail(response, "Invalid or expired token"), str(status)
            )
        if status == 404:
            raise BlobNotFoundError(_detail(response, "Resource not found"), "404")
        if status == 409:
            raise FileAlreadyExistsError(_detail(response, "Already exists"), "409")
        if status >= 400:
            raise TransferError(_detail(response, "Unknown error"), str(status))
        return response

    def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, translating transport failures into TransferError."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise TransferError(f"{method} {url} failed: {e}", e.__class__.__name__) from e
        return self.handle_response(response)

    def health_check(self) -> bool:
        """Check if the server is reachable and healthy."""
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False


class HTTPMetadataStore(MetadataStore):
    """Metadata store backed by the REST API."""

    def __init__(self, backend: HTTPBackend) -> None:
        self._backend = backend
        self._listeners: list[RemoteChangeListener] = []

    @staticmethod
    def _record_url(collection: str, record_id: str) -> str:
        return f"/api/collections/{quote(collection, safe='')}/{quote(record_id, safe='')}"

    def write(self, collection: str, record_id: str, record: Record) -> None:
        self._backend.request("PUT", self._record_url(collection, record_id), json=record)
        logger.debug("Wrote %s/%s", collection, record_id)

    def query(self, collection: str, filters: Filters | None = None) -> list[Record]:
        response = self._backend.request(
            "POST",
            f"/api/collections/{quote(collection, safe='')}/query",
            json={"filters": dict(filters or {})},
        )
        records: list[Record] = response.json()
        return records

    def update(self, collection: str, record_id: str, fields: Record) -> None:
        self._backend.request("PATCH", self._record_url(collection, record_id), json=fields)

    def delete(self, collection: str, record_id: str) -> None:
        try:
            self._backend.request("DELETE", self._record_url(collection, record_id))
        except BlobNotFoundError:
            logger.debug("Record %s/%s already gone", collection, record_id)

    def subscribe(
        self,
        collection: str,
        filters: Filters | None,
        on_change: ChangeCallback,
    ) -> Unsubscribe:
        listener = RemoteChangeListener(
            config=self._backend.config,
            collection=collection,
            filters=filters,
            on_change=on_change,
            snapshot=lambda: self.query(collection, filters),
        )
        self._listeners.append(listener)
        listener.start()

        def unsubscribe() -> None:
            listener.stop()
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Stop every live subscription."""
        for listener in list(self._listeners):
            listener.stop()
        self._listeners.clear()


class HTTPBlobStore(BlobStore):
    """Blob store backed by the REST API."""

    def __init__(self, backend: HTTPBackend) -> None:
        self._backend = backend

    @staticmethod
    def _blob_url(path: str) -> str:
        return f"/api/blobs/{quote(path, safe='/')}"

    def exists(self, path: str) -> bool:
        try:
            response = self._backend.client.head(self._blob_url(path))
        except httpx.RequestError as e:
            raise TransferError(f"HEAD {path} failed: {e}", e.__class__.__name__) from e
        if response.status_code == 404:
            return False
        self._backend.handle_response(response)
        return True

    def put(self, path: str, data: bytes, content_type: str) -> str:
        response = self._backend.request(
            "PUT",
            self._blob_url(path),
            content=data,
            headers={"Content-Type": content_type},
        )
        url: str = response.json()["url"]
        logger.debug("Uploaded %s (%d bytes)", path, len(data))
        return url

    def get_download_url(self, path: str) -> str:
        response = self._backend.request("GET", self._blob_url(path), params={"url": "1"})
        url: str = response.json()["url"]
        return url

    def write_to_local(
        self,
        path: str,
        destination: Path,
        cancel_check: CancelCheck | None = None,
    ) -> int:
        written = 0
        try:
            with self._backend.client.stream("GET", self._blob_url(path)) as response:
                if response.status_code >= 400:
                    response.read()
                    self._backend.handle_response(response)
                destination.parent.mkdir(parents=True, exist_ok=True)
                with destination.open("wb") as f:
                    for block in response.iter_bytes(STREAM_BLOCK_SIZE):
                        if cancel_check and cancel_check():
                            raise DownloadCancelledError(f"Download cancelled: {path}")
                        f.write(block)
                        written += len(block)
        except httpx.RequestError as e:
            raise TransferError(f"GET {path} failed: {e}", e.__class__.__name__) from e
        except OSError as e:
            raise FilesystemError(
                f"Failed to write {destination}: {e}", e.__class__.__name__
            ) from e
        return written

    def delete(self, path: str) -> bool:
        try:
            self._backend.request("DELETE", self._blob_url(path))
        except BlobNotFoundError:
            return False
        return True


class HTTPIdentity(IdentityProvider):
    """Identity provider asking the backend who the token belongs to."""

    def __init__(self, backend: HTTPBackend) -> None:
        self._backend = backend
        self._user_id: str | None = None

    def current_user_id(self) -> str | None:
        if self._user_id is None:
            try:
                response = self._backend.request("GET", "/api/me")
            except NotAuthenticatedError:
                return None
            self._user_id = response.json().get("user_id")
        return self._user_id
