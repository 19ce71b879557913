"""Tests for the HTTP implementation of the remote collaborators."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest

from bookadapter.client.remote.http import (
    HTTPBackend,
    HTTPBlobStore,
    HTTPIdentity,
    HTTPMetadataStore,
)
from bookadapter.client.sync.types import (
    BlobNotFoundError,
    FileAlreadyExistsError,
    NotAuthenticatedError,
    TransferError,
)
from bookadapter.core.config import BackendConfig


@pytest.fixture
def backend() -> Iterator[HTTPBackend]:
    """Create an HTTP session against http://test."""
    session = HTTPBackend(BackendConfig(server_url="http://test", token="token123"))
    yield session
    session.close()


class TestHTTPBackend:
    """Tests for the shared session."""

    def test_sends_bearer_token(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Every request carries the token."""
        httpx_mock.add_response(url="http://test/api/me", json={"user_id": "u1"})

        backend.request("GET", "/api/me")

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer token123"

    def test_health_check(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return True when the server answers 200."""
        httpx_mock.add_response(url="http://test/health", json={"status": "ok"})
        assert backend.health_check() is True

    def test_health_check_failure(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return False on a server error."""
        httpx_mock.add_response(url="http://test/health", status_code=500)
        assert backend.health_check() is False

    def test_unauthorized(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """401 maps to NotAuthenticatedError."""
        httpx_mock.add_response(
            url="http://test/api/me", status_code=401, json={"detail": "Token expired"}
        )

        with pytest.raises(NotAuthenticatedError, match="Token expired"):
            backend.request("GET", "/api/me")

    def test_conflict(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """409 maps to FileAlreadyExistsError."""
        httpx_mock.add_response(url="http://test/api/blobs/x", method="PUT", status_code=409)

        with pytest.raises(FileAlreadyExistsError):
            backend.request("PUT", "/api/blobs/x")

    def test_server_error_keeps_status(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Other errors map to TransferError carrying the status code."""
        httpx_mock.add_response(
            url="http://test/api/me", status_code=503, json={"detail": "Maintenance"}
        )

        with pytest.raises(TransferError) as exc_info:
            backend.request("GET", "/api/me")
        assert exc_info.value.message == "Maintenance"
        assert exc_info.value.code == "503"

    def test_transport_error(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Connection failures map to TransferError."""
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

        with pytest.raises(TransferError) as exc_info:
            backend.request("GET", "/api/me")
        assert exc_info.value.code == "ConnectError"


class TestHTTPMetadataStore:
    """Tests for HTTPMetadataStore."""

    def test_write(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """write PUTs the record as JSON."""
        httpx_mock.add_response(
            url="http://test/api/collections/books/b1", method="PUT", json={}
        )

        HTTPMetadataStore(backend).write("books", "b1", {"id": "b1", "title": "T"})

        request = httpx_mock.get_request()
        assert json.loads(request.content) == {"id": "b1", "title": "T"}

    def test_query(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """query POSTs the filters and returns the records."""
        httpx_mock.add_response(
            url="http://test/api/collections/books/query",
            method="POST",
            json=[{"id": "b1", "userId": "u1"}],
        )

        records = HTTPMetadataStore(backend).query("books", {"userId": "u1"})

        assert records == [{"id": "b1", "userId": "u1"}]
        request = httpx_mock.get_request()
        assert json.loads(request.content) == {"filters": {"userId": "u1"}}

    def test_update(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """update PATCHes only the given fields."""
        httpx_mock.add_response(
            url="http://test/api/collections/books/b1", method="PATCH", json={}
        )

        HTTPMetadataStore(backend).update("books", "b1", {"imageUrl": "http://c"})

        request = httpx_mock.get_request()
        assert json.loads(request.content) == {"imageUrl": "http://c"}

    def test_update_missing(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Updating a missing record raises BlobNotFoundError."""
        httpx_mock.add_response(
            url="http://test/api/collections/books/b1", method="PATCH", status_code=404
        )

        with pytest.raises(BlobNotFoundError):
            HTTPMetadataStore(backend).update("books", "b1", {"a": 1})

    def test_delete_missing_is_ignored(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Deleting an absent record is not an error."""
        httpx_mock.add_response(
            url="http://test/api/collections/books/b1", method="DELETE", status_code=404
        )

        HTTPMetadataStore(backend).delete("books", "b1")


class TestHTTPBlobStore:
    """Tests for HTTPBlobStore."""

    def test_exists(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """HEAD 200 means the object exists."""
        httpx_mock.add_response(url="http://test/api/blobs/u1/a.epub", method="HEAD")
        assert HTTPBlobStore(backend).exists("u1/a.epub") is True

    def test_not_exists(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """HEAD 404 means the object does not exist."""
        httpx_mock.add_response(
            url="http://test/api/blobs/u1/a.epub", method="HEAD", status_code=404
        )
        assert HTTPBlobStore(backend).exists("u1/a.epub") is False

    def test_put(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """put uploads the bytes with their content type and returns the URL."""
        httpx_mock.add_response(
            url="http://test/api/blobs/u1/My%20Book.epub",
            method="PUT",
            json={"url": "https://cdn/u1/My%20Book.epub"},
        )

        url = HTTPBlobStore(backend).put("u1/My Book.epub", b"data", "application/epub+zip")

        assert url == "https://cdn/u1/My%20Book.epub"
        request = httpx_mock.get_request()
        assert request.content == b"data"
        assert request.headers["Content-Type"] == "application/epub+zip"

    def test_get_download_url(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """get_download_url asks for the URL instead of the bytes."""
        httpx_mock.add_response(
            url="http://test/api/blobs/u1/a.epub.jpg?url=1",
            method="GET",
            json={"url": "https://cdn/cover.jpg"},
        )

        assert HTTPBlobStore(backend).get_download_url("u1/a.epub.jpg") == "https://cdn/cover.jpg"

    def test_write_to_local(self, backend: HTTPBackend, httpx_mock, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        """write_to_local streams the object into a file."""
        httpx_mock.add_response(
            url="http://test/api/blobs/u1/a.epub", method="GET", content=b"book" * 100
        )
        destination = tmp_path / "lib" / "a.epub.part"

        written = HTTPBlobStore(backend).write_to_local("u1/a.epub", destination)

        assert written == 400
        assert destination.read_bytes() == b"book" * 100

    def test_write_to_local_missing(self, backend: HTTPBackend, httpx_mock, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        """A missing object raises BlobNotFoundError and writes nothing."""
        httpx_mock.add_response(
            url="http://test/api/blobs/u1/a.epub", method="GET", status_code=404
        )
        destination = tmp_path / "a.epub.part"

        with pytest.raises(BlobNotFoundError):
            HTTPBlobStore(backend).write_to_local("u1/a.epub", destination)
        assert not destination.exists()

    def test_delete(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """delete returns True when the object was removed."""
        httpx_mock.add_response(url="http://test/api/blobs/u1/a.epub", method="DELETE")
        assert HTTPBlobStore(backend).delete("u1/a.epub") is True

    def test_delete_missing(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """delete returns False for an absent object."""
        httpx_mock.add_response(
            url="http://test/api/blobs/u1/a.epub", method="DELETE", status_code=404
        )
        assert HTTPBlobStore(backend).delete("u1/a.epub") is False


class TestHTTPIdentity:
    """Tests for HTTPIdentity."""

    def test_current_user_cached(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """The user id is fetched once."""
        httpx_mock.add_response(url="http://test/api/me", json={"user_id": "u1"})
        identity = HTTPIdentity(backend)

        assert identity.current_user_id() == "u1"
        assert identity.current_user_id() == "u1"
        assert len(httpx_mock.get_requests()) == 1

    def test_signed_out(self, backend: HTTPBackend, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A rejected token means no signed-in user."""
        httpx_mock.add_response(url="http://test/api/me", status_code=401)

        assert HTTPIdentity(backend).current_user_id() is None
