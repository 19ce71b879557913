"""Tests for the local implementations of the remote collaborators."""

from __future__ import annotations

from pathlib import Path

import pytest

from bookadapter.client.remote import create_backend
from bookadapter.client.remote.base import ChangeSet, matches
from bookadapter.client.remote.http import HTTPBlobStore, HTTPMetadataStore
from bookadapter.client.remote.local import (
    InMemoryMetadataStore,
    JSONFileMetadataStore,
    LocalFSBlobStore,
    StaticIdentity,
)
from bookadapter.client.sync.types import (
    BlobNotFoundError,
    DownloadCancelledError,
    TransferError,
)


class TestMatches:
    """Tests for filter evaluation."""

    def test_empty_filters_match_everything(self) -> None:
        """No filters means every record matches."""
        assert matches({"a": 1}, None)
        assert matches({"a": 1}, {})

    def test_all_filters_must_match(self) -> None:
        """Every key must be equal."""
        assert matches({"a": 1, "b": 2}, {"a": 1})
        assert not matches({"a": 1, "b": 2}, {"a": 1, "b": 3})


class TestInMemoryMetadataStore:
    """Tests for InMemoryMetadataStore."""

    def test_write_query_delete(self) -> None:
        """Records can be written, queried by filter and deleted."""
        store = InMemoryMetadataStore()
        store.write("books", "1", {"id": "1", "userId": "u1"})
        store.write("books", "2", {"id": "2", "userId": "u2"})

        assert store.query("books", {"userId": "u1"}) == [{"id": "1", "userId": "u1"}]

        store.delete("books", "1")
        store.delete("books", "1")
        assert store.query("books", {"userId": "u1"}) == []

    def test_returns_copies(self) -> None:
        """Mutating a returned record does not change the store."""
        store = InMemoryMetadataStore()
        store.write("books", "1", {"id": "1", "tags": ["a"]})

        store.query("books")[0]["tags"].append("b")

        assert store.get("books", "1") == {"id": "1", "tags": ["a"]}

    def test_update_merges_fields(self) -> None:
        """update merges into the existing record."""
        store = InMemoryMetadataStore()
        store.write("books", "1", {"id": "1", "title": "T"})

        store.update("books", "1", {"imageUrl": "u"})

        assert store.get("books", "1") == {"id": "1", "title": "T", "imageUrl": "u"}

    def test_update_missing_raises(self) -> None:
        """Updating an unknown record fails."""
        with pytest.raises(BlobNotFoundError):
            InMemoryMetadataStore().update("books", "nope", {"a": 1})


class TestSubscribe:
    """Tests for change subscriptions."""

    def test_initial_snapshot_and_changes(self) -> None:
        """Subscribers get existing records, then each change."""
        store = InMemoryMetadataStore()
        store.write("books", "1", {"id": "1", "userId": "u1"})
        received: list[ChangeSet] = []

        unsubscribe = store.subscribe("books", {"userId": "u1"}, received.append)
        store.write("books", "2", {"id": "2", "userId": "u1"})
        store.update("books", "2", {"title": "T"})
        store.delete("books", "1")
        unsubscribe()

        assert received == [
            ChangeSet(added=[{"id": "1", "userId": "u1"}]),
            ChangeSet(added=[{"id": "2", "userId": "u1"}]),
            ChangeSet(modified=[{"id": "2", "userId": "u1", "title": "T"}]),
            ChangeSet(removed=[{"id": "1", "userId": "u1"}]),
        ]

    def test_leaving_filter_is_removal(self) -> None:
        """A record that stops matching the filter is reported as removed."""
        store = InMemoryMetadataStore()
        store.write("books", "1", {"id": "1", "userId": "u1"})
        received: list[ChangeSet] = []
        store.subscribe("books", {"userId": "u1"}, received.append)

        store.update("books", "1", {"userId": "u2"})

        assert received[-1] == ChangeSet(removed=[{"id": "1", "userId": "u1"}])

    def test_no_notifications_after_unsubscribe(self) -> None:
        """unsubscribe stops further callbacks."""
        store = InMemoryMetadataStore()
        received: list[ChangeSet] = []
        unsubscribe = store.subscribe("books", None, received.append)
        unsubscribe()

        store.write("books", "1", {"id": "1"})

        assert received == []

    def test_other_collections_ignored(self) -> None:
        """Only the subscribed collection is reported."""
        store = InMemoryMetadataStore()
        received: list[ChangeSet] = []
        store.subscribe("books", None, received.append)

        store.write("series", "s1", {"id": "s1"})

        assert received == []


class TestJSONFileMetadataStore:
    """Tests for JSONFileMetadataStore persistence."""

    def test_survives_reopen(self, tmp_path: Path) -> None:
        """Records are reloaded from the JSON file."""
        path = tmp_path / "metadata.json"
        JSONFileMetadataStore(path).write("books", "1", {"id": "1"})

        assert JSONFileMetadataStore(path).get("books", "1") == {"id": "1"}

    def test_corrupt_file(self, tmp_path: Path) -> None:
        """An unreadable file is a transfer error."""
        path = tmp_path / "metadata.json"
        path.write_text("{not json")

        with pytest.raises(TransferError):
            JSONFileMetadataStore(path)


class TestLocalFSBlobStore:
    """Tests for LocalFSBlobStore."""

    def test_put_exists_delete(self, tmp_path: Path) -> None:
        """Objects can be stored, checked and deleted."""
        store = LocalFSBlobStore(tmp_path / "remote")

        url = store.put("u1/a.epub", b"data", "application/epub+zip")

        assert url.startswith("file://")
        assert store.exists("u1/a.epub")
        assert store.get_download_url("u1/a.epub") == url
        assert store.delete("u1/a.epub") is True
        assert store.delete("u1/a.epub") is False
        assert not store.exists("u1/a.epub")

    def test_missing_object(self, tmp_path: Path) -> None:
        """Missing objects raise BlobNotFoundError."""
        store = LocalFSBlobStore(tmp_path / "remote")

        with pytest.raises(BlobNotFoundError):
            store.get_download_url("u1/none.epub")
        with pytest.raises(BlobNotFoundError):
            store.write_to_local("u1/none.epub", tmp_path / "out")

    def test_write_to_local(self, tmp_path: Path) -> None:
        """Objects are copied to a local destination."""
        store = LocalFSBlobStore(tmp_path / "remote")
        store.put("u1/a.epub", b"x" * 5000, "application/epub+zip")

        written = store.write_to_local("u1/a.epub", tmp_path / "out" / "a.epub")

        assert written == 5000
        assert (tmp_path / "out" / "a.epub").read_bytes() == b"x" * 5000

    def test_write_to_local_honours_cancel(self, tmp_path: Path) -> None:
        """A cancel check that returns True aborts the copy."""
        store = LocalFSBlobStore(tmp_path / "remote")
        store.put("u1/a.epub", b"x" * 10, "application/epub+zip")

        with pytest.raises(DownloadCancelledError):
            store.write_to_local("u1/a.epub", tmp_path / "a.epub", cancel_check=lambda: True)

    def test_rejects_escaping_paths(self, tmp_path: Path) -> None:
        """Paths may not leave the storage root."""
        store = LocalFSBlobStore(tmp_path / "remote")

        with pytest.raises(TransferError):
            store.put("../outside.epub", b"x", "application/epub+zip")


class TestStaticIdentity:
    """Tests for StaticIdentity."""

    def test_user(self) -> None:
        """Returns the configured user, or None when signed out."""
        assert StaticIdentity("u1").current_user_id() == "u1"
        assert StaticIdentity(None).current_user_id() is None


class TestCreateBackend:
    """Tests for the create_backend factory."""

    def test_local(self, tmp_path: Path) -> None:
        """Local config builds filesystem-backed collaborators."""
        remote = create_backend(
            {"backend": "local", "blob_root": str(tmp_path / "store"), "user_id": "u1"}
        )

        assert isinstance(remote.metadata, JSONFileMetadataStore)
        assert isinstance(remote.blobs, LocalFSBlobStore)
        assert remote.identity.current_user_id() == "u1"
        remote.close()

    def test_local_requires_blob_root(self) -> None:
        """Local backend without blob_root is rejected."""
        with pytest.raises(ValueError, match="blob_root"):
            create_backend({"backend": "local"})

    def test_http(self) -> None:
        """HTTP config builds REST-backed collaborators."""
        remote = create_backend(
            {"backend": "http", "server_url": "http://test", "token": "t"}
        )

        assert isinstance(remote.metadata, HTTPMetadataStore)
        assert isinstance(remote.blobs, HTTPBlobStore)
        remote.close()

    def test_http_requires_token(self) -> None:
        """HTTP backend without a token is rejected."""
        with pytest.raises(ValueError, match="token"):
            create_backend({"backend": "http", "server_url": "http://test"})

    def test_unknown_backend(self) -> None:
        """Unknown backend types are rejected."""
        with pytest.raises(ValueError, match="Unknown backend type"):
            create_backend({"backend": "ftp"})
