"""Tests for RemoteChangeListener."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from bookadapter.client.remote.base import ChangeSet
from bookadapter.client.remote.listener import RemoteChangeListener
from bookadapter.core.config import BackendConfig


def make_listener(
    on_change: MagicMock | None = None,
    filters: dict[str, str] | None = None,
) -> RemoteChangeListener:
    """Create a listener for the books collection of u1."""
    return RemoteChangeListener(
        config=BackendConfig(server_url="http://localhost:8000", token="test-token"),
        collection="books",
        filters=filters if filters is not None else {"userId": "u1"},
        on_change=on_change or MagicMock(),
        snapshot=MagicMock(return_value=[]),
    )


def change_message(action: str, record_id: str, record: dict | None = None) -> str:
    """Encode a record_change push message."""
    return json.dumps(
        {
            "type": "record_change",
            "collection": "books",
            "action": action,
            "id": record_id,
            "record": record,
        }
    )


class TestRemoteChangeListenerInit:
    """Tests for RemoteChangeListener initialization."""

    def test_ws_url_uses_config(self) -> None:
        """ws_url should use BackendConfig.ws_url."""
        listener = make_listener()
        assert listener.ws_url == "ws://localhost:8000/ws/changes"

    def test_not_connected_initially(self) -> None:
        """A new listener is not connected."""
        assert make_listener().connected is False


class TestApplySnapshot:
    """Tests for snapshot diffing on (re)connect."""

    def test_first_snapshot_is_all_added(self) -> None:
        """The first snapshot reports every matching record as added."""
        on_change = MagicMock()
        listener = make_listener(on_change)

        change = listener.apply_snapshot(
            [{"id": "1", "userId": "u1"}, {"id": "2", "userId": "u2"}]
        )

        assert change == ChangeSet(added=[{"id": "1", "userId": "u1"}])
        on_change.assert_called_once_with(change)

    def test_missed_changes_reported(self) -> None:
        """A later snapshot reports what changed while disconnected."""
        on_change = MagicMock()
        listener = make_listener(on_change)
        listener.apply_snapshot([{"id": "1", "userId": "u1"}, {"id": "2", "userId": "u1"}])

        change = listener.apply_snapshot(
            [{"id": "2", "userId": "u1", "title": "New"}, {"id": "3", "userId": "u1"}]
        )

        assert change.added == [{"id": "3", "userId": "u1"}]
        assert change.modified == [{"id": "2", "userId": "u1", "title": "New"}]
        assert change.removed == [{"id": "1", "userId": "u1"}]

    def test_unchanged_snapshot_is_silent(self) -> None:
        """No callback when nothing changed."""
        on_change = MagicMock()
        listener = make_listener(on_change)
        listener.apply_snapshot([{"id": "1", "userId": "u1"}])
        on_change.reset_mock()

        change = listener.apply_snapshot([{"id": "1", "userId": "u1"}])

        assert not change
        on_change.assert_not_called()

    def test_callback_errors_are_contained(self) -> None:
        """A failing callback does not break the listener."""
        listener = make_listener(MagicMock(side_effect=RuntimeError("boom")))

        change = listener.apply_snapshot([{"id": "1", "userId": "u1"}])

        assert change.added == [{"id": "1", "userId": "u1"}]


class TestHandleMessage:
    """Tests for push message handling."""

    @pytest.mark.asyncio
    async def test_upsert_new_record_is_added(self) -> None:
        """An upsert of an unknown matching record is an addition."""
        on_change = MagicMock()
        listener = make_listener(on_change)

        await listener._handle_message(change_message("upsert", "1", {"id": "1", "userId": "u1"}))

        on_change.assert_called_once_with(ChangeSet(added=[{"id": "1", "userId": "u1"}]))

    @pytest.mark.asyncio
    async def test_upsert_known_record_is_modified(self) -> None:
        """An upsert of a known record is a modification."""
        on_change = MagicMock()
        listener = make_listener(on_change)
        listener.apply_snapshot([{"id": "1", "userId": "u1"}])
        on_change.reset_mock()

        await listener._handle_message(
            change_message("upsert", "1", {"id": "1", "userId": "u1", "title": "T"})
        )

        on_change.assert_called_once_with(
            ChangeSet(modified=[{"id": "1", "userId": "u1", "title": "T"}])
        )

    @pytest.mark.asyncio
    async def test_delete_known_record_is_removed(self) -> None:
        """A delete of a known record reports the last known version."""
        on_change = MagicMock()
        listener = make_listener(on_change)
        listener.apply_snapshot([{"id": "1", "userId": "u1", "filepath": "u1/a.epub"}])
        on_change.reset_mock()

        await listener._handle_message(change_message("delete", "1"))

        on_change.assert_called_once_with(
            ChangeSet(removed=[{"id": "1", "userId": "u1", "filepath": "u1/a.epub"}])
        )

    @pytest.mark.asyncio
    async def test_record_leaving_filter_is_removed(self) -> None:
        """An upsert that no longer matches the filter is a removal."""
        on_change = MagicMock()
        listener = make_listener(on_change)
        listener.apply_snapshot([{"id": "1", "userId": "u1"}])
        on_change.reset_mock()

        await listener._handle_message(change_message("upsert", "1", {"id": "1", "userId": "u2"}))

        on_change.assert_called_once_with(ChangeSet(removed=[{"id": "1", "userId": "u1"}]))

    @pytest.mark.asyncio
    async def test_unrelated_messages_ignored(self) -> None:
        """Other users, collections, types and garbage produce no callback."""
        on_change = MagicMock()
        listener = make_listener(on_change)

        await listener._handle_message(change_message("upsert", "9", {"id": "9", "userId": "u2"}))
        await listener._handle_message(change_message("delete", "unknown"))
        await listener._handle_message(
            json.dumps({"type": "record_change", "collection": "series", "action": "delete", "id": "1"})
        )
        await listener._handle_message(json.dumps({"type": "pong"}))
        await listener._handle_message("not json")

        on_change.assert_not_called()


class TestInterrupt:
    """Tests for waking the listener loop on stop."""

    @pytest.mark.asyncio
    async def test_closes_open_connection(self) -> None:
        """Interrupting closes the current connection and keeps the close task."""
        listener = make_listener()
        ws = AsyncMock()
        listener._ws = ws

        listener._interrupt()

        assert listener._close_task is not None
        await listener._close_task
        ws.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_connection(self) -> None:
        """Nothing to close before the first connection."""
        listener = make_listener()

        listener._interrupt()

        assert listener._close_task is None
