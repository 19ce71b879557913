"""Live change subscriptions over WebSocket.

This module provides:
- RemoteChangeListener: Keeps a WebSocket open for one collection and
  reports matching record changes as ChangeSets

The socket lives on a private asyncio loop in a daemon thread, so callers
stay synchronous. Each time a connection opens the listener subscribes,
then diffs a fresh snapshot of the collection against the records it has
already reported; changes made while it was offline still arrive.
Pushed records are filtered client-side with the same equality filters.
Reconnect attempts back off exponentially up to max_reconnect_delay.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from bookadapter.client.remote.base import (
    ChangeCallback,
    ChangeSet,
    Filters,
    Record,
    matches,
)

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

    from bookadapter.core.config import BackendConfig

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 1.0  # seconds
MAX_RECONNECT_DELAY = 60.0  # seconds


class RemoteChangeListener:
    """Delivers ChangeSets for one collection from the backend's push channel.

    Usage:
        listener = RemoteChangeListener(
            config=backend_config,
            collection="books",
            filters={"userId": "u1"},
            on_change=handle_changes,
            snapshot=lambda: store.query("books", {"userId": "u1"}),
        )
        listener.start()
        ...
        listener.stop()
    """

    def __init__(
        self,
        config: BackendConfig,
        collection: str,
        filters: Filters | None,
        on_change: ChangeCallback,
        snapshot: Callable[[], list[Record]],
        reconnect_delay: float = RECONNECT_DELAY,
        max_reconnect_delay: float = MAX_RECONNECT_DELAY,
    ) -> None:
        """Initialize the listener.

        Args:
            config: Backend URL, token and TLS settings.
            collection: Collection to watch.
            filters: Equality filters records must satisfy.
            on_change: Called with each non-empty ChangeSet.
            snapshot: Returns every matching record; called on each connect.
            reconnect_delay: First delay before reconnecting.
            max_reconnect_delay: Cap for the doubling reconnect delay.
        """
        self._config = config
        self._collection = collection
        self._filters = dict(filters or {})
        self._on_change = on_change
        self._snapshot = snapshot
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay

        # Last reported version of each matching record, by id
        self._known: dict[str, Record] = {}

        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None
        self._ws: ClientConnection | None = None
        self._close_task: asyncio.Task[None] | None = None

    @property
    def connected(self) -> bool:
        """Check if a WebSocket is currently open."""
        return self._ws is not None

    @property
    def ws_url(self) -> str:
        """WebSocket endpoint of the backend."""
        return self._config.ws_url

    def start(self) -> None:
        """Start listening on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Listener for %s already running", self._collection)
            return

        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._thread_main,
            name=f"changes-{self._collection}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Listening for %s changes at %s", self._collection, self.ws_url)

    def stop(self, timeout: float = 5.0) -> None:
        """Close the connection and wait for the background thread to exit."""
        self._stopping.set()

        loop = self._loop
        if loop is not None:
            # The loop may close between the check and the call
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(self._interrupt)

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Listener for %s did not stop in time", self._collection)
            self._thread = None

        logger.info("Stopped listening for %s changes", self._collection)

    def _interrupt(self) -> None:
        # Runs on the listener loop
        if self._wakeup is not None:
            self._wakeup.set()
        if self._ws is not None:
            self._close_task = asyncio.get_running_loop().create_task(self._ws.close())

    def _thread_main(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        try:
            loop.run_until_complete(self._run())
        finally:
            self._loop = None
            loop.close()

    async def _run(self) -> None:
        """Connect, stream messages and reconnect until stopped."""
        self._wakeup = asyncio.Event()
        delay = self._reconnect_delay

        while not self._stopping.is_set():
            try:
                async with self._open() as ws:
                    self._ws = ws
                    if self._stopping.is_set():
                        break
                    delay = self._reconnect_delay
                    await self._on_connected(ws)
                    async for message in ws:
                        if isinstance(message, bytes):
                            message = message.decode("utf-8")
                        await self._handle_message(message)
            except ConnectionClosed as e:
                logger.info("Change stream for %s closed: %s", self._collection, e)
            except (WebSocketException, OSError, TimeoutError) as e:
                logger.warning("Change stream for %s unavailable: %s", self._collection, e)
            finally:
                self._ws = None

            if self._stopping.is_set():
                break

            logger.debug("Reconnecting to %s changes in %.1fs", self._collection, delay)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            delay = min(delay * 2, self._max_reconnect_delay)

    def _open(self) -> websockets.connect:
        ssl_context: ssl.SSLContext | None = None
        if self._config.is_secure:
            ssl_context = ssl.create_default_context()
            if not self._config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        return websockets.connect(
            self.ws_url,
            ssl=ssl_context,
            additional_headers={"Authorization": f"Bearer {self._config.token}"},
            open_timeout=10,
            close_timeout=5,
        )

    async def _on_connected(self, ws: ClientConnection) -> None:
        await ws.send(json.dumps({"type": "subscribe", "collection": self._collection}))
        logger.info("Subscribed to %s changes", self._collection)
        await self._sync_snapshot()

    async def _handle_message(self, message: str) -> None:
        """Handle incoming message from the backend.

        Supported message types:
        - record_change: Push notification for one record
          {"type": "record_change", "collection": "books",
           "action": "upsert|delete", "id": "...", "record": {...}}

        Args:
            message: Raw message string.
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid message received: %s", message[:100])
            return

        if data.get("type") != "record_change":
            return
        if data.get("collection") != self._collection:
            return

        action = data.get("action")
        record_id = data.get("id")
        if not action or not record_id:
            logger.warning("Invalid record_change message: %s", data)
            return

        if action == "upsert":
            record = data.get("record") or {}
            self._apply(record_id, record)
        elif action == "delete":
            self._apply(record_id, None)
        else:
            logger.warning("Unknown action: %s", action)

    def _apply(self, record_id: str, record: Record | None) -> None:
        """Report one record transition if it crosses the filter."""
        previous = self._known.get(record_id)
        now = record is not None and matches(record, self._filters)

        if now and previous is not None:
            change = ChangeSet(modified=[record])  # type: ignore[list-item]
        elif now:
            change = ChangeSet(added=[record])  # type: ignore[list-item]
        elif previous is not None:
            change = ChangeSet(removed=[previous])
        else:
            return

        if now:
            self._known[record_id] = record  # type: ignore[assignment]
        else:
            self._known.pop(record_id, None)
        self._emit(change)

    async def _sync_snapshot(self) -> None:
        """Diff a fresh snapshot against known records and report the difference."""
        try:
            loop = asyncio.get_running_loop()
            records: list[Record] = await loop.run_in_executor(None, self._snapshot)
        except Exception as e:
            logger.warning("Failed to fetch snapshot: %s", e)
            return

        self.apply_snapshot(records)

    def apply_snapshot(self, records: list[Record]) -> ChangeSet:
        """Replace known records with a snapshot, reporting what changed."""
        current: dict[str, Record] = {
            str(r["id"]): r for r in records if matches(r, self._filters)
        }
        change = ChangeSet()
        for record_id, record in current.items():
            previous = self._known.get(record_id)
            if previous is None:
                change.added.append(record)
            elif previous != record:
                change.modified.append(record)
        for record_id, previous in self._known.items():
            if record_id not in current:
                change.removed.append(previous)

        self._known = current
        if change:
            logger.info(
                "Snapshot of %s: %d added, %d modified, %d removed",
                self._collection,
                len(change.added),
                len(change.modified),
                len(change.removed),
            )
            self._emit(change)
        return change

    def _emit(self, change: ChangeSet) -> None:
        try:
            self._on_change(change)
        except Exception:
            logger.exception("Change callback failed for %s", self._collection)
