"""Configuration utilities for the bookadapter CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import contextlib
import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from bookadapter.client.remote import create_backend
from bookadapter.client.state import LocalStateStore
from bookadapter.client.sync import LibraryPaths, TransferOrchestrator, UploadQueue


def get_config_dir() -> Path:
    """Get the configuration directory for bookadapter.

    Returns:
        Path to ~/.bookadapter or equivalent.
    """
    return Path.home() / ".bookadapter"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_library_root(config: dict[str, Any] | None = None) -> Path:
    """Get the library folder path.

    Returns:
        Path to the library folder (configured or default ~/Books).
    """
    config = config if config is not None else load_config()
    if config.get("library_root"):
        return Path(config["library_root"]).expanduser().resolve()
    return Path.home() / "Books"


@contextlib.contextmanager
def open_orchestrator(config: dict[str, Any] | None = None) -> Iterator[TransferOrchestrator]:
    """Build a TransferOrchestrator from the saved configuration.

    The local state and upload queue databases live in the config
    directory. Everything is closed when the context exits.

    Raises:
        ValueError: If the backend configuration is incomplete.
    """
    config = config if config is not None else load_config()
    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    with contextlib.ExitStack() as stack:
        remote = create_backend(config)
        stack.callback(remote.close)
        state = LocalStateStore(config_dir / "state.db")
        stack.callback(state.close)
        queue = UploadQueue(config_dir / "queue.db")
        stack.callback(queue.close)
        orchestrator = TransferOrchestrator(
            state=state,
            queue=queue,
            metadata=remote.metadata,
            blobs=remote.blobs,
            identity=remote.identity,
            library=LibraryPaths(get_library_root(config)),
        )
        stack.callback(orchestrator.close)
        yield orchestrator
