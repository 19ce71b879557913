"""Remote collaborators: metadata store, blob store and identity provider.

This package provides:
- Abstract interfaces (MetadataStore, BlobStore, IdentityProvider)
- Local implementations for the `local` backend and tests
- HTTP implementations for the `http` backend
- create_backend: Factory building the collaborators from configuration
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from bookadapter.client.remote.base import (
    BlobStore,
    ChangeSet,
    IdentityProvider,
    MetadataStore,
    Unsubscribe,
    matches,
)
from bookadapter.client.remote.http import (
    HTTPBackend,
    HTTPBlobStore,
    HTTPIdentity,
    HTTPMetadataStore,
)
from bookadapter.client.remote.listener import RemoteChangeListener
from bookadapter.client.remote.local import (
    InMemoryMetadataStore,
    JSONFileMetadataStore,
    LocalFSBlobStore,
    StaticIdentity,
)
from bookadapter.core.config import BackendConfig


@dataclass
class RemoteCollaborators:
    """The three remote collaborators, built together."""

    metadata: MetadataStore
    blobs: BlobStore
    identity: IdentityProvider
    session: HTTPBackend | None = None

    def close(self) -> None:
        """Release network resources, if any."""
        if isinstance(self.metadata, HTTPMetadataStore):
            self.metadata.close()
        if self.session is not None:
            self.session.close()


def create_backend(config: dict[str, Any]) -> RemoteCollaborators:
    """Factory function to create the remote collaborators from configuration.

    Args:
        config: Configuration dict with keys:
            - backend: "local" or "http"
            - For local: blob_root, user_id
            - For http: server_url, token (optional: timeout, verify_ssl)

    Returns:
        Configured RemoteCollaborators.

    Raises:
        ValueError: If the backend type is unknown or misconfigured.
    """
    backend_type = config.get("backend", "local")

    if backend_type == "local":
        blob_root = config.get("blob_root")
        if not blob_root:
            raise ValueError("Local backend requires 'blob_root' configuration")
        root = Path(blob_root).expanduser()
        return RemoteCollaborators(
            metadata=JSONFileMetadataStore(root / "metadata.json"),
            blobs=LocalFSBlobStore(root / "blobs"),
            identity=StaticIdentity(config.get("user_id")),
        )

    if backend_type == "http":
        session = HTTPBackend(BackendConfig.from_dict(config))
        return RemoteCollaborators(
            metadata=HTTPMetadataStore(session),
            blobs=HTTPBlobStore(session),
            identity=HTTPIdentity(session),
            session=session,
        )

    raise ValueError(f"Unknown backend type: {backend_type}")


__all__ = [
    # Interfaces
    "BlobStore",
    "ChangeSet",
    "IdentityProvider",
    "MetadataStore",
    "Unsubscribe",
    "matches",
    # Local
    "InMemoryMetadataStore",
    "JSONFileMetadataStore",
    "LocalFSBlobStore",
    "StaticIdentity",
    # HTTP
    "HTTPBackend",
    "HTTPBlobStore",
    "HTTPIdentity",
    "HTTPMetadataStore",
    "RemoteChangeListener",
    # Factory
    "RemoteCollaborators",
    "create_backend",
]
