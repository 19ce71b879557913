"""Backend connection settings.

This module provides:
- BackendConfig: URL, token and transport options for the http backend
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit, urlunsplit

CHANGES_PATH = "/ws/changes"

_WS_SCHEMES = {"http": "ws", "https": "wss"}


@dataclass(frozen=True)
class BackendConfig:
    """Where and how to reach a bookadapter backend.

    The REST adapters and the change listener are built from the same
    instance, so they always talk to the same server with the same token.

    Attributes:
        server_url: Base URL, without trailing slash (e.g. "https://books.example.com").
        token: Bearer token of the signed-in user.
        timeout: Request and connect timeout in seconds.
        verify_ssl: Verify TLS certificates.
    """

    server_url: str
    token: str = field(repr=False)
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "server_url", self.server_url.rstrip("/"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackendConfig:
        """Build from the CLI configuration keys.

        Raises:
            ValueError: If server_url or token is missing.
        """
        server_url = data.get("server_url")
        token = data.get("token")
        if not server_url or not token:
            raise ValueError("HTTP backend requires 'server_url' and 'token' configuration")
        return cls(
            server_url=server_url,
            token=token,
            timeout=float(data.get("timeout", 30.0)),
            verify_ssl=bool(data.get("verify_ssl", True)),
        )

    @property
    def ws_url(self) -> str:
        """WebSocket endpoint for change subscriptions.

        The token is sent as a header, never in the URL.
        """
        parts = urlsplit(self.server_url)
        scheme = _WS_SCHEMES.get(parts.scheme, parts.scheme)
        return urlunsplit((scheme, parts.netloc, parts.path + CHANGES_PATH, "", ""))

    @property
    def is_secure(self) -> bool:
        """Check if the backend is reached over TLS."""
        return urlsplit(self.server_url).scheme == "https"
