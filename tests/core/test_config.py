"""Tests for core configuration classes."""

from __future__ import annotations

import pytest

from bookadapter.core.config import BackendConfig


class TestBackendConfig:
    """Tests for BackendConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with required fields."""
        config = BackendConfig(server_url="https://example.com", token="test-token")
        assert config.server_url == "https://example.com"
        assert config.token == "test-token"
        assert config.timeout == 30.0
        assert config.verify_ssl is True

    def test_init_custom_timeout(self) -> None:
        """Should accept custom timeout."""
        config = BackendConfig(
            server_url="https://example.com",
            token="test-token",
            timeout=60.0,
        )
        assert config.timeout == 60.0

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from server URL."""
        config = BackendConfig(server_url="https://example.com/", token="test-token")
        assert config.server_url == "https://example.com"

    def test_ws_url_https(self) -> None:
        """Should convert HTTPS to WSS for the change subscription URL."""
        config = BackendConfig(server_url="https://example.com", token="test-token")
        assert config.ws_url == "wss://example.com/ws/changes"

    def test_ws_url_http(self) -> None:
        """Should convert HTTP to WS for the change subscription URL."""
        config = BackendConfig(server_url="http://localhost:8000", token="test-token")
        assert config.ws_url == "ws://localhost:8000/ws/changes"

    def test_ws_url_does_not_embed_token(self) -> None:
        """The token travels in a header, never in the URL."""
        config = BackendConfig(server_url="https://example.com", token="secret")
        assert "secret" not in config.ws_url

    def test_is_secure_https(self) -> None:
        """Should return True for HTTPS URLs."""
        config = BackendConfig(server_url="https://example.com", token="test-token")
        assert config.is_secure is True

    def test_is_secure_http(self) -> None:
        """Should return False for HTTP URLs."""
        config = BackendConfig(server_url="http://localhost:8000", token="test-token")
        assert config.is_secure is False

    def test_ws_url_keeps_base_path(self) -> None:
        """A backend mounted under a path keeps it in the WebSocket URL."""
        config = BackendConfig(server_url="https://example.com/library/", token="t")
        assert config.ws_url == "wss://example.com/library/ws/changes"

    def test_token_not_in_repr(self) -> None:
        """The token is left out of the repr so it never reaches logs."""
        config = BackendConfig(server_url="https://example.com", token="secret")
        assert "secret" not in repr(config)


class TestBackendConfigFromDict:
    """Tests for BackendConfig.from_dict."""

    def test_from_cli_config(self) -> None:
        """Should read the CLI configuration keys."""
        config = BackendConfig.from_dict(
            {"server_url": "http://localhost:8000/", "token": "t", "timeout": "5"}
        )
        assert config.server_url == "http://localhost:8000"
        assert config.timeout == 5.0
        assert config.verify_ssl is True

    def test_missing_token(self) -> None:
        """Should reject a configuration without a token."""
        with pytest.raises(ValueError, match="token"):
            BackendConfig.from_dict({"server_url": "http://localhost:8000"})
