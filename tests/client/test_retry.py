"""Tests for retry with exponential backoff."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from bookadapter.client.sync.retry import backoff_delays, retry_with_backoff
from bookadapter.client.sync.types import (
    BlobNotFoundError,
    FileAlreadyExistsError,
    TransferError,
)


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    def test_returns_first_success(self) -> None:
        """A successful call should not sleep."""
        sleep = MagicMock()
        assert retry_with_backoff(lambda: 42, sleep=sleep) == 42
        sleep.assert_not_called()

    def test_retries_transfer_errors(self) -> None:
        """Transient errors should be retried with growing delays."""
        func = MagicMock(side_effect=[TransferError("down"), TransferError("down"), "ok"])
        sleep = MagicMock()

        result = retry_with_backoff(func, max_retries=3, initial_backoff=1.0, sleep=sleep)

        assert result == "ok"
        assert func.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_backoff_is_capped(self) -> None:
        """Delays should never exceed max_backoff."""
        func = MagicMock(side_effect=[TransferError("x")] * 4 + ["ok"])
        sleep = MagicMock()

        retry_with_backoff(
            func, max_retries=4, initial_backoff=4.0, max_backoff=10.0, sleep=sleep
        )

        assert [c.args[0] for c in sleep.call_args_list] == [4.0, 8.0, 10.0, 10.0]

    def test_raises_after_last_retry(self) -> None:
        """The last error should surface once retries are exhausted."""
        func = MagicMock(side_effect=TransferError("still down"))

        with pytest.raises(TransferError, match="still down"):
            retry_with_backoff(func, max_retries=2, sleep=MagicMock())
        assert func.call_count == 3

    def test_missing_object_not_retried(self) -> None:
        """BlobNotFoundError is a TransferError but must not be retried."""
        func = MagicMock(side_effect=BlobNotFoundError("gone"))
        sleep = MagicMock()

        with pytest.raises(BlobNotFoundError):
            retry_with_backoff(func, sleep=sleep)
        assert func.call_count == 1
        sleep.assert_not_called()

    def test_other_errors_not_retried(self) -> None:
        """Errors outside retryable_exceptions propagate immediately."""
        func = MagicMock(side_effect=FileAlreadyExistsError("exists"))

        with pytest.raises(FileAlreadyExistsError):
            retry_with_backoff(func, sleep=MagicMock())
        assert func.call_count == 1


class TestBackoffDelays:
    """Tests for backoff_delays."""

    def test_sequence(self) -> None:
        """Delays double and stop at the cap."""
        assert list(backoff_delays(5, initial=1.0, maximum=5.0)) == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_no_retries(self) -> None:
        """Zero retries means no delays."""
        assert list(backoff_delays(0)) == []
