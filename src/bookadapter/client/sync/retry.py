"""Retrying remote calls.

This module provides:
- backoff_delays: The capped exponential delay sequence
- retry_with_backoff: Call a function, retrying transient TransferErrors

Only TransferError (or the types passed in) is retried. A missing object
will not appear by waiting, so BlobNotFoundError always fails at once.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from typing import Any, TypeVar

from bookadapter.client.sync.types import BlobNotFoundError, TransferError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 30.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

NON_RETRYABLE: tuple[type[Exception], ...] = (BlobNotFoundError,)


def backoff_delays(
    retries: int,
    initial: float = DEFAULT_INITIAL_BACKOFF,
    maximum: float = DEFAULT_MAX_BACKOFF,
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> Iterator[float]:
    """Yield `retries` delays, growing by multiplier and capped at maximum."""
    delay = initial
    for _ in range(retries):
        yield min(delay, maximum)
        delay *= multiplier


def retry_with_backoff(
    func: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = (TransferError,),
    sleep: Callable[[float], Any] = time.sleep,
) -> T:
    """Call func, retrying transient failures with exponential backoff.

    Args:
        func: Zero-argument callable to run.
        max_retries: Retries after the first attempt.
        initial_backoff: First delay in seconds.
        max_backoff: Upper bound for any delay.
        backoff_multiplier: Growth factor between delays.
        retryable_exceptions: Exception types worth another attempt.
        sleep: Sleep function, replaceable in tests.

    Returns:
        Whatever func returns.

    Raises:
        The error of the last attempt, or a non-retryable error at once.
    """
    delays = backoff_delays(max_retries, initial_backoff, max_backoff, backoff_multiplier)
    attempt = 1
    while True:
        try:
            return func()
        except NON_RETRYABLE:
            raise
        except retryable_exceptions as e:
            delay = next(delays, None)
            if delay is None:
                logger.error("Giving up after %d attempts: %s", attempt, e)
                raise
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.1fs",
                attempt,
                max_retries + 1,
                e,
                delay,
            )
            sleep(delay)
            attempt += 1
