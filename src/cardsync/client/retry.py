"""Bounded retry for requests the card could not answer.

This module provides:
- retry_connection_unable: Fixed-delay retry of ConnectionUnableError
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from cardsync.client.cancel import CancelScope
from cardsync.client.errors import ConnectionUnableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 0.5  # seconds


async def retry_connection_unable(
    func: Callable[[], Awaitable[T]],
    scope: CancelScope,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay: float = DEFAULT_RETRY_DELAY,
) -> T:
    """Execute a request, retrying when the card cannot be reached.

    Only ConnectionUnableError is retried. The delay between attempts is
    fixed and is cut short by cancellation.

    Args:
        func: Coroutine function performing one attempt.
        scope: Cancellation scope of the run.
        max_attempts: Total number of attempts.
        delay: Seconds to wait between attempts.

    Returns:
        Result of the first successful attempt.

    Raises:
        ConnectionUnableError: If every attempt failed.
        OperationCancelled: If cancelled while waiting.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except ConnectionUnableError as e:
            if attempt == max_attempts:
                logger.error(f"All {max_attempts} attempts failed: {e}")
                raise

            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await scope.sleep(delay)

    raise RuntimeError("Unexpected retry loop exit")
