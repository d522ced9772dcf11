"""Cooperative cancellation for card operations.

This module provides:
- CancelScope: One cancellation signal shared by every await of a run
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from cardsync.client.errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancelScope:
    """Cancellation signal for one check, copy or preview run.

    Unlike task cancellation, a scope is raised by the caller (Stop button,
    a newer preview request) and observed by the transfer layer, which races
    every network read and every delay against it.

    Usage:
        scope = CancelScope()
        data = await client.download_file(path, size, progress, card, scope)

        # elsewhere
        scope.cancel()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._closed = False

    @property
    def cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._event.is_set()

    @property
    def closed(self) -> bool:
        """Check if the run owning this scope has finished."""
        return self._closed

    def cancel(self) -> bool:
        """Request cancellation.

        Returns:
            True if cancellation was requested, False if the scope was
            already cancelled or closed.
        """
        if self._closed or self._event.is_set():
            return False
        logger.debug("Cancellation requested")
        self._event.set()
        return True

    def close(self) -> None:
        """Mark the owning run as finished. Later cancel() calls are no-ops."""
        self._closed = True

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelled()

    async def wait(self) -> None:
        """Wait until cancellation is requested."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for delay seconds unless cancelled first.

        Raises:
            OperationCancelled: If cancellation is requested before or
                during the delay.
        """
        self.raise_if_cancelled()
        if delay <= 0:
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        self.raise_if_cancelled()
