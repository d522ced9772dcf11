"""Resilient GET requests against the card.

The card is a slow HTTP server on an unreliable wireless link. Every
request made here is bounded by a timeout per phase (headers, then each
body read), watched by a liveness monitor that checks the network, and
raced against the run's CancelScope. Raw httpx exceptions never leave this
module: they are translated into the cardsync.client.errors taxonomy.

This module provides:
- ProgressInfo: Bytes transferred so far and elapsed time
- LivenessMonitor: Periodic network check with a resettable deadline
- Transfer: GET with timeouts, liveness, cancellation and bounded retry
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

import httpx

from cardsync.client.errors import (
    CardSyncError,
    ConnectionLostError,
    ConnectionUnableError,
    OperationCancelled,
    RemoteFileInvalidError,
    RemoteFileNotFoundError,
    TransferTimeoutError,
    UnexpectedResponseError,
)
from cardsync.client.retry import retry_connection_unable

if TYPE_CHECKING:
    from cardsync.client.cancel import CancelScope
    from cardsync.client.card import CardIdentity
    from cardsync.core.config import CardConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUFFER_SIZE = 64 * 1024  # 64 KiB per body read
STEP_UNIT = 512 * 1024  # one progress step per 512 KiB
MIN_STEPS = 6

# Status codes meaning the card is busy or not ready
RETRYABLE_STATUS_CODES = frozenset({400, 401, 500})


@dataclass(frozen=True)
class ProgressInfo:
    """Progress of a single download.

    Attributes:
        current: Bytes received so far.
        total: Expected size in bytes.
        elapsed: Time since the body started.
    """

    current: int
    total: int
    elapsed: timedelta

    @property
    def percentage(self) -> float:
        """Progress as a percentage (0-100)."""
        if self.total == 0:
            return 100.0
        return self.current * 100.0 / self.total


# Type aliases for callbacks
ProgressCallback = Callable[[ProgressInfo], None]
StatusCallback = Callable[[str], None]


class LivenessCheck(Protocol):
    """Anything that can tell whether the card is still reachable."""

    async def is_network_connected(self, card: CardIdentity | None = None) -> bool: ...


class LivenessMonitor:
    """Checks the network while a request is in flight.

    A check runs whenever the deadline passes without reset() being
    called, so a steady stream of body chunks keeps the monitor quiet and
    only stalls trigger checking. A failed check marks the connection lost.

    Usage:
        async with LivenessMonitor(checker, card, 2.0) as monitor:
            ...
            monitor.reset()
    """

    def __init__(
        self,
        checker: LivenessCheck | None,
        card: CardIdentity | None,
        interval: float,
    ) -> None:
        self._checker = checker
        self._card = card
        self._interval = interval
        self._lost = asyncio.Event()
        self._deadline = 0.0
        self._task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> LivenessMonitor:
        self.reset()
        if self._checker is not None:
            self._task = asyncio.create_task(self._run(self._checker))
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    @property
    def lost(self) -> bool:
        """Check if a check has failed."""
        return self._lost.is_set()

    def reset(self) -> None:
        """Push the next check back by one interval."""
        self._deadline = time.monotonic() + self._interval

    async def wait_lost(self) -> None:
        """Wait until a check fails."""
        await self._lost.wait()

    async def _run(self, checker: LivenessCheck) -> None:
        while True:
            delay = self._deadline - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)
                continue
            try:
                connected = await checker.is_network_connected(self._card)
            except OSError as e:
                logger.debug(f"Network check failed: {e}")
                connected = False
            if not connected:
                logger.warning("Network to the card is lost")
                self._lost.set()
                return
            self.reset()


async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes:
    try:
        return await anext(chunks)
    except StopAsyncIteration:
        return b""


class Transfer:
    """Performs GET requests against the card.

    Usage:
        transfer = Transfer(http, config, checker)
        data = await transfer.fetch(url, scope, card=card, size=1024, progress=on_progress)
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        config: CardConfig,
        checker: LivenessCheck | None = None,
    ) -> None:
        self.http = http
        self.config = config
        self.checker = checker

    async def fetch(
        self,
        url: str,
        scope: CancelScope,
        card: CardIdentity | None = None,
        size: int | None = None,
        progress: ProgressCallback | None = None,
    ) -> bytes:
        """Get the body of a URL, retrying while the card cannot answer.

        Args:
            url: URL to request.
            scope: Cancellation scope of the run.
            card: Card information handed to the liveness check.
            size: Expected body size, if known.
            progress: Called as the body arrives (sized requests only).

        Returns:
            The complete body.

        Raises:
            ConnectionUnableError: If every attempt failed to reach the card.
            ConnectionLostError: If the network went down during the request.
            RemoteFileNotFoundError: If the card answered 404.
            RemoteFileInvalidError: If the body size does not match size.
            TransferTimeoutError: If the card stopped answering.
            OperationCancelled: If the scope was cancelled.
            UnexpectedResponseError: If the card answered another status code.
        """
        return await retry_connection_unable(
            lambda: self._fetch_once(url, scope, card, size, progress),
            scope,
            max_attempts=self.config.max_attempts,
            delay=self.config.retry_delay,
        )

    async def _fetch_once(
        self,
        url: str,
        scope: CancelScope,
        card: CardIdentity | None,
        size: int | None,
        progress: ProgressCallback | None,
    ) -> bytes:
        scope.raise_if_cancelled()
        logger.debug(f"GET {url}")

        async with LivenessMonitor(self.checker, card, self.config.monitor_interval) as monitor:
            request = self.http.build_request("GET", url)
            response: httpx.Response = await self._race(
                self.http.send(request, stream=True), scope, monitor, url, body=False
            )
            try:
                self._check_status(response, url)

                if size is not None:
                    declared = response.headers.get("content-length")
                    if declared is None or not declared.isdigit() or int(declared) != size:
                        raise RemoteFileInvalidError(
                            f"Content length {declared} does not match size {size}", url
                        )

                if not size or progress is None:
                    data = await self._race(response.aread(), scope, monitor, url, body=True)
                    if size is not None and len(data) != size:
                        raise RemoteFileInvalidError(
                            f"Received {len(data)} bytes, expected {size}", url
                        )
                    return data

                return await self._read_chunks(response, size, progress, scope, monitor, url)
            finally:
                await response.aclose()

    async def _read_chunks(
        self,
        response: httpx.Response,
        size: int,
        progress: ProgressCallback,
        scope: CancelScope,
        monitor: LivenessMonitor,
        url: str,
    ) -> bytes:
        buffer = bytearray()
        chunks = response.aiter_raw(BUFFER_SIZE)
        step_total = max(math.ceil(size / STEP_UNIT), MIN_STEPS)
        step_current = 1
        start = time.monotonic()

        while len(buffer) < size:
            chunk = await self._race(_next_chunk(chunks), scope, monitor, url, body=True)
            if not chunk:
                raise RemoteFileInvalidError(
                    f"Body ended after {len(buffer)} of {size} bytes", url
                )
            buffer.extend(chunk)
            if len(buffer) > size:
                raise RemoteFileInvalidError(f"Body exceeds size {size}", url)
            monitor.reset()

            while step_current <= step_total and step_current * size <= len(buffer) * step_total:
                progress(
                    ProgressInfo(
                        current=len(buffer),
                        total=size,
                        elapsed=timedelta(seconds=time.monotonic() - start),
                    )
                )
                step_current += 1

        return bytes(buffer)

    @staticmethod
    def _check_status(response: httpx.Response, url: str) -> None:
        status = response.status_code
        logger.debug(f"{status} {url}")
        if status == 200:
            return
        if status in RETRYABLE_STATUS_CODES:
            raise ConnectionUnableError(f"Card answered {status}", url, status_code=status)
        if status == 404:
            raise RemoteFileNotFoundError(f"Not found: {url}", url)
        raise UnexpectedResponseError(f"Unexpected status {status}", url, status_code=status)

    async def _race(
        self,
        awaitable: Awaitable[T],
        scope: CancelScope,
        monitor: LivenessMonitor,
        url: str,
        body: bool,
    ) -> T:
        """Await a network read against timeout, liveness loss and cancellation.

        The losing read task is cancelled, which tears down the in-flight
        response read.
        """
        task = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(scope.wait())
        lost = asyncio.ensure_future(monitor.wait_lost())
        try:
            done, _ = await asyncio.wait(
                {task, cancelled, lost},
                timeout=self.config.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancelled.cancel()
            lost.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                await self._discard(task)

        if task in done:
            try:
                return task.result()
            except CardSyncError:
                raise
            except httpx.HTTPError as e:
                raise self._translate(e, scope, url, body) from e

        if scope.cancelled:
            raise OperationCancelled(path=url)
        if monitor.lost:
            raise ConnectionLostError(path=url)
        raise TransferTimeoutError(f"No answer within {self.config.timeout}s", url)

    @staticmethod
    async def _discard(task: asyncio.Future[Any]) -> None:
        # A send that completed while being cancelled leaves an open response
        if task.cancelled() or task.exception() is not None:
            return
        result = task.result()
        if isinstance(result, httpx.Response):
            await result.aclose()

    @staticmethod
    def _translate(error: httpx.HTTPError, scope: CancelScope, url: str, body: bool) -> CardSyncError:
        if scope.cancelled:
            return OperationCancelled(path=url)
        if isinstance(error, httpx.TimeoutException):
            return TransferTimeoutError(str(error) or "Timed out", url)
        if not body:
            return ConnectionUnableError(str(error) or "Connection failed", url)
        if isinstance(error, httpx.RemoteProtocolError):
            # Peer closed before delivering the declared length
            return RemoteFileInvalidError(str(error), url)
        return ConnectionLostError(str(error) or "Connection lost", url)
