"""Tests for the resilient transfer primitive."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import replace

import httpx
import pytest

from cardsync.client.cancel import CancelScope
from cardsync.client.errors import (
    ConnectionLostError,
    ConnectionUnableError,
    OperationCancelled,
    RemoteFileInvalidError,
    RemoteFileNotFoundError,
    TransferTimeoutError,
    UnexpectedResponseError,
)
from cardsync.client.transfer import MIN_STEPS, ProgressInfo, Transfer
from cardsync.core.config import CardConfig

URL = "http://flashair/DCIM/101CANON/IMG_0001.JPG"


class ShortStream(httpx.AsyncByteStream):
    """Body that ends before the declared length."""

    def __init__(self, data: bytes) -> None:
        self.data = data

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self.data


class StallingStream(httpx.AsyncByteStream):
    """Body that delivers one chunk, then never anything again."""

    def __init__(self, first: bytes) -> None:
        self.first = first
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self.first
        await asyncio.sleep(3600)
        yield b""

    async def aclose(self) -> None:
        self.closed = True


class DeadChecker:
    """Network checker reporting the link as down."""

    async def is_network_connected(self, card: object = None) -> bool:
        return False


def make_transfer(
    handler: Callable[[httpx.Request], httpx.Response],
    config: CardConfig,
    checker: object = None,
) -> Transfer:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Transfer(http, config, checker)  # type: ignore[arg-type]


class TestBody:
    """Tests for reading the response body."""

    @pytest.mark.asyncio
    async def test_exact_size_with_progress(self, config: CardConfig) -> None:
        """Should return every byte and report progress at least six times."""
        data = bytes(range(256)) * 1200  # about 300 KiB
        transfer = make_transfer(lambda r: httpx.Response(200, content=data), config)
        reports: list[ProgressInfo] = []

        result = await transfer.fetch(URL, CancelScope(), size=len(data), progress=reports.append)

        assert result == data
        assert len(reports) >= MIN_STEPS
        currents = [r.current for r in reports]
        assert currents == sorted(currents)
        assert reports[-1].current == len(data)
        assert all(r.total == len(data) for r in reports)

    @pytest.mark.asyncio
    async def test_large_file_reports_more(self, config: CardConfig) -> None:
        """Should report once per 512 KiB for large files."""
        data = b"\xff" * (4 * 1024 * 1024)
        transfer = make_transfer(lambda r: httpx.Response(200, content=data), config)
        reports: list[ProgressInfo] = []

        await transfer.fetch(URL, CancelScope(), size=len(data), progress=reports.append)

        assert len(reports) == 8

    @pytest.mark.asyncio
    async def test_unsized(self, config: CardConfig) -> None:
        """Should read the whole body when no size is expected."""
        transfer = make_transfer(lambda r: httpx.Response(200, text="FA9CAW3AW3.00.01"), config)

        assert await transfer.fetch(URL, CancelScope()) == b"FA9CAW3AW3.00.01"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("with_progress", [True, False])
    async def test_short_body_invalid(self, config: CardConfig, with_progress: bool) -> None:
        """Should fail as invalid when the body ends one byte early."""
        data = b"x" * 1000

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, headers={"Content-Length": str(len(data))}, stream=ShortStream(data[:-1])
            )

        transfer = make_transfer(handler, config)
        reports: list[ProgressInfo] = []

        with pytest.raises(RemoteFileInvalidError):
            await transfer.fetch(
                URL,
                CancelScope(),
                size=len(data),
                progress=reports.append if with_progress else None,
            )

    @pytest.mark.asyncio
    async def test_content_length_mismatch(self, config: CardConfig) -> None:
        """Should fail without reading when the declared length differs."""
        transfer = make_transfer(lambda r: httpx.Response(200, content=b"x" * 10), config)

        with pytest.raises(RemoteFileInvalidError):
            await transfer.fetch(URL, CancelScope(), size=11)


class TestStatus:
    """Tests for status code handling and retry."""

    @pytest.mark.asyncio
    async def test_not_found(self, config: CardConfig) -> None:
        """Should fail at once on 404."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        with pytest.raises(RemoteFileNotFoundError):
            await make_transfer(handler, config).fetch(URL, CancelScope())
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_status(self, config: CardConfig) -> None:
        """Should not retry unknown status codes."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        with pytest.raises(UnexpectedResponseError) as exc_info:
            await make_transfer(handler, config).fetch(URL, CancelScope())
        assert exc_info.value.status_code == 503
        assert len(calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 401, 500])
    async def test_retry_exhausted(self, config: CardConfig, status_code: int) -> None:
        """Should retry busy answers up to the attempt limit."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(status_code)

        with pytest.raises(ConnectionUnableError) as exc_info:
            await make_transfer(handler, config).fetch(URL, CancelScope())
        assert exc_info.value.status_code == status_code
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retry_then_success(self, config: CardConfig) -> None:
        """Should succeed when a later attempt is answered."""
        answers = [httpx.Response(500), httpx.Response(200, text="ok")]

        result = await make_transfer(lambda r: answers.pop(0), config).fetch(URL, CancelScope())

        assert result == b"ok"
        assert answers == []

    @pytest.mark.asyncio
    async def test_connect_error_retried(self, config: CardConfig) -> None:
        """Should translate connection failures and retry them."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(ConnectionUnableError):
            await make_transfer(handler, config).fetch(URL, CancelScope())
        assert len(calls) == config.max_attempts


class TestStalls:
    """Tests for timeouts, liveness and cancellation."""

    @pytest.mark.asyncio
    async def test_stall_times_out(self, config: CardConfig) -> None:
        """Should time out when the body stalls and the network is fine."""
        config = replace(config, timeout=0.2)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"Content-Length": "100"}, stream=StallingStream(b"x"))

        with pytest.raises(TransferTimeoutError):
            await make_transfer(handler, config).fetch(
                URL, CancelScope(), size=100, progress=lambda info: None
            )

    @pytest.mark.asyncio
    async def test_link_down_is_connection_lost(self, config: CardConfig) -> None:
        """Should fail as connection lost, not timeout, when the link goes down."""
        config = replace(config, timeout=5.0, monitor_interval=0.05)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"Content-Length": "100"}, stream=StallingStream(b"x"))

        transfer = make_transfer(handler, config, DeadChecker())

        with pytest.raises(ConnectionLostError) as exc_info:
            await transfer.fetch(URL, CancelScope(), size=100, progress=lambda info: None)
        assert not isinstance(exc_info.value, TransferTimeoutError)

    @pytest.mark.asyncio
    async def test_cancel_aborts_read(self, config: CardConfig) -> None:
        """Should abort an in-flight read and close the response on cancel."""
        config = replace(config, timeout=5.0)
        stream = StallingStream(b"x")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"Content-Length": "100"}, stream=stream)

        scope = CancelScope()
        task = asyncio.create_task(
            make_transfer(handler, config).fetch(URL, scope, size=100, progress=lambda info: None)
        )
        await asyncio.sleep(0.05)
        scope.cancel()

        with pytest.raises(OperationCancelled):
            await asyncio.wait_for(task, 1.0)
        assert stream.closed

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, config: CardConfig) -> None:
        """Should not send a request once cancelled."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200)

        scope = CancelScope()
        scope.cancel()

        with pytest.raises(OperationCancelled):
            await make_transfer(handler, config).fetch(URL, scope)
        assert calls == []

    @pytest.mark.asyncio
    async def test_cancel_interrupts_retry_delay(self, config: CardConfig) -> None:
        """Should stop waiting between attempts when cancelled."""
        config = replace(config, retry_delay=10.0)
        scope = CancelScope()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        task = asyncio.create_task(make_transfer(handler, config).fetch(URL, scope))
        await asyncio.sleep(0.05)
        scope.cancel()

        with pytest.raises(OperationCancelled):
            await asyncio.wait_for(task, 1.0)
