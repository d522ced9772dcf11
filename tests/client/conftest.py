"""Shared fixtures for client tests: an in-memory card behind httpx.MockTransport."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path
from urllib.parse import parse_qsl, unquote

import httpx
import pytest
import pytest_asyncio

from cardsync.client.api import CardClient
from cardsync.core.config import CardConfig

DEFAULT_DATE = datetime(2024, 5, 1, 10, 0, 0)
ATTR_ARCHIVE = 0x20
ATTR_DIRECTORY = 0x10


def pack_fat(when: datetime) -> tuple[int, int]:
    date_value = ((when.year - 1980) << 9) | (when.month << 5) | when.day
    time_value = (when.hour << 11) | (when.minute << 5) | (when.second // 2)
    return date_value, time_value


class FakeCard:
    """A card answering the CGI interface from memory."""

    def __init__(self) -> None:
        self.firmware = "FA9CAW3AW3.00.01"
        self.cid = "02544d53573038470d1f000000000000"
        self.ssid = "flashair_test"
        self.write_timestamp = 1000
        self.updated = False
        self.upload = "1"
        self.deletion_result = "SUCCESS"
        self.files: dict[str, tuple[bytes, int, datetime]] = {}
        self.thumbnails: dict[str, bytes] = {}
        self.failures: dict[str, list[int]] = {}
        self.requests: list[str] = []
        self.deleted: list[str] = []

    def add_file(
        self,
        path: str,
        data: bytes,
        when: datetime = DEFAULT_DATE,
        listed_size: int | None = None,
        thumbnail: bytes | None = b"THUMBNAIL",
    ) -> None:
        self.files[path] = (data, len(data) if listed_size is None else listed_size, when)
        if thumbnail is not None:
            self.thumbnails[path] = thumbnail

    def remove_file(self, path: str) -> None:
        del self.files[path]
        self.thumbnails.pop(path, None)

    def fail(self, target: str, *status_codes: int) -> None:
        """Answer the next requests for target with the given status codes."""
        self.failures[target] = list(status_codes)

    @property
    def downloads(self) -> list[str]:
        """Plain file requests received."""
        return [r for r in self.requests if "?" not in r]

    def count(self, prefix: str) -> int:
        return sum(1 for r in self.requests if r.startswith(prefix))

    def _listing(self, directory: str) -> str:
        lines = ["WLANSD_FILELIST"]
        if directory == "":
            lines.append(f",SD_WLAN,0,{ATTR_DIRECTORY},0,0")
        subdirectories: set[str] = set()
        for path, (_, size, when) in sorted(self.files.items()):
            parent, _, name = path.rpartition("/")
            if parent == directory:
                date_value, time_value = pack_fat(when)
                lines.append(f"{directory},{name},{size},{ATTR_ARCHIVE},{date_value},{time_value}")
            elif parent.startswith(directory + "/"):
                subdirectories.add(parent[len(directory) + 1:].split("/", 1)[0])
        for name in sorted(subdirectories):
            lines.append(f"{directory},{name},0,{ATTR_DIRECTORY},0,0")
        return "\r\n".join(lines) + "\r\n"

    def _command(self, query: str) -> httpx.Response:
        params = dict(parse_qsl(query))
        op = params.get("op")
        directory = params.get("DIR", "/").rstrip("/")
        if op == "100":
            return httpx.Response(200, text=self._listing(directory))
        if op == "101":
            count = sum(1 for p in self.files if p.rpartition("/")[0] == directory)
            return httpx.Response(200, text=str(count))
        if op == "102":
            return httpx.Response(200, text="1" if self.updated else "0")
        if op == "104":
            return httpx.Response(200, text=self.ssid)
        if op == "108":
            return httpx.Response(200, text=self.firmware)
        if op == "118":
            return httpx.Response(200, text=self.upload)
        if op == "120":
            return httpx.Response(200, text=self.cid)
        if op == "121":
            return httpx.Response(200, text=str(self.write_timestamp))
        return httpx.Response(400)

    def handler(self, request: httpx.Request) -> httpx.Response:
        target = unquote(request.url.raw_path.decode())
        self.requests.append(target)

        pending = self.failures.get(target)
        if pending:
            return httpx.Response(pending.pop(0))

        path, _, query = target.partition("?")
        if path == "/command.cgi":
            return self._command(query)
        if path == "/thumbnail.cgi":
            if query in self.thumbnails:
                return httpx.Response(200, content=self.thumbnails[query])
            return httpx.Response(404)
        if path == "/upload.cgi":
            if self.upload not in ("", "1"):
                return httpx.Response(404)
            file_path = query.removeprefix("DEL=")
            if self.deletion_result == "SUCCESS" and file_path in self.files:
                self.remove_file(file_path)
                self.deleted.append(file_path)
            return httpx.Response(200, text=self.deletion_result)
        if path in self.files:
            return httpx.Response(200, content=self.files[path][0])
        return httpx.Response(404)


class FakeChecker:
    """Network checker with switchable answers."""

    def __init__(self) -> None:
        self.connected = True
        self.wireless = True
        self.calls = 0

    async def is_network_connected(self, card: object = None) -> bool:
        self.calls += 1
        return self.connected

    async def is_wireless_connected(self, ssid: str) -> bool:
        return self.wireless


@pytest.fixture
def config(tmp_path: Path) -> CardConfig:
    """Config with short delays for tests."""
    return CardConfig(
        remote_root="http://flashair/",
        local_folder=tmp_path / "images",
        timeout=2.0,
        monitor_interval=0.05,
        retry_delay=0.01,
    )


@pytest.fixture
def card() -> FakeCard:
    return FakeCard()


@pytest.fixture
def checker() -> FakeChecker:
    return FakeChecker()


@pytest_asyncio.fixture
async def client(config: CardConfig, card: FakeCard) -> AsyncIterator[CardClient]:
    async with CardClient(config, transport=httpx.MockTransport(card.handler)) as card_client:
        yield card_client
