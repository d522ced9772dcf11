"""HTTP client for the card's CGI interface.

This module provides:
- CardCommand: Request paths understood by the card
- CardClient: Listing, thumbnails, downloads, deletion and identity queries
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx

from cardsync.client.entry import FileEntry
from cardsync.client.errors import (
    ConnectionUnableError,
    DeletionFailedError,
    RemoteFileNotFoundError,
    ThumbnailUnavailableError,
)
from cardsync.client.transfer import LivenessCheck, ProgressCallback, Transfer

if TYPE_CHECKING:
    from cardsync.client.cancel import CancelScope
    from cardsync.client.card import CardIdentity
    from cardsync.core.config import CardConfig

logger = logging.getLogger(__name__)

DELETION_SUCCESS = "SUCCESS"
UPDATED_FLAG = "1"


class CardCommand(Enum):
    """Request path templates relative to the remote root."""

    NONE = "{path}"
    GET_FILE_LIST = "command.cgi?op=100&DIR=/{path}"
    GET_FILE_NUM = "command.cgi?op=101&DIR=/{path}"
    GET_THUMBNAIL = "thumbnail.cgi?/{path}"
    GET_FIRMWARE_VERSION = "command.cgi?op=108"
    GET_CID = "command.cgi?op=120"
    GET_SSID = "command.cgi?op=104"
    GET_UPDATE_STATUS = "command.cgi?op=102"
    GET_WRITE_TIMESTAMP = "command.cgi?op=121"
    GET_UPLOAD = "command.cgi?op=118"
    DELETE_FILE = "upload.cgi?DEL=/{path}"


class CardClient:
    """Client for the card's HTTP/CGI interface.

    Requests are issued one at a time over a single httpx.AsyncClient.

    Usage:
        async with CardClient(config, checker) as client:
            version = await client.get_firmware_version(scope)
    """

    def __init__(
        self,
        config: CardConfig,
        checker: LivenessCheck | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the card client.

        Args:
            config: Card configuration.
            checker: Network liveness check used while a request is in flight.
            transport: Optional transport for the HTTP client.
        """
        self.config = config
        self._client = httpx.AsyncClient(timeout=config.timeout, transport=transport)
        self._transfer = Transfer(self._client, config, checker)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> CardClient:
        """Context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Context manager exit."""
        await self.close()

    def compose_url(self, command: CardCommand, path: str = "") -> str:
        """Compose the URL of a request.

        Args:
            command: Request to make.
            path: Remote path, leading slashes are ignored. Characters outside
                a URL path such as "#" are percent-encoded.

        Returns:
            Absolute URL.
        """
        return self.config.remote_root + command.value.format(path=quote(path.lstrip("/"), safe="/"))

    async def _download_string(
        self,
        command: CardCommand,
        scope: CancelScope,
        path: str = "",
        card: CardIdentity | None = None,
    ) -> str:
        url = self.compose_url(command, path)
        data = await self._transfer.fetch(url, scope, card=card)
        text = data.decode("ascii", errors="replace")
        logger.debug(f"{command.name} {path} -> {text.strip()!r}")
        return text

    # === File listing ===

    async def list_files_recursive(
        self,
        card: CardIdentity,
        scope: CancelScope,
        directory: str = "",
    ) -> list[FileEntry]:
        """List image files in a directory and its subdirectories.

        Hidden, system and volume entries, folders the card keeps for
        itself and files that are not images are dropped.

        Args:
            card: Card information.
            scope: Cancellation scope of the run.
            directory: Directory to start from (the root by default).

        Returns:
            Flat list of file entries, depth first.
        """
        result: list[FileEntry] = []
        for entry in await self.list_files(directory, card, scope):
            if entry.is_hidden or entry.is_system_file or entry.is_volume or entry.is_card_system_folder:
                continue
            if entry.is_directory:
                result.extend(await self.list_files_recursive(card, scope, entry.path))
            elif entry.is_image:
                result.append(entry)
        return result

    async def list_files(
        self,
        directory: str,
        card: CardIdentity | None,
        scope: CancelScope,
    ) -> list[FileEntry]:
        """List the entries of one directory.

        Args:
            directory: Remote directory.
            card: Card information.
            scope: Cancellation scope of the run.

        Returns:
            Entries parsed from the listing; unparsable lines are dropped.
        """
        text = await self._download_string(CardCommand.GET_FILE_LIST, scope, directory, card)
        entries = []
        for line in text.splitlines():
            entry = FileEntry.parse(line, directory)
            if entry is not None:
                entries.append(entry)
        return entries

    async def count_files(self, directory: str, scope: CancelScope) -> int:
        """Get the number of files in a directory (0 if unknown)."""
        text = await self._download_string(CardCommand.GET_FILE_NUM, scope, directory)
        text = text.strip()
        return int(text) if text.isdigit() else 0

    # === Files ===

    async def get_thumbnail(self, path: str, card: CardIdentity, scope: CancelScope) -> bytes:
        """Get the thumbnail embedded in a remote JPEG.

        Args:
            path: Remote path of the image.
            card: Card information.
            scope: Cancellation scope of the run.

        Returns:
            Thumbnail bytes.

        Raises:
            ThumbnailUnavailableError: If the card has no thumbnail for the file.
        """
        url = self.compose_url(CardCommand.GET_THUMBNAIL, path)
        try:
            return await self._transfer.fetch(url, scope, card=card)
        except RemoteFileNotFoundError as e:
            raise ThumbnailUnavailableError(path=path) from e
        except ConnectionUnableError as e:
            # 500 means the file holds no thumbnail
            if e.status_code == 500:
                raise ThumbnailUnavailableError(path=path) from e
            raise

    async def download_file(
        self,
        path: str,
        size: int,
        progress: ProgressCallback | None,
        card: CardIdentity,
        scope: CancelScope,
    ) -> bytes:
        """Download a remote file.

        Args:
            path: Remote path.
            size: Size listed for the file.
            progress: Called as the body arrives.
            card: Card information.
            scope: Cancellation scope of the run.

        Returns:
            File content, exactly size bytes.
        """
        url = self.compose_url(CardCommand.NONE, path)
        return await self._transfer.fetch(url, scope, card=card, size=size, progress=progress)

    async def delete_file(self, path: str, scope: CancelScope) -> None:
        """Delete a remote file.

        Raises:
            DeletionFailedError: If the card did not confirm the deletion.
        """
        try:
            text = await self._download_string(CardCommand.DELETE_FILE, scope, path)
        except RemoteFileNotFoundError as e:
            # upload.cgi answers 404 when it is disabled
            raise DeletionFailedError("Deletion is disabled on the card", path) from e
        if text.strip() != DELETION_SUCCESS:
            raise DeletionFailedError(f"Card answered {text.strip()!r}", path)
        logger.info(f"Deleted {path} on the card")

    # === Card information ===

    async def get_firmware_version(self, scope: CancelScope) -> str:
        """Get the firmware version string."""
        return (await self._download_string(CardCommand.GET_FIRMWARE_VERSION, scope)).strip()

    async def get_cid(self, scope: CancelScope) -> str:
        """Get the CID, or "" if the card rejects the request."""
        try:
            return (await self._download_string(CardCommand.GET_CID, scope)).strip()
        except ConnectionUnableError:
            return ""

    async def get_ssid(self, scope: CancelScope) -> str:
        """Get the SSID of the card's wireless network."""
        return (await self._download_string(CardCommand.GET_SSID, scope)).strip()

    async def check_update_status(self, scope: CancelScope) -> bool:
        """Check if the card content has been updated since last asked."""
        return (await self._download_string(CardCommand.GET_UPDATE_STATUS, scope)).strip() == UPDATED_FLAG

    async def get_write_timestamp(self, scope: CancelScope) -> int:
        """Get the time stamp of the last write event, or -1 if unknown."""
        try:
            text = (await self._download_string(CardCommand.GET_WRITE_TIMESTAMP, scope)).strip()
        except ConnectionUnableError:
            return -1
        try:
            return int(text)
        except ValueError:
            return -1

    async def get_upload_params(self, scope: CancelScope) -> str:
        """Get the upload parameter ("1" means uploading is enabled)."""
        try:
            return (await self._download_string(CardCommand.GET_UPLOAD, scope)).strip()
        except ConnectionUnableError:
            return ""
