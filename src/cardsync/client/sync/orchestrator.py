"""Check and copy orchestration.

The orchestrator owns the catalog and the card information for one card
session. A check lists the card and reconciles the catalog with it; a copy
downloads every entry waiting to be copied, one at a time, in catalog
order. At most one check or copy runs at a time.

This module provides:
- SyncOrchestrator: Check, copy, stop, preview loading and update probing
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from cardsync.client import imaging
from cardsync.client.cancel import CancelScope
from cardsync.client.card import CardIdentity
from cardsync.client.catalog import CatalogProgress, FileCatalog
from cardsync.client.entry import FileEntry, FileStatus
from cardsync.client.errors import (
    CardChangedError,
    CardSyncError,
    ErrorKind,
    OperationCancelled,
    RemoteFileInvalidError,
    RemoteFileNotFoundError,
    ThumbnailUnavailableError,
    UnexpectedError,
    UploadDisabledError,
)
from cardsync.client.imaging import ImageNotSupportedError
from cardsync.client.storage import LocalStorage
from cardsync.client.sync.auto import AutoChecker
from cardsync.client.sync.types import STATUS_BY_KIND, OperationState, Status

if TYPE_CHECKING:
    from cardsync.client.api import CardClient
    from cardsync.client.network import NetworkChecker
    from cardsync.client.transfer import ProgressCallback, ProgressInfo, StatusCallback
    from cardsync.core.config import CardConfig

logger = logging.getLogger(__name__)

# A full check is forced when the last check & copy is older than this
AUTO_THRESHOLD = timedelta(minutes=10)


class SyncOrchestrator:
    """Drives checks and copies against one card.

    Usage:
        async with CardClient(config, checker) as client:
            orchestrator = SyncOrchestrator(config, client, checker=checker)
            await orchestrator.check_and_copy()
    """

    def __init__(
        self,
        config: CardConfig,
        client: CardClient,
        storage: LocalStorage | None = None,
        checker: NetworkChecker | None = None,
        catalog: FileCatalog | None = None,
        on_status: StatusCallback | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Card configuration.
            client: Client for the card.
            storage: Local storage (defaults to config.local_folder).
            checker: Network checker; without one the network is assumed up.
            catalog: Initial catalog, e.g. holding sample entries.
            on_status: Called with every status text.
            on_progress: Called with download progress during copies.
        """
        self.config = config
        self.client = client
        self.storage = storage or LocalStorage(config)
        self.checker = checker
        self.catalog = catalog if catalog is not None else FileCatalog()
        self.card = CardIdentity()
        self._on_status = on_status
        self._on_progress = on_progress

        self._status = ""
        self._checking = False
        self._copying = False
        self._scope: CancelScope | None = None
        self._preview_scope: CancelScope | None = None
        self._background: set[asyncio.Task[None]] = set()
        self.auto: AutoChecker | None = None

        self.selected: FileEntry | None = None
        self.current_entry: FileEntry | None = None
        self.current_data: bytes | None = None
        self.progress_info: ProgressInfo | None = None

        self.last_check_copy_time = datetime.min
        self.copy_start_time: datetime | None = None
        self.copied_count = 0
        self.thumbnail_filled = False

    # === State ===

    @property
    def status(self) -> str:
        """Latest status text."""
        return self._status

    @status.setter
    def status(self, value: str) -> None:
        self._status = value
        logger.info(value)
        if self._on_status:
            self._on_status(value)

    @property
    def is_busy(self) -> bool:
        """Check if a check or copy is running."""
        return self._checking or self._copying

    @property
    def state(self) -> OperationState:
        """Current operation state."""
        if self._checking and self._copying:
            return OperationState.CHECKING_AND_COPYING
        if self._checking:
            return OperationState.CHECKING
        if self._copying:
            return OperationState.COPYING
        if self.auto is not None and self.auto.running:
            return OperationState.AUTO_WAITING
        return OperationState.IDLE

    def catalog_progress(self) -> CatalogProgress:
        """Copy progress aggregated over the catalog."""
        return self.catalog.progress(self.progress_info, self.copy_start_time)

    def _report_progress(self, info: ProgressInfo) -> None:
        self.progress_info = info
        if self._on_progress:
            self._on_progress(info)

    # === Entry points ===

    async def check(self) -> bool:
        """Check files on the card.

        Returns:
            True if the check completed.
        """
        if not await self._is_ready():
            return False

        async def work() -> None:
            await self.run_check()
            self.progress_info = None
            self.last_check_copy_time = (
                datetime.min if self.catalog.mark_to_be_copied(change=False) else datetime.now()
            )

        self._checking = True
        try:
            return await self._guard("check files", work)
        finally:
            self._checking = False

    async def copy(self) -> bool:
        """Copy files waiting to be copied.

        Returns:
            True if the copy completed.
        """
        if not await self._is_ready():
            return False

        async def work() -> None:
            self.progress_info = None
            await self.run_copy(self._report_progress)
            self.progress_info = None

        self._copying = True
        try:
            return await self._guard("copy files", work)
        finally:
            self._copying = False

    async def check_and_copy(self) -> bool:
        """Check files, then copy every eligible file not copied yet.

        Returns:
            True if completed (or there was nothing to run), False if
            interrupted or failed.
        """
        if not await self._is_ready():
            return True

        async def work() -> None:
            await self.run_check()
            self.progress_info = None
            # Forces a full check next cycle if the copy does not finish
            self.last_check_copy_time = (
                datetime.min if self.catalog.mark_to_be_copied() else datetime.now()
            )
            await self.run_copy(self._report_progress)
            self.last_check_copy_time = datetime.now()
            self.progress_info = None

        self._checking = True
        self._copying = True
        try:
            return await self._guard("check & copy files", work)
        finally:
            self._checking = False
            self._copying = False

    async def check_update(self) -> bool | None:
        """Ask the card whether its content has changed.

        Uses the write event time stamp where the firmware reports one,
        the update flag otherwise.

        Returns:
            True if updated, False if not, None if the check failed.
        """
        result: bool | None = None

        async def work() -> None:
            nonlocal result
            if self.checker is not None and not await self.checker.is_network_connected(self.card):
                self.status = Status.CONNECTION_UNABLE
                result = False
                return
            self.status = Status.CHECKING
            scope = self._open_scope()
            try:
                if self.card.can_get_write_timestamp:
                    result = await self.client.get_write_timestamp(scope) != self.card.write_timestamp
                else:
                    result = await self.client.check_update_status(scope)
            finally:
                scope.close()
            self.status = Status.COMPLETED

        if not await self._guard("check update", work):
            return None
        return result

    async def run_auto_cycle(self) -> bool:
        """Run one auto check.

        A full check & copy runs only if the card reports an update, unless
        the last cycle is too old or thumbnails are still missing.

        Returns:
            False if the cycle failed.
        """
        if self.thumbnail_filled and datetime.now() < self.last_check_copy_time + AUTO_THRESHOLD:
            updated = await self.check_update()
            if updated is None:
                return False
            if not updated:
                return True

        completed = await self.check_and_copy()
        if completed:
            self.thumbnail_filled = True
        return completed

    def start_auto(self) -> AutoChecker:
        """Start the recurring auto check."""
        if self.auto is None:
            self.auto = AutoChecker(self, self.config.auto_check_interval)
        self.thumbnail_filled = self.catalog.is_thumbnail_filled
        self.auto.start()
        return self.auto

    def stop(self) -> None:
        """Stop the auto check and cancel the running check or copy."""
        if self.auto is not None and self.auto.running:
            self.auto.stop()
            self.status = Status.STOPPED
        if self._scope is not None and not self._scope.closed:
            self._scope.cancel()

    async def load_preview(self, entry: FileEntry) -> bytes | None:
        """Load the local copy of a file as the current preview.

        A newer request cancels a pending one.

        Returns:
            File data, or None if not loaded.
        """
        if self._preview_scope is not None:
            self._preview_scope.cancel()
        scope = CancelScope()
        self._preview_scope = scope

        try:
            data = None
            if entry.can_load_data_local:
                data = await self._read_cancellable(entry, scope)
            self.current_entry = entry
            self.current_data = data
            return data
        except OperationCancelled:
            return None
        except FileNotFoundError:
            entry.status = FileStatus.NOT_COPIED
            entry.is_alive_local = False
        except OSError as e:
            logger.warning(f"Failed to read {entry.path} locally: {e}")
            entry.can_load_data_local = False
        except Exception as e:
            logger.exception("Failed to load image data from local file")
            raise UnexpectedError("Failed to load image data from local file.") from e
        finally:
            scope.close()
        return None

    # === Check phase ===

    async def run_check(self) -> None:
        """Check files on the card and reconcile the catalog.

        Raises:
            CardSyncError: If talking to the card failed.
        """
        self.status = Status.CHECKING
        scope = self._open_scope()
        card = self.card
        try:
            card.firmware_version = await self.client.get_firmware_version(scope)
            if card.can_get_cid:
                card.cid = await self.client.get_cid(scope)
            card.ssid = await self.client.get_ssid(scope)
            if card.ssid and self.checker is not None:
                self._spawn(self._check_wireless(self.checker, card.ssid))

            listing = await self.client.list_files_recursive(card, scope)
            listing.sort(key=lambda e: e.sort_key)

            if card.can_get_write_timestamp:
                card.write_timestamp = await self.client.get_write_timestamp(scope)

            is_changed = card.is_changed
            if is_changed is None:
                is_changed = not self.catalog.shares_signature_with(listing)
            if self.catalog.has_samples or is_changed:
                if len(self.catalog):
                    logger.info("Clearing catalog: card changed or samples present")
                self.catalog.clear()

            for entry in listing:
                entry.is_target = self.config.is_target(entry)
            self.catalog.apply_filter(self.config.is_target)

            self.catalog.merge(listing, self.storage.is_copied)
            recycled = self.catalog.reconcile_deletions(self.config.moves_file_to_recycle)
            if recycled:
                await asyncio.to_thread(self.storage.move_to_recycle, recycled)

            await self._load_local_thumbnails(scope)
            await self._load_remote_thumbnails(scope)

            self.status = Status.CHECK_COMPLETED
        finally:
            self.selected = None
            scope.close()

    async def _check_wireless(self, checker: NetworkChecker, ssid: str) -> None:
        self.card.is_wireless_connected = await checker.is_wireless_connected(ssid)

    async def _load_local_thumbnails(self, scope: CancelScope) -> None:
        for entry in self.catalog:
            if (
                not entry.is_target
                or entry.has_thumbnail
                or entry.status != FileStatus.COPIED
                or not entry.is_alive_local
                or not entry.can_load_data_local
            ):
                continue
            scope.raise_if_cancelled()

            path = self.storage.compose_path(entry)
            try:
                if entry.can_read_exif:
                    entry.thumbnail = await asyncio.to_thread(imaging.read_thumbnail, path)
                else:
                    entry.thumbnail = await asyncio.to_thread(imaging.create_thumbnail, path)
            except FileNotFoundError:
                entry.status = FileStatus.NOT_COPIED
                entry.is_alive_local = False
            except (OSError, ImageNotSupportedError) as e:
                logger.debug(f"No local thumbnail for {entry.path}: {e}")
                entry.can_load_data_local = False

    async def _load_remote_thumbnails(self, scope: CancelScope) -> None:
        for entry in self.catalog:
            if (
                not entry.is_target
                or entry.has_thumbnail
                or entry.status == FileStatus.COPIED
                or not entry.is_alive_remote
                or not entry.can_get_thumbnail_remote
            ):
                continue
            if not self.card.can_get_thumbnail:
                break
            scope.raise_if_cancelled()

            try:
                entry.thumbnail = await self.client.get_thumbnail(entry.path, self.card, scope)
            except ThumbnailUnavailableError:
                entry.can_get_thumbnail_remote = False
                self.card.add_thumbnail_failed_path(entry.path)

    # === Copy phase ===

    async def run_copy(self, progress: ProgressCallback | None = None) -> None:
        """Copy every target entry waiting to be copied.

        Args:
            progress: Called with download progress of each file.

        Raises:
            CardChangedError: If another card answers than the one checked.
            UploadDisabledError: If files are to be deleted but the card
                does not allow it.
            CardSyncError: If talking to the card failed.
        """
        self.copy_start_time = datetime.now()
        self.copied_count = 0

        if not self.catalog.has_to_be_copied():
            self.status = Status.NO_FILE_TO_BE_COPIED
            return

        self.status = Status.COPYING
        scope = self._open_scope()
        try:
            if self.card.can_get_cid and await self.client.get_cid(scope) != self.card.cid:
                raise CardChangedError()

            if self.config.delete_on_copy and self.card.can_get_upload:
                self.card.upload = await self.client.get_upload_params(scope)
                if self.card.is_upload_disabled:
                    raise UploadDisabledError()

            while True:
                scope.raise_if_cancelled()
                entry = self.catalog.next_to_be_copied()
                if entry is None:
                    break

                await self._copy_entry(entry, progress, scope)

                if self.config.delete_on_copy and self.storage.is_copied(entry):
                    await self.client.delete_file(entry.path, scope)

            seconds = int((datetime.now() - self.copy_start_time).total_seconds())
            self.status = Status.COPY_COMPLETED.format(count=self.copied_count, seconds=seconds)
        finally:
            self.selected = None
            scope.close()

    async def _copy_entry(
        self,
        entry: FileEntry,
        progress: ProgressCallback | None,
        scope: CancelScope,
    ) -> None:
        entry.status = FileStatus.COPYING
        self.selected = entry
        try:
            self.storage.ensure_directory(entry)
            data = await self.client.download_file(entry.path, entry.size, progress, self.card, scope)
            await asyncio.to_thread(self._save, entry, data)

            self.current_entry = entry
            self.current_data = data

            if not entry.has_thumbnail:
                try:
                    if entry.can_read_exif:
                        entry.thumbnail = await asyncio.to_thread(imaging.read_thumbnail, data)
                    elif entry.can_load_data_local:
                        entry.thumbnail = await asyncio.to_thread(imaging.create_thumbnail, data)
                except ImageNotSupportedError:
                    entry.can_load_data_local = False

            entry.copied_time = datetime.now()
            entry.is_alive_local = True
            entry.status = FileStatus.COPIED
            self.copied_count += 1
            logger.info(f"Copied {entry.path} ({entry.size} bytes)")
        except RemoteFileNotFoundError:
            logger.warning(f"{entry.path} is gone from the card")
            entry.is_alive_remote = False
            entry.status = FileStatus.NOT_COPIED
        except RemoteFileInvalidError as e:
            logger.warning(f"{entry.path} is invalid: {e}")
            entry.status = FileStatus.WEIRD
        except BaseException:
            entry.status = FileStatus.TO_BE_COPIED
            raise

    def _save(self, entry: FileEntry, data: bytes) -> None:
        self.storage.write_bytes(entry, data)
        taken = None
        if entry.can_read_exif:
            try:
                taken = imaging.read_exif_date(data)
            except ImageNotSupportedError:
                taken = None
        self.storage.set_file_times(entry, taken or entry.date)

    # === Helpers ===

    async def _is_ready(self) -> bool:
        if self.checker is not None and not await self.checker.is_network_connected():
            self.status = Status.NO_NETWORK
            return False
        if not self.config.has_target_dates:
            self.status = Status.NO_DATE_SELECTED
            return False
        return True

    def _open_scope(self) -> CancelScope:
        self._scope = CancelScope()
        return self._scope

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _read_cancellable(self, entry: FileEntry, scope: CancelScope) -> bytes:
        read = asyncio.ensure_future(asyncio.to_thread(self.storage.read_bytes, entry))
        cancelled = asyncio.ensure_future(scope.wait())
        try:
            await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
        if read.done():
            return read.result()
        read.cancel()
        raise OperationCancelled(path=entry.path)

    async def _guard(self, action: str, work: Callable[[], Awaitable[None]]) -> bool:
        """Run work and turn failures into a status.

        Returns:
            True if work completed, False if it was stopped or failed.

        Raises:
            UnexpectedError: If work failed for an unclassified reason.
        """
        try:
            await work()
            return True
        except OperationCancelled:
            self.status = Status.STOPPED
        except PermissionError as e:
            logger.error(f"Failed to {action}: {e}")
            self.status = Status.UNAUTHORIZED_ACCESS
        except CardSyncError as e:
            self.status = STATUS_BY_KIND[e.kind]
            if e.kind is ErrorKind.UNEXPECTED:
                logger.exception(f"Failed to {action}")
                raise
            logger.warning(f"Failed to {action}: {e}")
        except Exception as e:
            self.status = Status.ERROR
            logger.exception(f"Failed to {action}")
            raise UnexpectedError(f"Failed to {action}.") from e
        return False
