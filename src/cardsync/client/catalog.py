"""Ordered collection of file entries known for the current card.

This module provides:
- FileCatalog: Entries sorted by directory, name and date, one per path
- CatalogProgress: Overall and current-run copy progress
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta

from cardsync.client.entry import FileEntry, FileStatus
from cardsync.client.transfer import ProgressInfo

logger = logging.getLogger(__name__)


@dataclass
class CatalogProgress:
    """Copy progress aggregated over the catalog.

    Attributes:
        copied_all: Percent of all non-recycled bytes copied.
        copied_current: Percent of bytes copied in the current run.
        remaining: Estimated time left for the current run.
    """

    copied_all: float = 0.0
    copied_current: float = 0.0
    remaining: timedelta = timedelta(0)


class FileCatalog:
    """Entries of the card, kept in sorted order.

    The catalog is mutated by the orchestrator only. Reading it from a
    progress observer between awaits is safe.
    """

    def __init__(self, entries: Iterable[FileEntry] = ()) -> None:
        self._entries: list[FileEntry] = []
        self._by_path: dict[str, FileEntry] = {}
        for entry in entries:
            self.insert(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FileEntry]:
        return iter(list(self._entries))

    def __contains__(self, path: object) -> bool:
        return path in self._by_path

    def __getitem__(self, index: int) -> FileEntry:
        return self._entries[index]

    def get(self, path: str) -> FileEntry | None:
        """Get the entry for a remote path."""
        return self._by_path.get(path)

    def insert(self, entry: FileEntry) -> int:
        """Insert an entry at its sorted position.

        Args:
            entry: Entry to insert.

        Returns:
            Position of the inserted entry.

        Raises:
            ValueError: If an entry with the same path is already present.
        """
        if entry.path in self._by_path:
            raise ValueError(f"Duplicate path in catalog: {entry.path}")
        index = bisect.bisect_right(self._entries, entry.sort_key, key=lambda e: e.sort_key)
        self._entries.insert(index, entry)
        self._by_path[entry.path] = entry
        return index

    def remove(self, entry: FileEntry) -> None:
        """Remove an entry."""
        self._entries.remove(entry)
        del self._by_path[entry.path]

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()
        self._by_path.clear()

    # === Check phase ===

    def merge(
        self,
        listing: Iterable[FileEntry],
        is_copied_local: Callable[[FileEntry], bool],
    ) -> list[FileEntry]:
        """Merge a fresh remote listing into the catalog.

        Args:
            listing: Entries listed on the card.
            is_copied_local: Whether a local copy of an entry exists with
                matching size.

        Returns:
            Entries inserted by this merge.
        """
        incoming: dict[str, FileEntry] = {}
        for entry in listing:
            incoming.setdefault(entry.path, entry)

        for old in list(self._entries):
            new = incoming.get(old.path)
            if new is None:
                old.is_alive_remote = False
                continue
            if new.size == old.size:
                del incoming[old.path]
                old.is_alive_remote = True
                old.is_alive_local = is_copied_local(old)
                old.status = FileStatus.COPIED if old.is_alive_local else FileStatus.NOT_COPIED
                continue
            # Same path with different content: the new listing wins
            logger.debug(f"Size of {old.path} changed from {old.size} to {new.size}")
            self.remove(old)

        added = []
        for new in incoming.values():
            new.is_alive_remote = True
            new.is_alive_local = is_copied_local(new)
            new.status = FileStatus.COPIED if new.is_alive_local else FileStatus.NOT_COPIED
            self.insert(new)
            added.append(new)

        if added:
            logger.info(f"Found {len(added)} new file(s) on the card")
        return added

    def reconcile_deletions(self, retain_recycled: bool) -> list[FileEntry]:
        """Handle entries whose remote file has disappeared.

        Args:
            retain_recycled: Keep copied entries as RECYCLED instead of
                dropping them.

        Returns:
            Entries that became RECYCLED, whose local files are to be moved
            to the recycle folder.
        """
        recycled = []
        for entry in list(self._entries):
            if entry.is_alive_remote or entry.status == FileStatus.RECYCLED:
                continue
            if retain_recycled and entry.status == FileStatus.COPIED:
                entry.status = FileStatus.RECYCLED
                recycled.append(entry)
                continue
            self.remove(entry)
            logger.debug(f"Removed {entry.path} (deleted on the card)")
        return recycled

    def apply_filter(self, predicate: Callable[[FileEntry], bool]) -> None:
        """Set is_target of every entry."""
        for entry in self._entries:
            entry.is_target = predicate(entry)

    # === Queries ===

    @property
    def has_samples(self) -> bool:
        """Check if the catalog holds placeholder entries."""
        return any(entry.is_sample for entry in self._entries)

    def shares_signature_with(self, listing: Iterable[FileEntry]) -> bool:
        """Check if any listed entry matches an entry of the catalog."""
        signatures = {entry.signature for entry in self._entries}
        return any(entry.signature in signatures for entry in listing)

    @property
    def is_thumbnail_filled(self) -> bool:
        """Check if every target entry has the thumbnail it can get."""
        return all(
            entry.has_thumbnail
            or (
                not (entry.is_alive_remote and entry.can_get_thumbnail_remote)
                and not (entry.is_alive_local and entry.can_load_data_local)
            )
            for entry in self._entries
            if entry.is_target and not entry.is_sample
        )

    def mark_to_be_copied(self, change: bool = True) -> bool:
        """Find eligible entries that have not been copied.

        Args:
            change: Also set their status to TO_BE_COPIED.

        Returns:
            True if any such entry exists.
        """
        found = False
        for entry in self._entries:
            if entry.is_target and entry.is_alive_remote and entry.status == FileStatus.NOT_COPIED:
                found = True
                if change:
                    entry.status = FileStatus.TO_BE_COPIED
        return found

    def has_to_be_copied(self) -> bool:
        """Check if any target entry waits for copying."""
        return self.next_to_be_copied() is not None

    def next_to_be_copied(self) -> FileEntry | None:
        """Get the first target entry waiting for copying, in catalog order."""
        for entry in self._entries:
            if entry.is_target and entry.status == FileStatus.TO_BE_COPIED:
                return entry
        return None

    def progress(self, info: ProgressInfo | None, copy_start: datetime | None) -> CatalogProgress:
        """Aggregate copy progress over the catalog.

        Args:
            info: Progress of the file being copied, if any.
            copy_start: When the current copy run started.

        Returns:
            CatalogProgress for display.
        """
        latest = info.current if info else 0
        elapsed = info.elapsed if info else timedelta(0)
        result = CatalogProgress()

        size_total = sum(e.size for e in self._entries if e.status != FileStatus.RECYCLED)
        size_copied = sum(e.size for e in self._entries if e.status == FileStatus.COPIED)
        if size_total:
            result.copied_all = (size_copied + latest) * 100.0 / size_total

        size_copied_current = sum(
            e.size
            for e in self._entries
            if e.status == FileStatus.COPIED
            and copy_start is not None
            and e.copied_time is not None
            and e.copied_time > copy_start
        )
        size_to_be_copied = sum(
            e.size
            for e in self._entries
            if e.status in (FileStatus.TO_BE_COPIED, FileStatus.COPYING)
        )
        if size_to_be_copied and latest > 0:
            result.copied_current = (
                (size_copied_current + latest) * 100.0 / (size_copied_current + size_to_be_copied)
            )
            result.remaining = timedelta(
                seconds=(size_to_be_copied - latest) * elapsed.total_seconds() / latest
            )
        return result
