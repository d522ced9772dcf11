"""Tests for the file catalog."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from cardsync.client.catalog import FileCatalog
from cardsync.client.entry import FileEntry, FileStatus
from cardsync.client.transfer import ProgressInfo


def entry(path: str, size: int = 100, when: datetime | None = None) -> FileEntry:
    directory, _, name = path.rpartition("/")
    return FileEntry(directory=directory, name=name, size=size, date=when or datetime(2024, 5, 1))


def listing(*paths: str) -> list[FileEntry]:
    return [entry(p) for p in paths]


def never_copied(_: FileEntry) -> bool:
    return False


class TestInsert:
    """Tests for sorted insertion."""

    def test_sorted_position(self) -> None:
        """Should insert at the sorted position."""
        catalog = FileCatalog()
        catalog.insert(entry("/DCIM/101/A.JPG"))
        catalog.insert(entry("/DCIM/100/B.JPG"))
        catalog.insert(entry("/DCIM/100/A.JPG"))

        assert [e.path for e in catalog] == [
            "/DCIM/100/A.JPG",
            "/DCIM/100/B.JPG",
            "/DCIM/101/A.JPG",
        ]

    def test_duplicate_path_rejected(self) -> None:
        """Should hold at most one entry per path."""
        catalog = FileCatalog([entry("/DCIM/A.JPG")])
        with pytest.raises(ValueError):
            catalog.insert(entry("/DCIM/A.JPG", size=5))


class TestMerge:
    """Tests for merging a listing into the catalog."""

    def test_new_entries(self) -> None:
        """Should insert every new entry as alive and not copied."""
        catalog = FileCatalog()

        added = catalog.merge(listing("/DCIM/A.JPG", "/DCIM/B.JPG"), never_copied)

        assert [e.path for e in added] == ["/DCIM/A.JPG", "/DCIM/B.JPG"]
        assert all(e.is_alive_remote for e in catalog)
        assert all(e.status == FileStatus.NOT_COPIED for e in catalog)

    def test_copied_locally(self) -> None:
        """Should mark entries with a local copy as copied."""
        catalog = FileCatalog()

        catalog.merge(listing("/DCIM/A.JPG"), lambda e: True)

        assert catalog[0].status == FileStatus.COPIED
        assert catalog[0].is_alive_local

    def test_idempotent(self) -> None:
        """Should add nothing and change no status on an unchanged listing."""
        catalog = FileCatalog()
        copied = {"/DCIM/B.JPG"}
        is_copied = lambda e: e.path in copied  # noqa: E731

        catalog.merge(listing("/DCIM/A.JPG", "/DCIM/B.JPG"), is_copied)
        before = [(e.path, e.status, e.is_alive_remote, e.is_alive_local) for e in catalog]
        kept = list(catalog)

        added = catalog.merge(listing("/DCIM/B.JPG", "/DCIM/A.JPG"), is_copied)

        assert added == []
        assert [(e.path, e.status, e.is_alive_remote, e.is_alive_local) for e in catalog] == before
        assert all(a is b for a, b in zip(kept, catalog, strict=True))

    def test_missing_marked_not_alive(self) -> None:
        """Should mark entries missing from the listing as not alive remote."""
        catalog = FileCatalog()
        catalog.merge(listing("/DCIM/A.JPG", "/DCIM/B.JPG"), never_copied)

        catalog.merge(listing("/DCIM/A.JPG"), never_copied)

        assert catalog.get("/DCIM/A.JPG").is_alive_remote
        assert not catalog.get("/DCIM/B.JPG").is_alive_remote

    def test_size_change_replaces(self) -> None:
        """Should replace an entry whose size changed."""
        catalog = FileCatalog()
        catalog.merge([entry("/DCIM/A.JPG", size=100)], never_copied)

        added = catalog.merge([entry("/DCIM/A.JPG", size=200)], never_copied)

        assert len(catalog) == 1
        assert added[0].size == 200
        assert catalog.get("/DCIM/A.JPG").size == 200


class TestReconcileDeletions:
    """Tests for handling files deleted on the card."""

    def make_catalog(self) -> FileCatalog:
        catalog = FileCatalog()
        catalog.merge(listing("/DCIM/A.JPG", "/DCIM/B.JPG"), lambda e: e.name == "A.JPG")
        catalog.merge([], never_copied)
        return catalog

    def test_retain_copied_as_recycled(self) -> None:
        """Should keep copied entries as recycled when retention is on."""
        catalog = self.make_catalog()

        recycled = catalog.reconcile_deletions(retain_recycled=True)

        assert [e.path for e in recycled] == ["/DCIM/A.JPG"]
        assert [e.path for e in catalog] == ["/DCIM/A.JPG"]
        assert catalog[0].status == FileStatus.RECYCLED

    def test_drop_without_retention(self) -> None:
        """Should drop every deleted entry when retention is off."""
        catalog = self.make_catalog()

        recycled = catalog.reconcile_deletions(retain_recycled=False)

        assert recycled == []
        assert len(catalog) == 0

    def test_invariant_after_merge_and_reconcile(self) -> None:
        """Should leave only alive, copied or recycled entries."""
        catalog = FileCatalog()
        catalog.merge(listing("/DCIM/A.JPG", "/DCIM/B.JPG", "/DCIM/C.JPG"), lambda e: e.name == "A.JPG")
        catalog.get("/DCIM/C.JPG").status = FileStatus.WEIRD

        catalog.merge(listing("/DCIM/B.JPG"), lambda e: False)
        catalog.reconcile_deletions(retain_recycled=True)

        for e in catalog:
            assert e.is_alive_remote or e.status in (FileStatus.COPIED, FileStatus.RECYCLED)
        assert catalog.get("/DCIM/C.JPG") is None


class TestQueries:
    """Tests for catalog queries."""

    def test_mark_to_be_copied(self) -> None:
        """Should mark eligible not-copied entries."""
        catalog = FileCatalog()
        catalog.merge(listing("/DCIM/A.JPG", "/DCIM/B.JPG"), lambda e: e.name == "A.JPG")

        assert catalog.mark_to_be_copied(change=False) is True
        assert catalog.get("/DCIM/B.JPG").status == FileStatus.NOT_COPIED

        assert catalog.mark_to_be_copied() is True
        assert catalog.get("/DCIM/B.JPG").status == FileStatus.TO_BE_COPIED
        assert catalog.next_to_be_copied() is catalog.get("/DCIM/B.JPG")

    def test_filter_excludes(self) -> None:
        """Should not mark entries outside the target filter."""
        catalog = FileCatalog()
        catalog.merge(listing("/DCIM/A.JPG"), never_copied)
        catalog.apply_filter(lambda e: False)

        assert catalog.mark_to_be_copied() is False
        assert catalog.next_to_be_copied() is None

    def test_samples_and_signatures(self) -> None:
        """Should detect samples and shared signatures."""
        catalog = FileCatalog([FileEntry(directory="/DCIM", name="SAMPLE.JPG", size=0)])
        assert catalog.has_samples

        catalog = FileCatalog(listing("/DCIM/A.JPG"))
        assert catalog.shares_signature_with(listing("/DCIM/A.JPG", "/DCIM/B.JPG"))
        assert not catalog.shares_signature_with(listing("/DCIM/B.JPG"))

    def test_progress(self) -> None:
        """Should aggregate progress over copied and pending entries."""
        start = datetime.now()
        catalog = FileCatalog()
        catalog.merge(listing("/DCIM/A.JPG", "/DCIM/B.JPG"), lambda e: e.name == "A.JPG")
        catalog.get("/DCIM/A.JPG").copied_time = start + timedelta(seconds=1)
        catalog.get("/DCIM/B.JPG").status = FileStatus.COPYING

        progress = catalog.progress(
            ProgressInfo(current=50, total=100, elapsed=timedelta(seconds=5)), start
        )

        assert progress.copied_all == pytest.approx(75.0)
        assert progress.copied_current == pytest.approx(150 * 100 / 200)
        assert progress.remaining == timedelta(seconds=5)
