"""Local storage of copied files.

This module provides:
- LocalStorage: Where copied files live and how they are written
"""

from __future__ import annotations

import contextlib
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cardsync.client.entry import FileEntry
    from cardsync.core.config import CardConfig

logger = logging.getLogger(__name__)

DATE_FOLDER_FORMAT = "%Y%m%d"


class LocalStorage:
    """Local folder holding copied files, one subfolder per date."""

    def __init__(self, config: CardConfig) -> None:
        self.config = config

    def compose_path(self, entry: FileEntry) -> Path:
        """Compose the local path of a file.

        Args:
            entry: File entry.

        Returns:
            {local_folder}/{YYYYMMDD}/{name}

        Raises:
            ValueError: If the entry has no name.
        """
        name = entry.name.strip()
        if not name:
            raise ValueError(f"Entry has no file name: {entry.path}")
        if self.config.makes_extension_lowercase:
            stem, dot, ext = name.rpartition(".")
            if dot and stem:
                name = f"{stem}.{ext.lower()}"
        return self.config.local_folder / entry.date.strftime(DATE_FOLDER_FORMAT) / name

    def is_copied(self, entry: FileEntry) -> bool:
        """Check if a local copy exists with the listed size."""
        path = self.compose_path(entry)
        try:
            return path.is_file() and path.stat().st_size == entry.size
        except OSError:
            return False

    def ensure_directory(self, entry: FileEntry) -> Path:
        """Create the folder of a file's local path if needed.

        Returns:
            The local path of the file.
        """
        path = self.compose_path(entry)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def write_bytes(self, entry: FileEntry, data: bytes) -> Path:
        """Write a copied file.

        Writes to a temporary file, then renames it to the final path, so no
        partial file is left behind if writing is interrupted.

        Returns:
            The local path written.
        """
        path = self.ensure_directory(entry)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except Exception:
            if tmp_path.exists():
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise
        logger.debug(f"Wrote {len(data)} bytes to {path}")
        return path

    def read_bytes(self, entry: FileEntry) -> bytes:
        """Read a copied file.

        Raises:
            FileNotFoundError: If there is no local copy.
        """
        return self.compose_path(entry).read_bytes()

    def set_file_times(self, entry: FileEntry, when: datetime) -> None:
        """Set access and modification times of a copied file."""
        timestamp = when.timestamp()
        os.utime(self.compose_path(entry), (timestamp, timestamp))

    def move_to_recycle(self, entries: list[FileEntry]) -> list[Path]:
        """Move local copies into the recycle folder.

        Files that no longer exist locally are skipped.

        Returns:
            Paths of the moved files inside the recycle folder.
        """
        moved = []
        for entry in entries:
            source = self.compose_path(entry)
            if not source.is_file():
                continue
            target = self.config.recycle_folder / source.relative_to(self.config.local_folder)
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
            logger.info(f"Moved {source} to recycle folder")
            moved.append(target)
        return moved
