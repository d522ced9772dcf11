"""File entries listed on the card.

This module provides:
- FileStatus: Lifecycle state of a file
- FileEntry: A remote file and what is known about its local copy
- parse_fat_datetime: Decode the packed date/time fields of a listing line
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath

# Attribute bits of a listing line
ATTR_HIDDEN = 0x02
ATTR_SYSTEM = 0x04
ATTR_VOLUME = 0x08
ATTR_DIRECTORY = 0x10
ATTR_ARCHIVE = 0x20

IMAGE_EXTENSIONS = frozenset({
    ".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff", ".gif",
    ".raw", ".arw", ".cr2", ".cr3", ".dng", ".nef", ".orf", ".pef", ".raf", ".rw2", ".srw",
})
EXIF_EXTENSIONS = frozenset({".jpg", ".jpeg"})
LOADABLE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff", ".gif"})

# Folders the card keeps for itself: (directory, name)
CARD_SYSTEM_FOLDERS = frozenset({("", "SD_WLAN"), ("/DCIM", "100__TSB")})

FAT_EPOCH = datetime(1980, 1, 1)


class FileStatus(Enum):
    """Lifecycle state of a file entry."""

    NOT_COPIED = "not_copied"
    TO_BE_COPIED = "to_be_copied"
    COPYING = "copying"
    COPIED = "copied"
    WEIRD = "weird"  # Data length did not match the listed size
    RECYCLED = "recycled"  # Deleted on the card, local copy moved to recycle


def parse_fat_datetime(date_value: int, time_value: int) -> datetime:
    """Decode FAT-packed date and time values.

    Args:
        date_value: bits 15-9 year since 1980, 8-5 month, 4-0 day.
        time_value: bits 15-11 hour, 10-5 minute, 4-0 seconds / 2.

    Returns:
        The decoded datetime, or 1980-01-01 if the values are not a valid date.
    """
    year = 1980 + ((date_value >> 9) & 0x7F)
    month = (date_value >> 5) & 0x0F
    day = date_value & 0x1F
    hour = (time_value >> 11) & 0x1F
    minute = (time_value >> 5) & 0x3F
    second = (time_value & 0x1F) * 2
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return FAT_EPOCH


def _normalize_directory(directory: str) -> str:
    directory = directory.strip().rstrip("/")
    if directory and not directory.startswith("/"):
        directory = "/" + directory
    return directory


@dataclass(eq=False)
class FileEntry:
    """A file (or directory) listed on the card.

    Entries are identified by their remote path. Flags describing the local
    copy are filled in by the catalog and the orchestrator.
    """

    directory: str
    name: str
    size: int
    attributes: int = 0
    date: datetime = FAT_EPOCH

    status: FileStatus = FileStatus.NOT_COPIED
    is_alive_remote: bool = False
    is_alive_local: bool = False
    is_target: bool = True
    can_get_thumbnail_remote: bool = field(default=True)
    can_load_data_local: bool = field(default=True)
    thumbnail: bytes | None = field(default=None, repr=False)
    copied_time: datetime | None = None

    def __post_init__(self) -> None:
        self.directory = _normalize_directory(self.directory)
        ext = self.extension
        self.can_get_thumbnail_remote = self.can_get_thumbnail_remote and ext in EXIF_EXTENSIONS
        self.can_load_data_local = self.can_load_data_local and ext in LOADABLE_EXTENSIONS

    @classmethod
    def parse(cls, line: str, directory: str) -> FileEntry | None:
        """Parse one line of a file listing.

        Format: DIRECTORY,NAME,SIZE,ATTRIBUTE,DATE,TIME. A name may itself
        contain commas, so the known directory is stripped first and the
        numeric fields are taken from the right.

        Args:
            line: Listing line.
            directory: Directory that was listed.

        Returns:
            FileEntry, or None if the line is not a file entry.
        """
        line = line.strip()
        if not line:
            return None

        directory = _normalize_directory(directory)
        rest: str | None = None
        for prefix in (directory, directory + "/", "/" if not directory else None):
            if prefix is not None and line.startswith(prefix + ","):
                rest = line[len(prefix) + 1:]
                break
        if rest is None:
            if "," not in line:
                return None
            directory, rest = line.split(",", 1)

        parts = rest.rsplit(",", 4)
        if len(parts) != 5 or not parts[0]:
            return None
        name, size, attributes, date_value, time_value = parts
        try:
            return cls(
                directory=directory,
                name=name,
                size=int(size),
                attributes=int(attributes),
                date=parse_fat_datetime(int(date_value), int(time_value)),
            )
        except ValueError:
            return None

    # === Identity ===

    @property
    def path(self) -> str:
        """Remote path of the file."""
        return f"{self.directory}/{self.name}"

    @property
    def signature(self) -> str:
        """Value identifying the same file across listings."""
        return f"{self.path}|{self.size}|{self.date:%Y%m%d%H%M%S}"

    @property
    def sort_key(self) -> tuple[str, str, datetime]:
        """Catalog ordering: directory, then name, then date."""
        return (self.directory, self.name, self.date)

    @property
    def extension(self) -> str:
        """Lower-cased file extension including the dot."""
        return PurePosixPath(self.name).suffix.lower()

    # === Attributes ===

    @property
    def is_hidden(self) -> bool:
        return bool(self.attributes & ATTR_HIDDEN)

    @property
    def is_system_file(self) -> bool:
        return bool(self.attributes & ATTR_SYSTEM)

    @property
    def is_volume(self) -> bool:
        return bool(self.attributes & ATTR_VOLUME)

    @property
    def is_directory(self) -> bool:
        return bool(self.attributes & ATTR_DIRECTORY)

    @property
    def is_card_system_folder(self) -> bool:
        """Whether this is a folder the card keeps for itself."""
        return self.is_directory and (self.directory, self.name) in CARD_SYSTEM_FOLDERS

    @property
    def is_image(self) -> bool:
        return self.extension in IMAGE_EXTENSIONS

    @property
    def can_read_exif(self) -> bool:
        """Whether Exif metadata (date taken, thumbnail) can be read."""
        return self.extension in EXIF_EXTENSIONS

    # === State ===

    @property
    def is_sample(self) -> bool:
        """Placeholder entries carry no data."""
        return self.size == 0

    @property
    def has_thumbnail(self) -> bool:
        return self.thumbnail is not None

    @property
    def is_eligible(self) -> bool:
        """Whether this file may be copied."""
        return (
            self.is_target
            and self.is_alive_remote
            and self.status in (FileStatus.NOT_COPIED, FileStatus.TO_BE_COPIED)
        )

    def __repr__(self) -> str:
        return f"FileEntry({self.path!r}, size={self.size}, status={self.status.name})"
