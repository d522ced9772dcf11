"""Configuration for a card synchronization session.

This module defines the configuration value that is handed to the
orchestrator and threaded down to the protocol client at construction.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cardsync.client.entry import FileEntry

DEFAULT_REMOTE_ROOT = "http://flashair/"
DEFAULT_LOCAL_FOLDER_NAME = "FlashAirImages"
RECYCLE_FOLDER_NAME = ".recycle"

_ROOT_PATTERN = re.compile(r"^https?://.+/$")


class TargetPeriod(Enum):
    """Which files (by date) are targets of copying."""

    ALL = "all"
    TODAY = "today"
    SELECT = "select"


def default_local_folder() -> Path:
    """Get the default local folder (~/Pictures/FlashAirImages)."""
    return Path.home() / "Pictures" / DEFAULT_LOCAL_FOLDER_NAME


@dataclass
class CardConfig:
    """Configuration for synchronizing one card.

    Attributes:
        remote_root: Base URL of the card (must match http(s)://.../).
        local_folder: Folder where copied files are stored.
        target_period: Which files are targets of copying.
        target_dates: Dates selected when target_period is SELECT.
        delete_on_copy: Delete the remote file after it has been copied.
        moves_file_to_recycle: Move local copies of files deleted on the card
            to the recycle folder instead of forgetting them.
        makes_extension_lowercase: Lower-case the extension of local files.
        auto_check_interval: Seconds between auto checks.
        timeout: Seconds to wait for response headers or for each body read.
        monitor_interval: Seconds between network liveness checks.
        max_attempts: Attempts per request when the card cannot be reached.
        retry_delay: Seconds to wait between attempts.
    """

    remote_root: str = DEFAULT_REMOTE_ROOT
    local_folder: Path = field(default_factory=default_local_folder)
    target_period: TargetPeriod = TargetPeriod.ALL
    target_dates: frozenset[date] = frozenset()
    delete_on_copy: bool = False
    moves_file_to_recycle: bool = False
    makes_extension_lowercase: bool = True
    auto_check_interval: float = 30.0
    timeout: float = 10.0
    monitor_interval: float = 2.0
    max_attempts: int = 3
    retry_delay: float = 0.5

    def __post_init__(self) -> None:
        """Normalize and validate fields."""
        if not self.remote_root.endswith("/"):
            self.remote_root += "/"
        if not _ROOT_PATTERN.match(self.remote_root):
            raise ValueError(f"Invalid remote root: {self.remote_root!r}")
        self.local_folder = Path(self.local_folder).expanduser()
        self.target_dates = frozenset(self.target_dates)
        if self.auto_check_interval <= 0:
            raise ValueError("auto_check_interval must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @property
    def recycle_folder(self) -> Path:
        """Folder receiving local copies of files deleted on the card."""
        return self.local_folder / RECYCLE_FOLDER_NAME

    @property
    def remote_host(self) -> str:
        """Host name of the card."""
        return self.remote_root.split("://", 1)[1].split("/", 1)[0].split(":", 1)[0]

    @property
    def remote_port(self) -> int:
        """TCP port of the card."""
        netloc = self.remote_root.split("://", 1)[1].split("/", 1)[0]
        if ":" in netloc:
            return int(netloc.rsplit(":", 1)[1])
        return 443 if self.remote_root.startswith("https://") else 80

    @property
    def has_target_dates(self) -> bool:
        """Check if the date selection allows any file at all."""
        return self.target_period != TargetPeriod.SELECT or bool(self.target_dates)

    def is_target(self, entry: FileEntry) -> bool:
        """Check if a file is a target of copying under the current period.

        Args:
            entry: File entry to test.

        Returns:
            True if the file's date falls within the target period.
        """
        if self.target_period == TargetPeriod.ALL:
            return True
        if self.target_period == TargetPeriod.TODAY:
            return entry.date.date() == date.today()
        return entry.date.date() in self.target_dates
