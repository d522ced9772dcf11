"""Identity and capabilities of the card currently answering.

This module provides:
- CardIdentity: Firmware version, CID and SSID with change tracking
- parse_version: Extract the version number from a firmware string
"""

from __future__ import annotations

import re

# Version number at the end of a firmware string, e.g. "F24A6W3AW1.00.03"
VERSION_PATTERN = re.compile(r"[1-9]\.\d{2}\.\d{2}$")

CID_MIN_VERSION = (1, 0, 3)
WRITE_TIMESTAMP_MIN_VERSION = (2, 0, 2)
UPLOAD_MIN_VERSION = (2, 0, 2)

THUMBNAIL_FAILED_PATHS_MAX = 3


def parse_version(firmware: str | None) -> tuple[int, int, int] | None:
    """Find the version number in a firmware version string.

    Args:
        firmware: Firmware version string reported by the card.

    Returns:
        (major, minor, patch) or None if no version number is found.
    """
    if not firmware or not firmware.strip():
        return None
    match = VERSION_PATTERN.search(firmware)
    if not match:
        return None
    major, minor, patch = match.group(0).split(".")
    return int(major), int(minor), int(patch)


class CardIdentity:
    """Information about the card.

    Checking not only the CID but also the firmware version and SSID covers
    cards whose firmware is too old to answer a CID request. If two such
    cards share firmware version and SSID, a swap cannot be detected.
    Read firmware version, CID and SSID in that order before consulting
    is_changed, since CID support depends on the firmware version.
    """

    def __init__(self) -> None:
        self._firmware_version: str | None = None
        self._version: tuple[int, int, int] | None = None
        self._firmware_changed = False

        self._cid: str | None = None
        self._cid_changed = False

        self._ssid: str | None = None
        self._ssid_changed = False

        self.is_wireless_connected = False
        self.write_timestamp = -1
        self.upload: str | None = None

        self._thumbnail_failed_paths: list[str] = []

    @property
    def is_changed(self) -> bool | None:
        """Whether the card has changed since the previous reading.

        Returns:
            True if changed, False if not, None if a change cannot be detected.
        """
        if self._firmware_changed or self._ssid_changed:
            return True
        return self._cid_changed if self.can_get_cid else None

    # === Firmware version ===

    @property
    def firmware_version(self) -> str | None:
        """Firmware version string."""
        return self._firmware_version

    @firmware_version.setter
    def firmware_version(self, value: str | None) -> None:
        self._firmware_changed = self._firmware_version != value
        if not self._firmware_changed:
            return
        self._firmware_version = value
        self._version = parse_version(value)

    def _is_at_least(self, required: tuple[int, int, int]) -> bool:
        return self._version is not None and self._version >= required

    # === CID/SSID ===

    @property
    def can_get_cid(self) -> bool:
        """Whether the firmware answers CID requests (1.00.03 or newer)."""
        return self._is_at_least(CID_MIN_VERSION)

    @property
    def cid(self) -> str | None:
        """Card identification register."""
        return self._cid

    @cid.setter
    def cid(self, value: str | None) -> None:
        self._cid_changed = self._cid != value
        if self._cid_changed:
            self._cid = value

    @property
    def ssid(self) -> str | None:
        """SSID of the card's wireless network."""
        return self._ssid

    @ssid.setter
    def ssid(self, value: str | None) -> None:
        self._ssid_changed = self._ssid != value
        if self._ssid_changed:
            self._ssid = value

    # === Write event time stamp ===

    @property
    def can_get_write_timestamp(self) -> bool:
        """Whether the firmware reports write event time stamps (2.00.02+)."""
        return self._is_at_least(WRITE_TIMESTAMP_MIN_VERSION)

    # === Thumbnail ===

    @property
    def thumbnail_failed_paths(self) -> tuple[str, ...]:
        """Paths for which the card failed to provide a thumbnail."""
        return tuple(self._thumbnail_failed_paths)

    def add_thumbnail_failed_path(self, path: str) -> None:
        """Record a path for which getting a thumbnail failed."""
        if path not in self._thumbnail_failed_paths:
            self._thumbnail_failed_paths.append(path)

    @property
    def can_get_thumbnail(self) -> bool:
        """Whether remote thumbnails are still worth requesting."""
        return len(self._thumbnail_failed_paths) < THUMBNAIL_FAILED_PATHS_MAX

    # === Upload ===

    @property
    def can_get_upload(self) -> bool:
        """Whether the firmware reports upload parameters (2.00.02+)."""
        return self._is_at_least(UPLOAD_MIN_VERSION)

    @property
    def is_upload_disabled(self) -> bool:
        """Whether upload.cgi is disabled.

        False does not always mean upload.cgi is enabled: upload parameters
        are reported only by newer firmware, so there is no direct way to
        confirm it.
        """
        if not self.can_get_upload or not self.upload or not self.upload.strip():
            return False
        # "1" means uploading is enabled, anything else disabled.
        return self.upload != "1"
