"""Shared types for check and copy operations.

This module provides:
- OperationState: What the orchestrator is doing
- Status: Status texts reported to the status sink
- STATUS_BY_KIND: Status text for every failure kind
"""

from __future__ import annotations

from enum import Enum, auto

from cardsync.client.errors import ErrorKind


class OperationState(Enum):
    """State of the orchestrator."""

    IDLE = auto()
    CHECKING = auto()
    COPYING = auto()
    CHECKING_AND_COPYING = auto()
    AUTO_WAITING = auto()


class Status:
    """Status texts."""

    CHECKING = "Checking files..."
    CHECK_COMPLETED = "Check completed."
    COPYING = "Copying files..."
    COPY_COMPLETED = "Copied {count} file(s) in {seconds} sec."
    NO_FILE_TO_BE_COPIED = "No file to be copied."
    COMPLETED = "Completed."
    STOPPED = "Stopped."
    WAITING_AUTO_CHECK = "Waiting for auto check..."
    NO_NETWORK = "Network is not available."
    NO_DATE_SELECTED = "No date is selected."
    CONNECTION_UNABLE = "Unable to connect to the card."
    CONNECTION_LOST = "Connection to the card was lost."
    TIMED_OUT = "Connection to the card timed out."
    UNAUTHORIZED_ACCESS = "Access to the local folder is denied."
    NOT_SAME_CARD = "A different card is present. Please check again."
    DELETE_DISABLED = "Deletion is disabled on the card (upload.cgi)."
    DELETE_FAILED = "Failed to delete a file on the card."
    REMOTE_FILE_NOT_FOUND = "A file was not found on the card."
    REMOTE_FILE_INVALID = "A file on the card is corrupt."
    THUMBNAIL_UNAVAILABLE = "A thumbnail is not available."
    ERROR = "An error occurred."


STATUS_BY_KIND: dict[ErrorKind, str] = {
    ErrorKind.CONNECTION_UNABLE: Status.CONNECTION_UNABLE,
    ErrorKind.CONNECTION_LOST: Status.CONNECTION_LOST,
    ErrorKind.REMOTE_FILE_NOT_FOUND: Status.REMOTE_FILE_NOT_FOUND,
    ErrorKind.REMOTE_FILE_INVALID: Status.REMOTE_FILE_INVALID,
    ErrorKind.THUMBNAIL_UNAVAILABLE: Status.THUMBNAIL_UNAVAILABLE,
    ErrorKind.DELETION_FAILED: Status.DELETE_FAILED,
    ErrorKind.CARD_CHANGED: Status.NOT_SAME_CARD,
    ErrorKind.UPLOAD_DISABLED: Status.DELETE_DISABLED,
    ErrorKind.TIMEOUT: Status.TIMED_OUT,
    ErrorKind.CANCELLED: Status.STOPPED,
    ErrorKind.UNEXPECTED: Status.ERROR,
}

if set(STATUS_BY_KIND) != set(ErrorKind):
    raise RuntimeError("Every error kind needs a status")
