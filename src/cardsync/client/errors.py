"""Error taxonomy for card operations.

Every failure the transfer layer or the orchestrator can produce is one of
the classes below. Each class carries an ErrorKind so callers can map
failures exhaustively (see cardsync.client.sync.types.STATUS_BY_KIND)
instead of dispatching on concrete types.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import ClassVar


class ErrorKind(Enum):
    """Closed set of failure kinds."""

    CONNECTION_UNABLE = auto()
    CONNECTION_LOST = auto()
    REMOTE_FILE_NOT_FOUND = auto()
    REMOTE_FILE_INVALID = auto()
    THUMBNAIL_UNAVAILABLE = auto()
    DELETION_FAILED = auto()
    CARD_CHANGED = auto()
    UPLOAD_DISABLED = auto()
    TIMEOUT = auto()
    CANCELLED = auto()
    UNEXPECTED = auto()


class CardSyncError(Exception):
    """Base exception for card errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.UNEXPECTED

    def __init__(self, message: str = "", path: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or "")
        self.path = path


class ConnectionUnableError(CardSyncError):
    """Unable to connect to the card."""

    kind = ErrorKind.CONNECTION_UNABLE

    def __init__(
        self,
        message: str = "",
        path: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, path)
        self.status_code = status_code


class ConnectionLostError(CardSyncError):
    """Connection to the card was lost during an operation."""

    kind = ErrorKind.CONNECTION_LOST


class RemoteFileNotFoundError(CardSyncError):
    """File is missing on the card or the request cannot be handled."""

    kind = ErrorKind.REMOTE_FILE_NOT_FOUND


class RemoteFileInvalidError(CardSyncError):
    """Data length of a remote file does not match its listed size."""

    kind = ErrorKind.REMOTE_FILE_INVALID


class ThumbnailUnavailableError(CardSyncError):
    """The card holds no thumbnail for an image file."""

    kind = ErrorKind.THUMBNAIL_UNAVAILABLE


class DeletionFailedError(CardSyncError):
    """The card refused to delete a file."""

    kind = ErrorKind.DELETION_FAILED


class CardChangedError(CardSyncError):
    """A different card answered than the one checked before copying."""

    kind = ErrorKind.CARD_CHANGED


class UploadDisabledError(CardSyncError):
    """upload.cgi is disabled on the card, so files cannot be deleted."""

    kind = ErrorKind.UPLOAD_DISABLED


class TransferTimeoutError(CardSyncError):
    """Waiting for the card timed out."""

    kind = ErrorKind.TIMEOUT


class OperationCancelled(CardSyncError):
    """The operation was cancelled."""

    kind = ErrorKind.CANCELLED


class UnexpectedError(CardSyncError):
    """Unclassified failure."""

    kind = ErrorKind.UNEXPECTED


class UnexpectedResponseError(UnexpectedError):
    """The card answered with a status code outside the protocol."""

    def __init__(
        self,
        message: str = "",
        path: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, path)
        self.status_code = status_code
