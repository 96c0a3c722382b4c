"""Exception hierarchy shared by the store, the merge and the Drive backup."""
from __future__ import annotations


class LogbookError(Exception):
    """Base class for recoverable PsA Logbook errors."""


class EventNotFoundError(LogbookError):
    """Raised when an event id is not present in the local store."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class InvalidFormatError(LogbookError):
    """Raised when an import or restore payload is malformed."""


class DriveSyncError(LogbookError):
    """Base class for Google Drive backup failures."""


class NotConfiguredError(DriveSyncError):
    """Raised when Drive is used before an OAuth client has been configured."""


class OfflineError(DriveSyncError):
    """Raised when the network is unreachable."""


class AccessDeniedError(DriveSyncError):
    """Raised when the user declines the authorisation prompt."""


class AuthFailedError(DriveSyncError):
    """Raised when the authorisation handshake fails for any other reason."""


class ApiDisabledError(DriveSyncError):
    """Raised when the Drive API is not enabled for the configured client."""


class RemoteRequestFailedError(DriveSyncError):
    """Raised for any other non-success Drive response."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


__all__ = [
    "AccessDeniedError",
    "ApiDisabledError",
    "AuthFailedError",
    "DriveSyncError",
    "EventNotFoundError",
    "InvalidFormatError",
    "LogbookError",
    "NotConfiguredError",
    "OfflineError",
    "RemoteRequestFailedError",
]
