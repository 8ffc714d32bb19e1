"""GSM Opener exception hierarchy."""

from __future__ import annotations


class GsmOpenerError(Exception):
    """Base exception for all GSM Opener errors."""


class ValidationError(GsmOpenerError):
    """Raised when a record is missing required fields or holds invalid values."""


class NotFoundError(GsmOpenerError):
    """Raised when an operation references an unknown device or user id."""


class StorageIOError(GsmOpenerError):
    """Raised when the underlying key-value store fails."""


class RestoreError(GsmOpenerError):
    """Base exception for backup restore failures."""


class EmptyBackupError(RestoreError):
    """Raised when the backup payload is empty or whitespace only."""


class MalformedBackupError(RestoreError):
    """Raised when no data could be recovered from the backup payload."""


class UnsupportedFormatError(RestoreError):
    """Raised when the parsed backup has an unexpected top-level shape."""


class RestoreFailedError(RestoreError):
    """Raised when not a single key could be written during restore."""
