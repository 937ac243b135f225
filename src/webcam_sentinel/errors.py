from __future__ import annotations


class SentinelError(Exception):
    """Base class for webcam sentinel errors."""


class CaptureError(SentinelError):
    """The camera could not be reached or returned an unusable response."""


class SnapshotDecodeError(CaptureError):
    """The fetched bytes are not a decodable image."""


class ConfigError(SentinelError):
    """A settings update failed validation; the active config is unchanged."""


class DropboxError(SentinelError):
    def __init__(self, message: str, status: int = 0, summary: str = ''):
        super().__init__(message)
        self.status = status
        self.summary = summary


class DropboxConflict(DropboxError):
    """The target path already exists (``path/conflict/...``)."""


class IndexOutOfRange(SentinelError, IndexError):
    pass


class StorageUnavailable(SentinelError):
    """No disk base is configured, so stored frames cannot be listed."""
