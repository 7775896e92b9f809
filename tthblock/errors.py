"""Exception types raised inside the blocklist core."""

from __future__ import annotations


class BlocklistError(Exception):
    """Base class for blocklist failures."""


class SourceFormatError(BlocklistError):
    """A blocklist document does not have the expected shape."""


class FetchError(BlocklistError):
    """Fetching a remote blocklist failed."""

    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class SettingsError(BlocklistError):
    """The settings provider is unavailable or returned garbage."""
