"""Centralized constants for the TTH blocklist filter.

Shared by the registry, cache, synchronizer and editor so that file names,
markers and defaults stay consistent.
"""

from enum import Enum

# Origin/version marker of the single writable blocklist.
INTERNAL_MARKER = "Internal"
INTERNAL_SOURCE_NAME = "internal_blocklist"
BLOCKLIST_SUFFIX = ".json"

DEFAULT_VERSION = "1.0.0"
DEFAULT_UPDATE_INTERVAL_MINUTES = 60
MIN_UPDATE_INTERVAL_MINUTES = 1

# Remote fetch policy
DEFAULT_SYNC_RETRIES = 3
DEFAULT_SYNC_RETRY_DELAY = 1.0
DEFAULT_FETCH_TIMEOUT = 30
ACCEPTED_CONTENT_TYPES = ("application/json", "text/plain")

# Directory watcher quiet period (seconds)
DEFAULT_DEBOUNCE_SECONDS = 2.0

# Settings keys
INTERNAL_SETTING_KEY = "internal_block_list"
UPDATE_INTERVAL_SETTING_KEY = "update_interval"
BLOCKLISTS_SETTING_KEY = "blocklists"


class SourceKind(str, Enum):
    """How a blocklist source is populated."""

    INTERNAL = "internal"  # Writable, edited through the local editor
    LOCAL = "local"  # Read-only, placed on disk by hand
    REMOTE = "remote"  # Mirrored from a raw-content URL

    def label(self) -> str:
        if self is SourceKind.LOCAL:
            return "local read-only"
        return self.value
