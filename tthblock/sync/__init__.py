"""Keeping the cache in step with remote origins and the blocklist directory."""

from .remote import FetchResult, FetchStatus, RemoteSynchronizer
from .watcher import DirectoryWatcher

__all__ = ["DirectoryWatcher", "FetchResult", "FetchStatus", "RemoteSynchronizer"]
