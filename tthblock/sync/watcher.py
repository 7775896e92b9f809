"""Blocklist directory watcher with debounced reconciliation."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..cache import MembershipCache
from ..constants import BLOCKLIST_SUFFIX, DEFAULT_DEBOUNCE_SECONDS
from ..notifications import Notifier, Severity, safe_notify
from ..settings import SettingsProvider
from ..storage.registry import SourceRegistry

logger = logging.getLogger(__name__)


class _BlocklistEventHandler(FileSystemEventHandler):
    """Forwards blocklist file events from the observer thread to the loop."""

    def __init__(self, watcher: "DirectoryWatcher"):
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(p and os.fsdecode(p).endswith(BLOCKLIST_SUFFIX) for p in paths):
            self.watcher.notify_threadsafe(os.fsdecode(event.src_path))


class DirectoryWatcher:
    """
    Watches the blocklist directory and reconciles what changed.

    Bursts of events collapse into a single pass that runs once the
    directory has been quiet for ``debounce_seconds``.
    """

    def __init__(
        self,
        directory: Path,
        registry: SourceRegistry,
        cache: MembershipCache,
        settings: SettingsProvider,
        notifier: Notifier,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ):
        self.directory = Path(directory)
        self.registry = registry
        self.cache = cache
        self.settings = settings
        self.notifier = notifier
        self.debounce_seconds = max(0.0, float(debounce_seconds))

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observer: Optional[Observer] = None
        self._pending: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Start the observer thread; events are handled on ``loop``."""
        if self._running:
            return
        self._loop = loop or asyncio.get_running_loop()
        self.directory.mkdir(parents=True, exist_ok=True)

        observer = Observer()
        observer.schedule(_BlocklistEventHandler(self), str(self.directory), recursive=False)
        observer.start()
        self._observer = observer
        self._running = True
        logger.info(f"Watching blocklist directory: {self.directory}")

    async def stop(self) -> None:
        """Stop watching and wait for a running pass to finish."""
        self._running = False
        if self._pending:
            self._pending.cancel()
            self._pending = None

        observer = self._observer
        self._observer = None
        if observer:
            observer.stop()
            await asyncio.to_thread(observer.join, 5)

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("Directory watcher stopped")

    def notify_threadsafe(self, path: str = "") -> None:
        """Called from the observer thread for every relevant event."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        logger.debug(f"Blocklist file event: {path}")
        loop.call_soon_threadsafe(self.trigger)

    def trigger(self) -> None:
        """(Re)arm the debounce timer. Must run on the event loop."""
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        if self._pending:
            self._pending.cancel()
        self._pending = loop.call_later(self.debounce_seconds, self._fire)

    def _fire(self) -> None:
        self._pending = None
        task = asyncio.ensure_future(self._run_settle())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_settle(self) -> None:
        try:
            await self.settle()
        except Exception as e:
            logger.error(f"Failed to process blocklist directory changes: {e}")
            safe_notify(
                self.notifier,
                f"Failed to process blocklist directory changes: {e}",
                Severity.ERROR,
            )

    async def settle(self) -> list[str]:
        """
        Rescan the directory and reconcile every source that changed.

        New files get a settings toggle and are announced; files that
        disappeared (or became invalid) are unloaded; files whose
        modification time differs from the last processed one are reloaded.

        Returns:
            Names of the sources that were reconciled
        """
        before = self.registry.names()
        sources = await asyncio.to_thread(self.registry.scan_sources)
        current = {source.name: source for source in sources}

        new_names = sorted(set(current) - before)
        removed = sorted(before - set(current))
        changed = sorted(
            name
            for name, source in current.items()
            if name in before and source.mtime != self.cache.last_processed_mtime(name)
        )

        if new_names:
            self.settings.register_sources(new_names)
            files = ", ".join(current[name].file for name in new_names)
            logger.info(f"New blocklist file(s) detected: {files}")
            safe_notify(
                self.notifier,
                f"New blocklist file(s) detected: {files}. Enable or disable them in the extension settings",
                Severity.INFO,
            )
        for name in removed:
            logger.info(f"Blocklist {name}{BLOCKLIST_SUFFIX} removed or no longer valid")

        targets = new_names + removed + changed
        for name in targets:
            await asyncio.to_thread(self.cache.reconcile_one, name, self.settings.is_enabled)
        if targets:
            logger.info(f"Reconciled blocklist(s) after directory change: {', '.join(targets)}")
        return targets
