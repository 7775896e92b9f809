"""Lifecycle and wiring of the blocklist components."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from . import __version__
from .admission import AdmissionGate, Decision
from .cache import MembershipCache
from .config import Config
from .editor import AppendResult, LocalEditor
from .monitoring.health import HealthServer
from .notifications import LoggingNotifier, Notifier, Severity, safe_notify
from .settings import FileSettings
from .storage.registry import SourceRegistry
from .sync.remote import FetchResult, RemoteSynchronizer
from .sync.watcher import DirectoryWatcher

logger = logging.getLogger(__name__)


class BlocklistService:
    """Owns the cache and the components that keep it current."""

    def __init__(
        self,
        config: Config,
        notifier: Optional[Notifier] = None,
        settings: Optional[FileSettings] = None,
    ):
        self.config = config
        self.notifier = notifier or LoggingNotifier()
        self.settings = settings or FileSettings(
            config.settings_file,
            self.notifier,
            auto_enable_new_sources=config.auto_enable_new_sources,
        )
        self._running = False
        self._started_at = datetime.now(timezone.utc)
        self._stop_lock = asyncio.Lock()
        self._stop_task: asyncio.Task | None = None
        self._stopped = asyncio.Event()

        # Components
        self.registry = SourceRegistry(config.blocklist_dir, self.notifier)
        self.cache = MembershipCache(self.registry, self.notifier)
        self.editor = LocalEditor(self.registry, self.cache, self.settings, self.notifier)
        self.gate = AdmissionGate(self.cache, self.notifier)
        self.synchronizer = RemoteSynchronizer(
            self.registry,
            self.cache,
            self.settings,
            self.notifier,
            retries=config.sync_retries,
            retry_delay=config.sync_retry_delay,
            fetch_timeout=config.fetch_timeout,
            state_path=config.sync_state_file,
        )
        self.watcher = DirectoryWatcher(
            config.blocklist_dir,
            self.registry,
            self.cache,
            self.settings,
            self.notifier,
            debounce_seconds=config.watch_debounce_seconds,
        )
        self.health_server = HealthServer(
            host=config.health_host,
            port=config.health_port,
            status_provider=self.health_snapshot,
            enabled=config.health_enabled,
        )

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Load settings and blocklists, then start watching and syncing."""
        logger.info(f"Starting TTH blocklist filter {__version__}...")
        self._running = True

        await asyncio.to_thread(self.settings.load)
        await asyncio.to_thread(self.registry.ensure_directory)
        sources = await asyncio.to_thread(self.registry.scan_sources)
        self.settings.register_sources(source.name for source in sources)

        loaded = await asyncio.to_thread(self.cache.full_reload, self.settings.is_enabled)
        logger.info(f"Blocklists loaded ({loaded} blocked TTHs)")

        if self.config.watch_enabled:
            self.watcher.start()
        else:
            logger.info("Directory watching disabled (WATCH_ENABLED=false)")

        self.synchronizer.schedule(self.settings.update_interval())

        await self.health_server.start()

        safe_notify(
            self.notifier,
            f"TTH blocklist filter {__version__} started with {loaded} blocked TTH(s)",
            Severity.INFO,
        )
        logger.info("Service running")

    async def serve(self):
        """Start and block until stop() completes."""
        await self.start()
        await self._stopped.wait()

    async def stop(self):
        """Stop all components."""
        async with self._stop_lock:
            if self._stop_task is None:
                self._stop_task = asyncio.create_task(self._stop_impl())
            stop_task = self._stop_task
        await stop_task

    async def _stop_impl(self):
        """One-shot shutdown implementation (idempotent via stop())."""
        logger.info("Stopping TTH blocklist filter...")
        self._running = False

        await self.watcher.stop()
        await self.synchronizer.stop()
        await self.health_server.stop()

        self._stopped.set()
        logger.info("Service stopped")

    # ------------------------------------------------------------------
    # Host-facing operations
    # ------------------------------------------------------------------

    def decide(self, tth: Optional[str], display_name: Optional[str] = None) -> Decision:
        """Queue hook: allow or deny a file by its TTH."""
        return self.gate.decide(tth, display_name)

    async def append_entries(self, tths: Iterable[str], comment: str = "") -> AppendResult:
        """Add identifiers to the internal blocklist."""
        return await asyncio.to_thread(self.editor.append_entries, list(tths), comment)

    async def apply_settings(self) -> int:
        """
        Re-read settings and rebuild the cache.

        Called after the user changed toggles or the update interval; the
        remote timer is restarted with the (possibly new) interval. Files
        that appeared since the last scan get a settings toggle.
        """
        logger.info("Settings updated, reloading blocklists")
        await asyncio.to_thread(self.settings.load)
        sources = await asyncio.to_thread(self.registry.scan_sources)
        added = set(self.settings.register_sources(source.name for source in sources))
        if added:
            files = ", ".join(source.file for source in sources if source.name in added)
            logger.info(f"New blocklist file(s) detected: {files}")
            safe_notify(
                self.notifier,
                f"New blocklist file(s) detected: {files}. Enable or disable them in the extension settings",
                Severity.INFO,
            )
        loaded = await asyncio.to_thread(self.cache.full_reload, self.settings.is_enabled)
        if self._running:
            self.synchronizer.schedule(self.settings.update_interval())
        return loaded

    async def sync_now(self) -> list[FetchResult]:
        """Run one remote update pass immediately."""
        return await self.synchronizer.run_once()

    def health_snapshot(self) -> dict:
        """Provide a lightweight status dict for health endpoints."""
        uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()
        stats = self.cache.stats()
        return {
            "status": "ok" if self._running else "stopped",
            "version": __version__,
            "uptime_seconds": round(uptime, 1),
            "blocked_tths": stats["blocked_tths"],
            "sources_loaded": stats["sources_loaded"],
            "sources_known": len(self.registry.names()),
            "denied_total": self.gate.denied_count,
            "watching": self.watcher.running,
            "sync_scheduled": self.synchronizer.is_scheduled,
            "per_source": stats["per_source"],
        }
