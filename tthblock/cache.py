"""In-memory membership cache for blocked TTHs.

Keeps two views of the enabled blocklists:
- an aggregate set of every blocked TTH (the query target)
- a per-source index (source name -> TTHs it contributes)

Supports:
- Full rebuilds at startup or after wholesale settings changes
- Targeted reconciliation of a single source after its file changed
- Incremental additions from the local editor
- Lock-free reads: mutations build new frozensets and publish them with a
  single reference swap, so readers only ever see complete states
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .errors import SourceFormatError
from .notifications import Notifier, Severity, safe_notify
from .storage.models import BlocklistSource
from .storage.registry import ParsedBlocklist, SourceRegistry, parse_blocklist
from .utils.files import file_mtime

logger = logging.getLogger(__name__)

EnabledPredicate = Callable[[str], bool]

# (file mtime in ns or None when missing, enabled flag)
ProcessedState = Tuple[Optional[int], bool]


class MembershipCache:
    """
    Aggregate blocklist index with per-source reconciliation.

    Usage:
        cache = MembershipCache(registry, notifier)
        cache.full_reload(settings.is_enabled)

        cache.query(tth)                                   # O(1), never blocks
        cache.reconcile_one("some_list", settings.is_enabled)
    """

    def __init__(self, registry: SourceRegistry, notifier: Notifier):
        self.registry = registry
        self.notifier = notifier

        self._blocked: frozenset[str] = frozenset()
        self._by_source: Dict[str, frozenset[str]] = {}
        self._versions: Dict[str, Optional[str]] = {}
        self._processed: Dict[str, ProcessedState] = {}

        self._publish_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._source_locks: Dict[str, threading.Lock] = {}

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def query(self, tth: str) -> bool:
        """Return True if ``tth`` is blocked by any enabled source."""
        return tth in self._blocked

    def __contains__(self, tth: object) -> bool:
        return tth in self._blocked

    def __len__(self) -> int:
        return len(self._blocked)

    def identifiers_for(self, name: str) -> frozenset[str]:
        return self._by_source.get(name, frozenset())

    def loaded_sources(self) -> list[str]:
        return sorted(self._by_source)

    def version_of(self, name: str) -> Optional[str]:
        """Change token recorded for ``name`` (version, else updated_at)."""
        return self._versions.get(name)

    def last_processed_mtime(self, name: str) -> Optional[int]:
        state = self._processed.get(name)
        return state[0] if state else None

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def full_reload(self, enabled: EnabledPredicate) -> int:
        """
        Rebuild the cache from every source known to the registry.

        The new state is assembled off to the side and published at once.
        Every source lock is held until the publish, so an append or
        reconcile that arrives mid-reload runs after it and is kept.

        Returns:
            Number of distinct blocked TTHs after the reload
        """
        by_source: Dict[str, frozenset[str]] = {}
        versions: Dict[str, Optional[str]] = {}
        processed: Dict[str, ProcessedState] = {}

        sources = self.registry.sources()
        with ExitStack() as stack:
            # Sorted order; every other writer holds at most one source lock
            for name in sorted(source.name for source in sources):
                stack.enter_context(self.source_lock(name))

            for source in sources:
                is_enabled = self._is_enabled(source.name, enabled)
                processed[source.name] = (source.mtime, is_enabled)
                if not is_enabled:
                    logger.info(f"Blocklist {source.file} disabled in settings, skipping load")
                    continue
                parsed = self._parse(source)
                if parsed is None:
                    continue
                by_source[source.name] = frozenset(parsed.identifiers)
                versions[source.name] = parsed.token
                self._log_loaded(source, parsed)

            blocked = frozenset().union(*by_source.values())
            with self._publish_lock:
                self._by_source = by_source
                self._versions = versions
                self._processed = processed
                self._blocked = blocked

        logger.info(
            "Loaded %d blocked TTH(s) from %d blocklist(s)", len(blocked), len(by_source)
        )
        return len(blocked)

    def reconcile_one(self, name: str, enabled: EnabledPredicate, force: bool = False) -> bool:
        """
        Bring a single source up to date with its file and enabled flag.

        The source's previous identifiers are replaced in one publish step:
        readers see either the old contribution or the new one, never a gap.
        Requests for the same source are serialized; different sources
        proceed independently.

        Args:
            name: Source name (file stem)
            enabled: Predicate telling whether a source is enabled
            force: Reload even if mtime and enabled flag look unchanged
                (the caller knows the content changed)

        Returns:
            True if the source was (re)loaded, False when it was skipped
            (unchanged, disabled, missing or invalid)
        """
        with self.source_lock(name):
            path = self.registry.path_for(name)
            mtime = file_mtime(path)
            is_enabled = self._is_enabled(name, enabled) if mtime is not None else False
            state = (mtime, is_enabled)

            if not force and self._processed.get(name) == state:
                logger.debug(f"Skipping reload for {name}: no change since last update (mtime: {mtime})")
                return False
            self._set_processed(name, state)

            if mtime is None:
                self.registry.refresh(name)
                removed = self._publish(name, None)
                logger.info(f"Blocklist {name} removed from disk, unloaded {removed} TTH(s)")
                return False

            if not is_enabled:
                removed = self._publish(name, None)
                logger.info(f"Blocklist {name} is disabled, unloaded {removed} TTH(s)")
                return False

            source = self.registry.refresh(name)
            if source is None:
                removed = self._publish(name, None)
                logger.info(f"Blocklist {name} is invalid after update, unloaded {removed} TTH(s)")
                return False
            # Validation may have repaired the file in place
            self._set_processed(name, (source.mtime, True))

            parsed = self._parse(source)
            if parsed is None:
                self._publish(name, None)
                return False

            removed = self._publish(name, frozenset(parsed.identifiers), parsed.token)
            logger.info(f"Unloaded {removed} TTH(s) from {source.file}")
            self._log_loaded(source, parsed)
            return True

    def add_identifiers(self, name: str, identifiers: Iterable[str]) -> None:
        """Fold identifiers into a loaded source without reparsing its file."""
        new_ids = frozenset(identifiers)
        if not new_ids:
            return
        with self._publish_lock:
            by_source = dict(self._by_source)
            by_source[name] = by_source.get(name, frozenset()) | new_ids
            blocked = self._blocked | new_ids
            self._by_source = by_source
            self._blocked = blocked

    def mark_processed(self, name: str, mtime: Optional[int]) -> None:
        """Record a write made by this process so watchers skip it."""
        self._set_processed(name, (mtime, True))

    def record_version(self, name: str, token: Optional[str]) -> None:
        with self._publish_lock:
            versions = dict(self._versions)
            versions[name] = token
            self._versions = versions

    def stats(self) -> Dict[str, Any]:
        """Cache statistics for health reporting."""
        by_source = self._by_source
        return {
            "blocked_tths": len(self._blocked),
            "sources_loaded": len(by_source),
            "per_source": {name: len(ids) for name, ids in sorted(by_source.items())},
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_processed(self, name: str, state: ProcessedState) -> None:
        with self._publish_lock:
            processed = dict(self._processed)
            processed[name] = state
            self._processed = processed

    def source_lock(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._source_locks.get(name)
            if lock is None:
                lock = self._source_locks[name] = threading.Lock()
            return lock

    def _publish(
        self,
        name: str,
        identifiers: Optional[frozenset[str]],
        token: Optional[str] = None,
    ) -> int:
        """
        Replace ``name``'s contribution and swap in the new aggregate.

        Identifiers that another loaded source still contributes stay
        blocked. Passing ``None`` drops the source.

        Returns:
            Number of identifiers the source contributed before the swap
        """
        with self._publish_lock:
            by_source = dict(self._by_source)
            old = by_source.pop(name, frozenset())
            new = identifiers if identifiers is not None else frozenset()

            stale = {
                tth
                for tth in old - new
                if not any(tth in others for others in by_source.values())
            }
            if identifiers is not None:
                by_source[name] = identifiers
                versions = dict(self._versions)
                versions[name] = token
                self._versions = versions

            self._blocked = (self._blocked - stale) | new
            self._by_source = by_source
        return len(old)

    def _is_enabled(self, name: str, enabled: EnabledPredicate) -> bool:
        try:
            return bool(enabled(name))
        except Exception as exc:
            logger.error(f"Settings unavailable for blocklist {name}: {exc}")
            safe_notify(
                self.notifier,
                f"Settings are unavailable, skipping blocklist {name}: {exc}",
                Severity.ERROR,
            )
            return False

    def _parse(self, source: BlocklistSource) -> Optional[ParsedBlocklist]:
        try:
            return parse_blocklist(source.path)
        except (OSError, UnicodeDecodeError, SourceFormatError) as exc:
            logger.error(f"Failed to load blocklist {source.file}: {exc}")
            safe_notify(self.notifier, f"Failed to load blocklist {source.file}: {exc}", Severity.ERROR)
            return None

    @staticmethod
    def _log_loaded(source: BlocklistSource, parsed: ParsedBlocklist) -> None:
        logger.info(
            "Loaded %d TTH(s) from %s blocklist %s (version: %s, description: %s)",
            len(parsed.identifiers),
            source.kind.label(),
            source.file,
            parsed.token or "none",
            parsed.description or "none",
        )
