"""Appending TTHs to the writable internal blocklist."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable

from .cache import MembershipCache
from .constants import INTERNAL_SOURCE_NAME
from .notifications import Notifier, Severity, safe_notify
from .settings import SettingsProvider
from .storage.models import BlocklistEntry, default_document, utc_now_iso
from .storage.registry import SourceRegistry
from .utils.files import write_blocklist
from .utils.tth import check_tth

logger = logging.getLogger(__name__)


@dataclass
class AppendResult:
    """Outcome of an append request."""

    added: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.added)


class LocalEditor:
    """Adds identifiers to the internal blocklist and the cache in one step."""

    def __init__(
        self,
        registry: SourceRegistry,
        cache: MembershipCache,
        settings: SettingsProvider,
        notifier: Notifier,
    ):
        self.registry = registry
        self.cache = cache
        self.settings = settings
        self.notifier = notifier
        self._lock = threading.Lock()

    def append_entries(self, tths: Iterable[str], comment: str = "") -> AppendResult:
        """
        Append identifiers to the internal blocklist.

        Invalid identifiers are rejected and identifiers that are already
        blocked (by any enabled list, or earlier in the same batch) are
        skipped. Accepted identifiers are blocked immediately.

        Args:
            tths: Identifiers already resolved from the user's selection
            comment: Optional note stored with every new entry

        Returns:
            AppendResult; ``count == 0`` means nothing was added
        """
        result = AppendResult()
        try:
            enabled = self.settings.is_enabled(INTERNAL_SOURCE_NAME)
        except Exception as exc:
            logger.error(f"Settings object is invalid, cannot add to blocklist: {exc}")
            safe_notify(self.notifier, "Cannot add TTHs to blocklist: settings are invalid", Severity.ERROR)
            return result
        if not enabled:
            logger.info("Internal blocklist is disabled, skipping TTH addition")
            safe_notify(
                self.notifier,
                "Internal blocklist is disabled. Enable it in the extension settings to add TTHs",
                Severity.WARNING,
            )
            return result

        with self._lock:
            accepted: list[str] = []
            for raw in tths:
                tth = raw.strip() if isinstance(raw, str) else raw
                if not check_tth(tth):
                    result.rejected.append(str(raw))
                elif tth in self.cache or tth in accepted:
                    logger.info(f"TTH {tth} already in blocklist, skipping")
                    result.duplicates.append(tth)
                else:
                    accepted.append(tth)

            if not accepted:
                logger.info("No valid TTHs to add")
                safe_notify(
                    self.notifier,
                    "No valid TTHs to add. Ensure selected items are files and fully loaded in the UI",
                    Severity.WARNING,
                )
                return result

            path = self.registry.internal_path
            with self.cache.source_lock(INTERNAL_SOURCE_NAME):
                try:
                    document = self._read_document()
                    now = utc_now_iso()
                    document["tths"].extend(
                        BlocklistEntry(tth=tth, comment=comment, timestamp=now).to_dict()
                        for tth in accepted
                    )
                    document["updated_at"] = now
                    mtime = write_blocklist(path, document)
                except OSError as exc:
                    logger.error(f"Failed to write blocklist file: {exc}")
                    safe_notify(self.notifier, f"Failed to write to internal blocklist: {exc}", Severity.ERROR)
                    return result

                self.cache.mark_processed(INTERNAL_SOURCE_NAME, mtime)
                self.cache.add_identifiers(INTERNAL_SOURCE_NAME, accepted)

        result.added = accepted
        logger.info(f"Added {len(accepted)} TTH(s) to {path}")
        safe_notify(
            self.notifier,
            f"Added {len(accepted)} TTH(s) to internal blocklist: {', '.join(accepted)}",
            Severity.INFO,
        )
        return result

    def _read_document(self) -> dict[str, Any]:
        """Current internal document, or the default when absent or corrupt."""
        path = self.registry.internal_path
        if not path.exists():
            return default_document(INTERNAL_SOURCE_NAME)
        raw = path.read_text(encoding="utf-8")
        if not raw.strip():
            return default_document(INTERNAL_SOURCE_NAME)
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning(f"Invalid JSON in {path} ({exc}), starting from default")
            return default_document(INTERNAL_SOURCE_NAME)
        if not isinstance(document, dict):
            return default_document(INTERNAL_SOURCE_NAME)
        if not isinstance(document.get("tths"), list):
            logger.warning(f"Invalid blocklist format in {path}, resetting tths")
            document["tths"] = []
        return document
