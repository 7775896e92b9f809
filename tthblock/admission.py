"""Allow/deny decisions for files entering the download queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .cache import MembershipCache
from .notifications import Notifier, Severity, safe_notify

logger = logging.getLogger(__name__)

BLOCKED_REASON = "blocked_tth"


@dataclass(frozen=True)
class Decision:
    """Verdict for a single queue candidate."""

    allowed: bool
    reason: Optional[str] = None
    message: str = ""

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str, message: str) -> "Decision":
        return cls(allowed=False, reason=reason, message=message)


class AdmissionGate:
    """Synchronous gate consulted by the host's queue hook."""

    def __init__(self, cache: MembershipCache, notifier: Notifier):
        self.cache = cache
        self.notifier = notifier
        self.denied_count = 0

    def decide(self, tth: Optional[str], display_name: Optional[str] = None) -> Decision:
        """
        Deny ``tth`` if any enabled blocklist contains it.

        Only reads the in-memory set. Internal errors allow the file.
        """
        name = display_name or "unknown"
        try:
            if not tth or not self.cache.query(tth):
                logger.debug(f"Allowing file: {name}")
                return Decision.allow()
        except Exception as exc:
            logger.error(f"Error checking {name} against blocklists: {exc}")
            safe_notify(self.notifier, f"Blocklist check failed for '{name}': {exc}", Severity.ERROR)
            return Decision.allow()

        self.denied_count += 1
        logger.info(f"Blocked TTH found: {tth} ({name})")
        safe_notify(
            self.notifier,
            f"Blocked download for file '{name}' (TTH: {tth})",
            Severity.WARNING,
        )
        return Decision.deny(BLOCKED_REASON, "Download skipped: TTH is blocked by extension")
