"""Tiger Tree Hash identifier validation."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

TTH_LENGTH = 39
TTH_PATTERN = re.compile(r"^[A-Z2-7]{39}$")
_TTH_CHAR = re.compile(r"[A-Z2-7]")


def is_valid_tth(value: object) -> bool:
    """Return True for a 39-character base32 (A-Z, 2-7) string."""
    if not isinstance(value, str):
        return False
    return TTH_PATTERN.fullmatch(value) is not None


def invalid_tth_chars(value: str) -> str:
    """Characters of ``value`` that fall outside the base32 alphabet."""
    return "".join(c for c in value or "" if not _TTH_CHAR.fullmatch(c))


def check_tth(value: object) -> bool:
    """Validate ``value`` and log a diagnostic when it is rejected."""
    if is_valid_tth(value):
        return True
    if isinstance(value, str):
        bad = invalid_tth_chars(value)
        detail = f", found invalid characters: {bad}" if bad else ""
        logger.warning(
            "Invalid TTH: %s (must be %d characters, base32 A-Z/2-7%s)",
            value,
            TTH_LENGTH,
            detail,
        )
    else:
        logger.warning("Invalid TTH: %r (not a string)", value)
    return False
