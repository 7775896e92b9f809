"""Notification sink used to surface events to the host application."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Severity of a user-facing event."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notifier(Protocol):
    """Port the host implements to display events to the user."""

    def notify(self, text: str, severity: Severity = Severity.INFO) -> None:
        raise NotImplementedError


class LoggingNotifier:
    """Default sink: writes events to the log."""

    _LEVELS = {
        Severity.INFO: logging.INFO,
        Severity.WARNING: logging.WARNING,
        Severity.ERROR: logging.ERROR,
    }

    def __init__(self, name: str = "tthblock.events"):
        self._logger = logging.getLogger(name)

    def notify(self, text: str, severity: Severity = Severity.INFO) -> None:
        self._logger.log(self._LEVELS.get(Severity(severity), logging.INFO), text)


def safe_notify(notifier: Notifier, text: str, severity: Severity = Severity.INFO) -> None:
    """Deliver an event without letting a broken sink propagate errors."""
    try:
        notifier.notify(text, severity)
    except Exception as exc:
        logger.error("Failed to post event (%s): %s (%s)", severity, text, exc)
