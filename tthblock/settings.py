"""Per-blocklist toggles and the remote update interval."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Protocol

import yaml

from .constants import (
    BLOCKLISTS_SETTING_KEY,
    DEFAULT_UPDATE_INTERVAL_MINUTES,
    INTERNAL_SETTING_KEY,
    INTERNAL_SOURCE_NAME,
    MIN_UPDATE_INTERVAL_MINUTES,
    UPDATE_INTERVAL_SETTING_KEY,
)
from .errors import SettingsError
from .notifications import Notifier, Severity, safe_notify

logger = logging.getLogger(__name__)


class SettingsProvider(Protocol):
    """Settings the blocklist core reads from the host."""

    def is_enabled(self, name: str) -> bool:
        raise NotImplementedError

    def update_interval(self) -> int:
        raise NotImplementedError

    def register_sources(self, names: Iterable[str]) -> list[str]:
        raise NotImplementedError


def default_settings() -> dict[str, Any]:
    return {
        INTERNAL_SETTING_KEY: True,
        UPDATE_INTERVAL_SETTING_KEY: DEFAULT_UPDATE_INTERVAL_MINUTES,
        BLOCKLISTS_SETTING_KEY: {},
    }


class FileSettings:
    """
    YAML-backed settings store.

    Layout:
        internal_block_list: true
        update_interval: 60
        blocklists:
          some_list: true

    Blocklists without an entry fall back to ``auto_enable_new_sources``.
    """

    def __init__(
        self,
        path: Path,
        notifier: Notifier,
        *,
        auto_enable_new_sources: bool = True,
    ):
        self.path = Path(path)
        self.notifier = notifier
        self.auto_enable_new_sources = bool(auto_enable_new_sources)
        self._data: dict[str, Any] = default_settings()
        self._lock = threading.RLock()

    def load(self) -> None:
        """Load settings from disk, recreating the file when missing or corrupt."""
        with self._lock:
            if not self.path.exists():
                logger.info(f"Settings file {self.path} not found, creating with defaults")
                self._reset("Settings file not found, created default", Severity.INFO)
                return

            try:
                raw = self.path.read_text(encoding="utf-8")
            except OSError as exc:
                logger.error(f"Failed to read settings file {self.path}: {exc}")
                safe_notify(self.notifier, f"Failed to read settings: {exc}, using defaults", Severity.ERROR)
                self._data = default_settings()
                return

            if not raw.strip():
                logger.warning(f"Settings file {self.path} is empty, recreating with defaults")
                self._reset("Settings file was empty and has been initialized", Severity.INFO)
                return

            try:
                data = yaml.safe_load(raw)
                if not isinstance(data, dict):
                    raise SettingsError("top-level value is not a mapping")
            except (yaml.YAMLError, SettingsError) as exc:
                logger.error(f"Invalid settings file {self.path}: {exc}, recreating with defaults")
                self._reset("Invalid settings file, reset to default", Severity.ERROR)
                return

            merged = default_settings()
            merged.update(data)
            if not isinstance(merged.get(BLOCKLISTS_SETTING_KEY), dict):
                merged[BLOCKLISTS_SETTING_KEY] = {}
            self._data = merged
            logger.info(f"Settings loaded from {self.path}")

    def save(self) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(
                yaml.safe_dump(self._data, default_flow_style=False, sort_keys=False),
                encoding="utf-8",
            )
            tmp_path.replace(self.path)

    def _reset(self, message: str, severity: Severity) -> None:
        self._data = default_settings()
        try:
            self.save()
        except OSError as exc:
            logger.error(f"Failed to write settings file {self.path}: {exc}")
            safe_notify(self.notifier, f"Failed to write settings: {exc}", Severity.ERROR)
            return
        safe_notify(self.notifier, message, severity)

    def get_value(self, key: str) -> Any:
        """Return a top-level setting; raises KeyError when it is not defined."""
        with self._lock:
            return self._data[key]

    def is_enabled(self, name: str) -> bool:
        with self._lock:
            if name == INTERNAL_SOURCE_NAME:
                return bool(self._data.get(INTERNAL_SETTING_KEY, True))
            toggles = self._data.get(BLOCKLISTS_SETTING_KEY) or {}
            if name not in toggles:
                logger.debug(
                    "Setting for blocklist %s not found, assuming %s",
                    name,
                    "enabled" if self.auto_enable_new_sources else "disabled",
                )
                return self.auto_enable_new_sources
            return bool(toggles[name])

    def set_enabled(self, name: str, value: bool) -> None:
        with self._lock:
            if name == INTERNAL_SOURCE_NAME:
                self._data[INTERNAL_SETTING_KEY] = bool(value)
            else:
                self._data.setdefault(BLOCKLISTS_SETTING_KEY, {})[name] = bool(value)
            self.save()

    def update_interval(self) -> int:
        """Remote update interval in minutes (at least one)."""
        with self._lock:
            raw = self._data.get(UPDATE_INTERVAL_SETTING_KEY, DEFAULT_UPDATE_INTERVAL_MINUTES)
        try:
            minutes = int(raw)
        except (TypeError, ValueError):
            logger.warning(f"Invalid update_interval {raw!r}, using {DEFAULT_UPDATE_INTERVAL_MINUTES}")
            return DEFAULT_UPDATE_INTERVAL_MINUTES
        return max(MIN_UPDATE_INTERVAL_MINUTES, minutes)

    def register_sources(self, names: Iterable[str]) -> list[str]:
        """Add toggles for newly discovered blocklists and return the names added."""
        added: list[str] = []
        with self._lock:
            toggles = self._data.setdefault(BLOCKLISTS_SETTING_KEY, {})
            for name in names:
                if name == INTERNAL_SOURCE_NAME or name in toggles:
                    continue
                toggles[name] = self.auto_enable_new_sources
                added.append(name)
            if added:
                try:
                    self.save()
                except OSError as exc:
                    logger.error(f"Failed to persist new blocklist toggles: {exc}")
                    safe_notify(self.notifier, f"Failed to update settings: {exc}", Severity.ERROR)
        if added:
            logger.info(f"Registered blocklist toggles: {', '.join(added)}")
        return added
