"""Blocklist data shapes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..constants import DEFAULT_VERSION, INTERNAL_MARKER, INTERNAL_SOURCE_NAME, SourceKind
from ..utils.urls import is_remote_url


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def change_token(document: dict[str, Any]) -> Optional[str]:
    """Version string of a blocklist document; ``updated_at`` when no version is set."""
    version = document.get("version")
    if version:
        return str(version)
    updated_at = document.get("updated_at")
    if updated_at:
        return str(updated_at)
    return None


def default_document(name: str) -> dict[str, Any]:
    """Minimal valid document for a blocklist named ``name``."""
    internal = name == INTERNAL_SOURCE_NAME
    return {
        "url": INTERNAL_MARKER if internal else None,
        "version": INTERNAL_MARKER if internal else DEFAULT_VERSION,
        "updated_at": utc_now_iso(),
        "description": INTERNAL_MARKER if internal else name,
        "tths": [],
    }


@dataclass(frozen=True)
class BlocklistEntry:
    """A single identifier contributed by a blocklist."""

    tth: str
    comment: str = ""
    timestamp: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        data = {"tth": self.tth, "comment": self.comment}
        if self.timestamp:
            data["timestamp"] = self.timestamp
        return data


@dataclass
class ValidationResult:
    """Outcome of structurally validating a blocklist file."""

    valid: bool
    url: Optional[str] = None
    version: str = DEFAULT_VERSION
    updated_at: Optional[str] = None
    description: str = ""


@dataclass
class BlocklistSource:
    """A blocklist file known to the registry."""

    name: str
    path: Path
    url: Optional[str] = None
    version: str = DEFAULT_VERSION
    updated_at: Optional[str] = None
    description: str = ""
    mtime: Optional[int] = None

    @property
    def file(self) -> str:
        return self.path.name

    @property
    def kind(self) -> SourceKind:
        if self.name == INTERNAL_SOURCE_NAME:
            return SourceKind.INTERNAL
        if is_remote_url(self.url):
            return SourceKind.REMOTE
        return SourceKind.LOCAL

    @property
    def is_remote(self) -> bool:
        return self.kind is SourceKind.REMOTE
