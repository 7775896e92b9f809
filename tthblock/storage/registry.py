"""Discovery and structural validation of blocklist files."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..constants import BLOCKLIST_SUFFIX, DEFAULT_VERSION, INTERNAL_SOURCE_NAME
from ..errors import SourceFormatError
from ..notifications import Notifier, Severity, safe_notify
from ..utils.files import file_mtime, write_blocklist
from ..utils.tth import check_tth, is_valid_tth
from ..utils.urls import is_valid_blocklist_url
from .models import BlocklistSource, ValidationResult, change_token, default_document, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class ParsedBlocklist:
    """Identifiers and metadata read from a blocklist file."""

    identifiers: set[str]
    token: Optional[str]
    description: str
    total_entries: int


def parse_blocklist(path: Path) -> ParsedBlocklist:
    """
    Read a blocklist file and collect its valid identifiers.

    Invalid identifiers are logged and skipped; they never invalidate the
    rest of the list.

    Raises:
        OSError: the file could not be read
        SourceFormatError: the document is not an object with a ``tths`` list
    """
    raw = path.read_text(encoding="utf-8")
    if not raw.strip():
        return ParsedBlocklist(set(), None, path.stem, 0)
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SourceFormatError(f"invalid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise SourceFormatError("top-level value is not an object")
    entries = document.get("tths")
    if not isinstance(entries, list):
        raise SourceFormatError("'tths' is not an array")

    identifiers: set[str] = set()
    for item in entries:
        tth = item.get("tth") if isinstance(item, dict) else None
        if tth and check_tth(tth):
            identifiers.add(tth)
    return ParsedBlocklist(
        identifiers=identifiers,
        token=change_token(document),
        description=str(document.get("description") or ""),
        total_entries=len(entries),
    )


class SourceRegistry:
    """Tracks the blocklist files present in the blocklist directory."""

    def __init__(self, directory: Path, notifier: Notifier):
        self.directory = Path(directory)
        self.notifier = notifier
        self._sources: dict[str, BlocklistSource] = {}
        # name -> mtime of the file version whose structural error was reported
        self._reported: dict[str, Optional[int]] = {}
        self._lock = threading.RLock()

    @property
    def internal_path(self) -> Path:
        return self.path_for(INTERNAL_SOURCE_NAME)

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}{BLOCKLIST_SUFFIX}"

    def ensure_directory(self) -> None:
        """Create the blocklist directory and the writable list when missing."""
        try:
            if not self.directory.exists():
                self.directory.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created blocklist directory: {self.directory}")
            if not self.internal_path.exists():
                write_blocklist(self.internal_path, default_document(INTERNAL_SOURCE_NAME))
                logger.info(f"Internal blocklist not found, created {self.internal_path}")
                safe_notify(self.notifier, "Internal blocklist not found, created default", Severity.INFO)
        except OSError as exc:
            logger.error(f"Failed to prepare blocklist directory {self.directory}: {exc}")
            safe_notify(
                self.notifier,
                f"Failed to create blocklist directory: {exc}",
                Severity.ERROR,
            )

    def scan_sources(self) -> list[BlocklistSource]:
        """
        List every valid ``*.json`` blocklist in the directory.

        Files failing validation are left on disk but excluded from the
        result (and reported). The registry's view is replaced by the result.
        """
        try:
            paths = sorted(p for p in self.directory.glob(f"*{BLOCKLIST_SUFFIX}") if p.is_file())
        except OSError as exc:
            logger.error(f"Failed to read blocklist directory: {exc}")
            safe_notify(self.notifier, f"Failed to read blocklist directory: {exc}", Severity.ERROR)
            return []

        found: list[BlocklistSource] = []
        for path in paths:
            result = self.validate_source(path)
            if not result.valid:
                continue
            try:
                mtime = path.stat().st_mtime_ns
            except OSError:
                # Removed between listing and stat
                continue
            found.append(
                BlocklistSource(
                    name=path.stem,
                    path=path,
                    url=result.url,
                    version=result.version,
                    updated_at=result.updated_at,
                    description=result.description,
                    mtime=mtime,
                )
            )

        with self._lock:
            self._sources = {source.name: source for source in found}

        logger.info(
            "Found valid blocklist files: %s",
            ", ".join(source.file for source in found) or "none",
        )
        return found

    def validate_source(self, path: Path) -> ValidationResult:
        """
        Check that a blocklist file is structurally usable.

        Empty files and unparsable JSON are repaired in place with the
        minimal default document. A document without an acceptable origin URL
        is treated as a local read-only list; one with a URL must carry a
        ``tths`` array with at least one valid identifier when non-empty.
        """
        path = Path(path)
        name = path.stem
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error(f"Failed to read blocklist {path}: {exc}")
            safe_notify(self.notifier, f"Failed to read blocklist {path.name}: {exc}", Severity.ERROR)
            return ValidationResult(valid=False)

        if not raw.strip():
            logger.info(f"Blocklist {path} is empty, initializing")
            result = self._reset(path)
            if result.valid:
                safe_notify(
                    self.notifier,
                    f"Blocklist {path.name} was empty and has been initialized",
                    Severity.INFO,
                )
            return result

        try:
            document = json.loads(raw)
            if not isinstance(document, dict):
                raise SourceFormatError("top-level value is not an object")
        except (json.JSONDecodeError, SourceFormatError) as exc:
            logger.error(f"Failed to validate blocklist {path}: {exc}")
            safe_notify(
                self.notifier,
                f"Failed to validate blocklist {path.name}: {exc}. Resetting to default",
                Severity.ERROR,
            )
            return self._reset(path)

        url = document.get("url")
        version = str(document.get("version") or DEFAULT_VERSION)
        updated_at = document.get("updated_at") or utc_now_iso()
        description = str(document.get("description") or name)

        if not url or not is_valid_blocklist_url(url):
            logger.debug(f"Treating {path} as local read-only blocklist (URL: {url or 'none'})")
            self._forget_report(name)
            return ValidationResult(
                valid=True,
                url=None,
                version=version,
                updated_at=updated_at,
                description=description,
            )

        entries = document.get("tths")
        if not isinstance(entries, list):
            self._report_invalid(path, f"Invalid format in blocklist {path.name}: 'tths' is not an array")
            return ValidationResult(valid=False, url=url, version=version, updated_at=updated_at)

        has_valid = any(
            isinstance(item, dict) and is_valid_tth(item.get("tth")) for item in entries
        )
        if entries and not has_valid:
            self._report_invalid(path, f"No valid TTHs found in blocklist {path.name}")
            return ValidationResult(valid=False, url=url, version=version, updated_at=updated_at)

        self._forget_report(name)
        return ValidationResult(
            valid=True,
            url=url,
            version=version,
            updated_at=updated_at,
            description=description,
        )

    def _report_invalid(self, path: Path, message: str) -> None:
        """Report a structural error once per file version (name and mtime)."""
        mtime = file_mtime(path)
        with self._lock:
            if path.stem in self._reported and self._reported[path.stem] == mtime:
                logger.debug(f"{message} (already reported)")
                return
            self._reported[path.stem] = mtime
        logger.error(message)
        safe_notify(self.notifier, message, Severity.ERROR)

    def _forget_report(self, name: str) -> None:
        with self._lock:
            self._reported.pop(name, None)

    def _reset(self, path: Path) -> ValidationResult:
        """Overwrite ``path`` with the default document for its name."""
        document = default_document(path.stem)
        try:
            write_blocklist(path, document)
        except OSError as exc:
            logger.error(f"Failed to reset blocklist {path}: {exc}")
            safe_notify(self.notifier, f"Failed to reset blocklist {path.name}: {exc}", Severity.ERROR)
            return ValidationResult(valid=False)
        logger.info(f"Reset {path} to default structure")
        return ValidationResult(
            valid=True,
            url=document["url"],
            version=document["version"],
            updated_at=document["updated_at"],
            description=document["description"],
        )

    def find(self, name: str) -> Optional[BlocklistSource]:
        with self._lock:
            return self._sources.get(name)

    def sources(self) -> list[BlocklistSource]:
        with self._lock:
            return list(self._sources.values())

    def names(self) -> set[str]:
        with self._lock:
            return set(self._sources)

    def local_sources(self) -> list[BlocklistSource]:
        return [s for s in self.sources() if not s.is_remote]

    def remote_sources(self) -> list[BlocklistSource]:
        return [s for s in self.sources() if s.is_remote]

    def refresh(self, name: str) -> Optional[BlocklistSource]:
        """Re-validate one source and update (or drop) its registry record."""
        path = self.path_for(name)
        if not path.is_file():
            with self._lock:
                self._sources.pop(name, None)
            return None
        result = self.validate_source(path)
        mtime = file_mtime(path)
        if not result.valid or mtime is None:
            with self._lock:
                self._sources.pop(name, None)
            return None
        source = BlocklistSource(
            name=name,
            path=path,
            url=result.url,
            version=result.version,
            updated_at=result.updated_at,
            description=result.description,
            mtime=mtime,
        )
        with self._lock:
            self._sources[name] = source
        return source
