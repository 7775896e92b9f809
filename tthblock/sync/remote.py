"""Periodic mirroring of remote blocklists."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import aiohttp

from ..cache import MembershipCache
from ..constants import (
    ACCEPTED_CONTENT_TYPES,
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_SYNC_RETRIES,
    DEFAULT_SYNC_RETRY_DELAY,
    INTERNAL_MARKER,
    MIN_UPDATE_INTERVAL_MINUTES,
)
from ..errors import FetchError
from ..notifications import Notifier, Severity, safe_notify
from ..settings import SettingsProvider
from ..storage.models import BlocklistSource, change_token
from ..storage.registry import SourceRegistry
from ..utils.files import write_blocklist
from ..utils.urls import is_valid_blocklist_url

logger = logging.getLogger(__name__)


class FetchStatus(str, Enum):
    """Outcome of one remote blocklist update."""

    UPDATED = "updated"  # New content written to disk
    NOT_MODIFIED = "not_modified"  # HTTP 304
    UNCHANGED = "unchanged"  # HTTP 200 but same version token
    SKIPPED = "skipped"  # Internal list or unusable URL
    FAILED = "failed"  # Retries exhausted


@dataclass
class FetchResult:
    """Result of synchronizing a single source."""

    source: str
    status: FetchStatus
    attempts: int = 0
    version: Optional[str] = None
    entries: int = 0
    message: str = ""
    reloaded: bool = False


class RemoteSynchronizer:
    """Fetches remote blocklists on a timer and reconciles changed ones."""

    def __init__(
        self,
        registry: SourceRegistry,
        cache: MembershipCache,
        settings: SettingsProvider,
        notifier: Notifier,
        *,
        retries: int = DEFAULT_SYNC_RETRIES,
        retry_delay: float = DEFAULT_SYNC_RETRY_DELAY,
        fetch_timeout: int = DEFAULT_FETCH_TIMEOUT,
        state_path: Path | None = None,
    ):
        self.registry = registry
        self.cache = cache
        self.settings = settings
        self.notifier = notifier
        self.retries = max(1, int(retries))
        self.retry_delay = max(0.0, float(retry_delay))
        self.fetch_timeout = fetch_timeout
        self.state_path = state_path

        self._etags: dict[str, str] = {}
        self._reported_bad_urls: set[str] = set()
        self._session: aiohttp.ClientSession | None = None
        self._timer: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._interval_seconds: int | None = None
        self._stopped = False
        self._load_state()

    def _load_state(self) -> None:
        path = self.state_path
        if not path or not path.exists():
            return
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            etags = data.get("etags", {})
            if isinstance(etags, dict):
                for name, etag in etags.items():
                    if isinstance(name, str) and isinstance(etag, str) and etag:
                        self._etags[name] = etag
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Blocklist sync: failed to load state from %s: %s", path, e)

    def _save_state(self) -> None:
        path = self.state_path
        if not path:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = {"version": 1, "etags": self._etags}
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Blocklist sync: failed to save state to %s: %s", path, e)

    def etag_for(self, name: str) -> Optional[str]:
        return self._etags.get(name)

    @property
    def interval_seconds(self) -> int | None:
        return self._interval_seconds

    @property
    def is_scheduled(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, interval_minutes: int) -> None:
        """(Re)start the update timer; any previous timer is cancelled first."""
        if self._stopped:
            logger.info("Blocklist sync stopped; not scheduling updates")
            return
        if self._timer and not self._timer.done():
            self._timer.cancel()
            logger.info("Cleared previous update interval")

        minutes = max(MIN_UPDATE_INTERVAL_MINUTES, int(interval_minutes))
        self._interval_seconds = minutes * 60
        self._timer = asyncio.create_task(self.run_loop(self._interval_seconds))
        logger.info(f"Scheduled blocklist updates every {minutes} minutes")

    async def run_loop(self, interval_seconds: float) -> None:
        """Run an update pass every ``interval_seconds`` until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            logger.info("Checking for remote blocklist updates")
            tick = asyncio.create_task(self.run_once())
            self._inflight.add(tick)
            tick.add_done_callback(self._inflight.discard)
            try:
                # Shielded so stop() lets an in-flight pass finish on its own
                await asyncio.shield(tick)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Blocklist update pass failed: {e}")

    async def stop(self) -> None:
        """Cancel the timer, wait for in-flight passes, close the session."""
        self._stopped = True
        timer = self._timer
        self._timer = None
        if timer:
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)
            logger.info("Cleared update interval on stop")
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self.close()

    # ------------------------------------------------------------------
    # Update passes
    # ------------------------------------------------------------------

    async def run_once(self) -> list[FetchResult]:
        """Synchronize every enabled remote source once, concurrently."""
        targets: list[BlocklistSource] = []
        for source in self.registry.remote_sources():
            try:
                enabled = self.settings.is_enabled(source.name)
            except Exception as e:
                logger.error(f"Settings unavailable for {source.file}, skipping update: {e}")
                safe_notify(
                    self.notifier,
                    f"Settings are unavailable, skipping update of {source.file}",
                    Severity.ERROR,
                )
                continue
            if enabled:
                targets.append(source)
            else:
                logger.debug(f"Blocklist {source.file} disabled, skipping update")

        if not targets:
            return []

        outcomes = await asyncio.gather(
            *(self.sync_source(s) for s in targets), return_exceptions=True
        )

        results: list[FetchResult] = []
        for source, outcome in zip(targets, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(f"Unexpected error updating {source.file}: {outcome!r}")
                safe_notify(
                    self.notifier,
                    f"Failed to update blocklist {source.file}: {outcome}",
                    Severity.ERROR,
                )
                outcome = FetchResult(
                    source=source.name, status=FetchStatus.FAILED, message=str(outcome)
                )
            results.append(outcome)

        by_status: dict[str, int] = {}
        for r in results:
            by_status[r.status.value] = by_status.get(r.status.value, 0) + 1
        logger.info(f"Blocklist update pass: {by_status}")
        return results

    async def sync_source(self, source: BlocklistSource) -> FetchResult:
        """Fetch one source and reconcile it when its content changed."""
        if source.url == INTERNAL_MARKER:
            logger.debug(f"Skipping update for {source.file} (Internal)")
            return FetchResult(source=source.name, status=FetchStatus.SKIPPED)

        if not is_valid_blocklist_url(source.url):
            if source.url not in self._reported_bad_urls:
                self._reported_bad_urls.add(source.url)
                logger.error(f"Invalid URL for {source.file}: {source.url}, skipping update")
                safe_notify(
                    self.notifier,
                    f"Invalid URL for blocklist {source.file}: {source.url}",
                    Severity.ERROR,
                )
            return FetchResult(source=source.name, status=FetchStatus.SKIPPED, message="invalid url")

        result = await self.fetch_with_retry(source)
        if result.status is FetchStatus.UPDATED:
            result.reloaded = await asyncio.to_thread(
                self.cache.reconcile_one, source.name, self.settings.is_enabled, True
            )
        return result

    async def fetch_with_retry(self, source: BlocklistSource) -> FetchResult:
        """
        Fetch ``source`` with a fixed number of attempts and a fixed delay.

        Failures after the last attempt are reported once; the cached
        identifiers of the source are left untouched.
        """
        last_error = ""
        attempt = 0
        for attempt in range(1, self.retries + 1):
            try:
                logger.info(f"Fetching {source.file} from {source.url} (attempt {attempt}/{self.retries})")
                result = await self._fetch_once(source)
                result.attempts = attempt
                return result
            except FetchError as e:
                last_error = str(e)
                logger.error(
                    f"Failed to update {source.file} from {source.url} "
                    f"(attempt {attempt}/{self.retries}): {e}"
                )
                if not e.retryable:
                    break
                if attempt < self.retries:
                    logger.info(f"Retrying {source.file} in {self.retry_delay}s")
                    await asyncio.sleep(self.retry_delay)

        safe_notify(
            self.notifier,
            f"Failed to update blocklist {source.file}: {last_error}",
            Severity.ERROR,
        )
        return FetchResult(
            source=source.name,
            status=FetchStatus.FAILED,
            attempts=attempt,
            message=last_error,
        )

    async def _fetch_once(self, source: BlocklistSource) -> FetchResult:
        headers = {}
        etag = self._etags.get(source.name)
        if etag:
            headers["If-None-Match"] = etag

        session = await self._get_session()
        try:
            async with session.get(
                source.url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.fetch_timeout),
            ) as resp:
                if resp.status == 304:
                    logger.info(f"No changes for {source.file} (HTTP 304: Not Modified)")
                    return FetchResult(source=source.name, status=FetchStatus.NOT_MODIFIED)
                if not 200 <= resp.status < 300:
                    raise FetchError(f"HTTP {resp.status}: {resp.reason or ''}".rstrip(": "))
                content_type = resp.headers.get("Content-Type", "") or ""
                if not any(accepted in content_type for accepted in ACCEPTED_CONTENT_TYPES):
                    raise FetchError(
                        f"Invalid content type: {content_type or 'none'}, "
                        "expected application/json or text/plain"
                    )
                text = await resp.text()
                new_etag = resp.headers.get("ETag") or ""
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            raise FetchError(f"{type(e).__name__}: {e}") from e

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise FetchError(f"Invalid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("tths"), list):
            raise FetchError("Invalid JSON format: tths not an array")

        new_version = change_token(data)
        old_version = self.cache.version_of(source.name)
        if new_version and new_version == old_version:
            logger.info(f"No version change for {source.file} (version: {new_version})")
            return FetchResult(
                source=source.name,
                status=FetchStatus.UNCHANGED,
                version=new_version,
                entries=len(data["tths"]),
            )

        try:
            await asyncio.to_thread(write_blocklist, source.path, data)
            size = source.path.stat().st_size
        except OSError as e:
            raise FetchError(f"Failed to write {source.path}: {e}", retryable=False) from e

        if new_etag:
            self._etags[source.name] = new_etag
        else:
            self._etags.pop(source.name, None)
        self._save_state()
        self.cache.record_version(source.name, new_version)

        logger.info(
            f"Updated {source.file} from {source.url} "
            f"(version: {new_version or 'none'}, size: {size} bytes, "
            f"description: {data.get('description') or 'none'})"
        )
        safe_notify(
            self.notifier,
            f"Updated blocklist {source.file} from {source.url} with {len(data['tths'])} TTH(s) "
            f"(version: {new_version or 'none'}, size: {size} bytes)",
            Severity.INFO,
        )
        return FetchResult(
            source=source.name,
            status=FetchStatus.UPDATED,
            version=new_version,
            entries=len(data["tths"]),
        )
