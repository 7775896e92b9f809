"""Tests for remote blocklist synchronization."""

import asyncio
import json

import aiohttp
import pytest

from conftest import make_tth, write_json
from tthblock.cache import MembershipCache
from tthblock.notifications import Severity
from tthblock.storage.models import BlocklistSource
from tthblock.storage.registry import SourceRegistry
from tthblock.sync.remote import FetchStatus, RemoteSynchronizer

RAW_URL = "https://raw.githubusercontent.com/example/lists/main/remote.json"


class _FakeResponse:
    def __init__(self, status: int, body: object = "", headers: dict | None = None, reason: str = ""):
        self.status = status
        self.reason = reason
        self.headers = {"Content-Type": "application/json"}
        self.headers.update(headers or {})
        self._body = body if isinstance(body, (str, bytes)) else json.dumps(body)

    async def text(self):
        if isinstance(self._body, bytes):
            return self._body.decode("utf-8")
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls: list[tuple[str, dict]] = []
        self.closed = False

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, dict(headers or {})))
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


class _StubSettings:
    def __init__(self, **flags):
        self.flags = flags

    def is_enabled(self, name: str) -> bool:
        return self.flags.get(name, True)

    def update_interval(self) -> int:
        return 60

    def register_sources(self, names):
        return []


def _install_session(monkeypatch, responses) -> _FakeSession:
    session = _FakeSession(responses)
    monkeypatch.setattr(aiohttp, "ClientSession", lambda *args, **kwargs: session)
    return session


def _document(version, tths):
    return {"url": RAW_URL, "version": version, "description": "remote", "tths": [{"tth": t} for t in tths]}


@pytest.fixture
def env(tmp_path, notifier):
    registry = SourceRegistry(tmp_path / "blocklists", notifier)
    registry.ensure_directory()
    write_json(registry.path_for("remote"), _document("1", [make_tth(1)]))
    registry.scan_sources()
    settings = _StubSettings()
    cache = MembershipCache(registry, notifier)
    cache.full_reload(settings.is_enabled)
    sync = RemoteSynchronizer(
        registry,
        cache,
        settings,
        notifier,
        retries=3,
        retry_delay=0,
        state_path=tmp_path / "data" / "sync_state.json",
    )
    return registry, cache, settings, sync


@pytest.mark.asyncio
async def test_changed_remote_is_written_and_reloaded(env, monkeypatch, notifier, tmp_path):
    registry, cache, _, sync = env
    _install_session(
        monkeypatch,
        [_FakeResponse(200, _document("2", [make_tth(2), make_tth(3)]), {"ETag": '"v2"'})],
    )

    (result,) = await sync.run_once()

    assert result.status is FetchStatus.UPDATED
    assert result.reloaded
    assert result.entries == 2
    assert not cache.query(make_tth(1))
    assert cache.query(make_tth(2))
    assert cache.version_of("remote") == "2"
    assert sync.etag_for("remote") == '"v2"'

    on_disk = json.loads(registry.path_for("remote").read_text(encoding="utf-8"))
    assert on_disk["version"] == "2"
    state = json.loads((tmp_path / "data" / "sync_state.json").read_text(encoding="utf-8"))
    assert state["etags"] == {"remote": '"v2"'}
    assert any("Updated blocklist remote.json" in t for t in notifier.texts(Severity.INFO))
    await sync.stop()


@pytest.mark.asyncio
async def test_not_modified_sends_etag_and_skips_write(env, monkeypatch):
    registry, cache, _, sync = env
    session = _install_session(
        monkeypatch,
        [
            _FakeResponse(200, _document("2", [make_tth(2)]), {"ETag": "e1"}),
            _FakeResponse(304),
        ],
    )
    await sync.run_once()
    before = registry.path_for("remote").read_text(encoding="utf-8")

    (result,) = await sync.run_once()

    assert result.status is FetchStatus.NOT_MODIFIED
    assert result.attempts == 1
    assert session.calls[1][1] == {"If-None-Match": "e1"}
    assert registry.path_for("remote").read_text(encoding="utf-8") == before
    assert cache.query(make_tth(2))
    await sync.stop()


@pytest.mark.asyncio
async def test_same_version_is_unchanged(env, monkeypatch):
    registry, cache, _, sync = env
    before = registry.path_for("remote").read_text(encoding="utf-8")
    _install_session(monkeypatch, [_FakeResponse(200, _document("1", [make_tth(9)]))])

    (result,) = await sync.run_once()

    assert result.status is FetchStatus.UNCHANGED
    assert registry.path_for("remote").read_text(encoding="utf-8") == before
    assert cache.query(make_tth(1))
    assert not cache.query(make_tth(9))
    await sync.stop()


@pytest.mark.asyncio
async def test_updated_at_is_used_without_version(env, monkeypatch):
    _, cache, _, sync = env
    document = _document("", [make_tth(4)])
    document["updated_at"] = "2024-05-01T00:00:00Z"
    _install_session(monkeypatch, [_FakeResponse(200, document, {"Content-Type": "text/plain; charset=utf-8"})])

    (result,) = await sync.run_once()

    assert result.status is FetchStatus.UPDATED
    assert cache.version_of("remote") == "2024-05-01T00:00:00Z"
    await sync.stop()


@pytest.mark.asyncio
async def test_exhausted_retries_keep_cached_set(env, monkeypatch, notifier):
    _, cache, _, sync = env
    session = _install_session(monkeypatch, [_FakeResponse(500, reason="Internal Server Error")])

    (result,) = await sync.run_once()

    assert result.status is FetchStatus.FAILED
    assert result.attempts == 3
    assert len(session.calls) == 3
    assert cache.query(make_tth(1))
    errors = notifier.texts(Severity.ERROR)
    assert len(errors) == 1
    assert "HTTP 500" in errors[0]

    # The next tick tries again on its own
    await sync.close()
    _install_session(monkeypatch, [_FakeResponse(200, _document("5", [make_tth(5)]))])
    (result,) = await sync.run_once()
    assert result.status is FetchStatus.UPDATED
    assert cache.query(make_tth(5))
    await sync.stop()


@pytest.mark.asyncio
async def test_transport_error_is_retried(env, monkeypatch):
    _, cache, _, sync = env
    session = _install_session(
        monkeypatch,
        [
            aiohttp.ClientConnectionError("refused"),
            _FakeResponse(200, _document("2", [make_tth(2)])),
        ],
    )

    (result,) = await sync.run_once()

    assert result.status is FetchStatus.UPDATED
    assert result.attempts == 2
    assert len(session.calls) == 2
    await sync.stop()


@pytest.mark.parametrize(
    "response, message",
    [
        (_FakeResponse(200, "<html></html>", {"Content-Type": "text/html"}), "Invalid content type"),
        (_FakeResponse(200, {"tths": "nope"}), "tths not an array"),
        (_FakeResponse(200, "{broken"), "Invalid JSON"),
        (
            _FakeResponse(200, b"\xff\xfe\x00garbage", {"Content-Type": "text/plain; charset=utf-8"}),
            "UnicodeDecodeError",
        ),
    ],
)
@pytest.mark.asyncio
async def test_bad_payloads_fail_after_retries(env, monkeypatch, notifier, response, message):
    _, cache, _, sync = env
    _install_session(monkeypatch, [response])

    (result,) = await sync.run_once()

    assert result.status is FetchStatus.FAILED
    assert message in result.message
    assert result.attempts == 3
    assert cache.query(make_tth(1))
    assert len(notifier.texts(Severity.ERROR)) == 1
    await sync.stop()


@pytest.mark.asyncio
async def test_unexpected_error_in_one_source_is_reported_as_failed(env, monkeypatch, notifier):
    _, cache, _, sync = env

    async def exploding_fetch(source):
        raise RuntimeError("resolver crashed")

    monkeypatch.setattr(sync, "fetch_with_retry", exploding_fetch)

    (result,) = await sync.run_once()

    assert result.status is FetchStatus.FAILED
    assert "resolver crashed" in result.message
    assert cache.query(make_tth(1))
    errors = notifier.texts(Severity.ERROR)
    assert len(errors) == 1
    assert "remote.json" in errors[0]
    await sync.stop()


@pytest.mark.asyncio
async def test_disabled_remote_is_not_fetched(env, monkeypatch):
    _, _, settings, sync = env
    settings.flags["remote"] = False
    session = _install_session(monkeypatch, [_FakeResponse(500)])

    assert await sync.run_once() == []
    assert session.calls == []
    await sync.stop()


@pytest.mark.asyncio
async def test_internal_and_invalid_urls_are_skipped(env, notifier, tmp_path):
    _, _, _, sync = env
    internal = BlocklistSource(name="internal_blocklist", path=tmp_path / "i.json", url="Internal")
    bad = BlocklistSource(name="bad", path=tmp_path / "b.json", url="https://example.com/list.json")

    assert (await sync.sync_source(internal)).status is FetchStatus.SKIPPED
    assert (await sync.sync_source(bad)).status is FetchStatus.SKIPPED
    assert (await sync.sync_source(bad)).status is FetchStatus.SKIPPED
    assert len(notifier.texts(Severity.ERROR)) == 1
    await sync.stop()


@pytest.mark.asyncio
async def test_etags_survive_restart(env, monkeypatch, notifier, tmp_path):
    registry, cache, settings, sync = env
    _install_session(monkeypatch, [_FakeResponse(200, _document("2", [make_tth(2)]), {"ETag": "keep"})])
    await sync.run_once()
    await sync.stop()

    restarted = RemoteSynchronizer(
        registry, cache, settings, notifier, state_path=tmp_path / "data" / "sync_state.json"
    )
    assert restarted.etag_for("remote") == "keep"


@pytest.mark.asyncio
async def test_schedule_replaces_previous_timer(env, monkeypatch):
    _, _, _, sync = env
    session = _install_session(monkeypatch, [_FakeResponse(304)])
    await sync._get_session()

    sync.schedule(5)
    first = sync._timer
    sync.schedule(0)
    second = sync._timer
    await asyncio.sleep(0)

    assert first.cancelled()
    assert not second.done()
    assert sync.interval_seconds == 60
    assert sync.is_scheduled

    await sync.stop()
    assert second.cancelled()
    assert not sync.is_scheduled
    assert session.closed

    sync.schedule(5)
    assert not sync.is_scheduled


@pytest.mark.asyncio
async def test_run_loop_survives_failing_pass(env, monkeypatch):
    _, _, _, sync = env
    calls = []

    async def failing_run_once():
        calls.append(1)
        raise RuntimeError("boom")

    monkeypatch.setattr(sync, "run_once", failing_run_once)

    task = asyncio.create_task(sync.run_loop(0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert len(calls) >= 2
