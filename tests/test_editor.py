"""Tests for appending identifiers to the internal blocklist."""

import json
import threading

import pytest

from conftest import make_tth, write_json
from tthblock.cache import MembershipCache
from tthblock.constants import INTERNAL_SOURCE_NAME
from tthblock.editor import LocalEditor
from tthblock.notifications import Severity
from tthblock.storage.registry import SourceRegistry
from tthblock.utils.files import file_mtime


class _StubSettings:
    def __init__(self, internal_enabled: bool = True):
        self.internal_enabled = internal_enabled

    def is_enabled(self, name: str) -> bool:
        if name == INTERNAL_SOURCE_NAME:
            return self.internal_enabled
        return True

    def update_interval(self) -> int:
        return 60

    def register_sources(self, names):
        return []


@pytest.fixture
def setup(tmp_path, notifier):
    registry = SourceRegistry(tmp_path / "blocklists", notifier)
    registry.ensure_directory()
    registry.scan_sources()
    cache = MembershipCache(registry, notifier)
    settings = _StubSettings()
    cache.full_reload(settings.is_enabled)
    editor = LocalEditor(registry, cache, settings, notifier)
    return registry, cache, settings, editor


def _internal_document(registry):
    return json.loads(registry.internal_path.read_text(encoding="utf-8"))


def test_append_blocks_immediately_and_persists(setup, notifier):
    registry, cache, _, editor = setup
    tth = make_tth(1)

    result = editor.append_entries([tth], comment="spam")

    assert result.count == 1
    assert cache.query(tth)
    assert cache.identifiers_for(INTERNAL_SOURCE_NAME) == {tth}
    document = _internal_document(registry)
    assert document["tths"][0]["tth"] == tth
    assert document["tths"][0]["comment"] == "spam"
    assert document["tths"][0]["timestamp"].endswith("Z")
    assert document["updated_at"] == document["tths"][0]["timestamp"]
    assert any(text.startswith("Added 1 TTH(s)") for text in notifier.texts(Severity.INFO))


def test_append_records_mtime_so_reconcile_is_noop(setup):
    registry, cache, settings, editor = setup
    editor.append_entries([make_tth(1)])

    assert cache.last_processed_mtime(INTERNAL_SOURCE_NAME) == registry.internal_path.stat().st_mtime_ns
    assert not cache.reconcile_one(INTERNAL_SOURCE_NAME, settings.is_enabled)
    assert cache.query(make_tth(1))


def test_append_skips_duplicates_and_invalid(setup, notifier):
    registry, cache, _, editor = setup
    editor.append_entries([make_tth(1)])

    result = editor.append_entries([make_tth(1), "not-a-tth", make_tth(2), make_tth(2)])

    assert result.added == [make_tth(2)]
    assert result.duplicates == [make_tth(1), make_tth(2)]
    assert result.rejected == ["not-a-tth"]
    assert [e["tth"] for e in _internal_document(registry)["tths"]] == [make_tth(1), make_tth(2)]


def test_append_skips_identifiers_blocked_by_other_lists(setup, notifier):
    registry, cache, settings, editor = setup
    write_json(registry.path_for("other"), {"tths": [{"tth": make_tth(3)}]})
    registry.scan_sources()
    cache.reconcile_one("other", settings.is_enabled)

    result = editor.append_entries([make_tth(3)])

    assert result.count == 0
    assert any("No valid TTHs to add" in text for text in notifier.texts(Severity.WARNING))
    assert _internal_document(registry)["tths"] == []


def test_append_with_internal_disabled_warns(setup, notifier):
    registry, cache, settings, editor = setup
    settings.internal_enabled = False

    result = editor.append_entries([make_tth(1)])

    assert result.count == 0
    assert not cache.query(make_tth(1))
    assert any("Internal blocklist is disabled" in text for text in notifier.texts(Severity.WARNING))


def test_append_recovers_from_corrupt_internal_file(setup):
    registry, cache, _, editor = setup
    registry.internal_path.write_text("{broken", encoding="utf-8")

    result = editor.append_entries([make_tth(4)])

    assert result.count == 1
    document = _internal_document(registry)
    assert document["url"] == "Internal"
    assert [e["tth"] for e in document["tths"]] == [make_tth(4)]


def test_append_write_failure_leaves_cache_untouched(setup, notifier, monkeypatch):
    _, cache, _, editor = setup

    def failing_write(path, data):
        raise OSError("disk full")

    monkeypatch.setattr("tthblock.editor.write_blocklist", failing_write)

    result = editor.append_entries([make_tth(5)])

    assert result.count == 0
    assert not cache.query(make_tth(5))
    assert any("disk full" in text for text in notifier.texts(Severity.ERROR))


def test_append_during_full_reload_is_kept(setup, monkeypatch):
    registry, cache, settings, editor = setup
    real_parse = cache._parse
    appender = threading.Thread(target=editor.append_entries, args=([make_tth(9)],))

    def parse_then_append(source):
        parsed = real_parse(source)
        if source.name == INTERNAL_SOURCE_NAME and appender.ident is None:
            # The append lands between this read and the publish
            appender.start()
            appender.join(timeout=0.2)
        return parsed

    monkeypatch.setattr(cache, "_parse", parse_then_append)

    cache.full_reload(settings.is_enabled)
    appender.join(timeout=5)

    assert not appender.is_alive()
    assert cache.query(make_tth(9))
    assert make_tth(9) in cache.identifiers_for(INTERNAL_SOURCE_NAME)
    assert cache.last_processed_mtime(INTERNAL_SOURCE_NAME) == file_mtime(registry.internal_path)
