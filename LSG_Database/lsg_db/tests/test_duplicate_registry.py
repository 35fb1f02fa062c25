import json
import logging

import pytest

from LSG_Database.lsg_shared import errors, config
from LSG_Database.lsg_shared.types import DuplicateEntry, RegistryStats
from LSG_Database.lsg_db.duplicate_registry import DuplicateRegistry

DAY = 86400


# ── Mark / Query ──

def test_mark_cleaned_creates_entry(registry, clock):
    entry = registry.mark_cleaned("txn-1", "user-merge")
    assert isinstance(entry, DuplicateEntry)
    assert entry.cleaned_at == clock.now
    assert entry.expires_at == clock.now + 7 * DAY * 1000
    assert registry.is_recently_cleaned("txn-1") is True


def test_unknown_id_not_cleaned(registry):
    assert registry.is_recently_cleaned("txn-404") is False


def test_cleaned_for_whole_retention_window(registry, clock):
    t = clock.now
    registry.mark_cleaned("txn-1", "auto-detect", retention_seconds=30 * DAY)
    end = t + 30 * DAY * 1000

    assert registry.is_recently_cleaned("txn-1", now=t)
    assert registry.is_recently_cleaned("txn-1", now=t + 15 * DAY * 1000)
    assert registry.is_recently_cleaned("txn-1", now=end)
    assert not registry.is_recently_cleaned("txn-1", now=end + 1)

    assert registry.purge_expired(now=end + 1) == 1
    assert not registry.is_recently_cleaned("txn-1", now=t)


def test_mark_again_refreshes_expiry(registry, clock):
    first = registry.mark_cleaned("txn-1", "user-merge")
    clock.advance(DAY)
    second = registry.mark_cleaned("txn-1", "user-merge")
    assert second.expires_at == first.expires_at + DAY * 1000
    assert len(registry.entries()) == 1


def test_invalid_reason_raises(registry):
    with pytest.raises(errors.InvalidDuplicateReasonError):
        registry.mark_cleaned("txn-1", "duplicate_cleanup")


def test_empty_record_id_rejected(registry):
    with pytest.raises(ValueError):
        registry.mark_cleaned("", "user-merge")


def test_batch_lookup(registry):
    registry.mark_cleaned("txn-1", "user-merge")
    registry.mark_cleaned("txn-2", "auto-detect")
    assert registry.recently_cleaned(["txn-1", "txn-3"]) == {"txn-1"}


# ── Refresh ──

def test_refresh_extends_known_ids_only(registry, clock):
    registry.mark_cleaned("txn-1", "user-merge")
    clock.advance(2 * DAY)
    assert registry.refresh(["txn-1", "txn-unknown"]) == 1
    assert registry.entries()["txn-1"].expires_at == clock.now + 7 * DAY * 1000
    assert "txn-unknown" not in registry.entries()


def test_refresh_never_shortens(registry):
    registry.mark_cleaned("txn-1", "user-merge", retention_seconds=30 * DAY)
    before = registry.entries()["txn-1"].expires_at
    assert registry.refresh(["txn-1"], retention_seconds=DAY) == 0
    assert registry.entries()["txn-1"].expires_at == before


# ── Purge ──

def test_purge_keeps_live_entries(registry, clock):
    registry.mark_cleaned("old", "user-merge", retention_seconds=DAY)
    registry.mark_cleaned("new", "user-merge", retention_seconds=10 * DAY)
    clock.advance(2 * DAY)
    assert registry.purge_expired() == 1
    assert set(registry.entries()) == {"new"}


def test_purge_to_empty_frees_reserved_key(registry, store, clock):
    registry.mark_cleaned("txn-1", "user-merge", retention_seconds=DAY)
    assert store.get(config.REGISTRY_KEY) is not None
    clock.advance(2 * DAY)
    registry.purge_expired()
    assert store.get(config.REGISTRY_KEY) is None


def test_purge_nothing_does_not_write(registry, store):
    assert registry.purge_expired() == 0
    assert store.get(config.REGISTRY_KEY) is None


# ── Persistence ──

def test_blob_is_single_reserved_key(registry, store):
    registry.mark_cleaned("txn-1", "user-merge")
    registry.mark_cleaned("txn-2", "auto-detect")
    assert store.keys() == [config.REGISTRY_KEY]
    doc = json.loads(store.get(config.REGISTRY_KEY))
    assert doc["format"] == config.REGISTRY_FORMAT_VERSION
    assert set(doc["entries"]) == {"txn-1", "txn-2"}


def test_survives_new_instance(registry, store, clock):
    registry.mark_cleaned("txn-1", "user-merge")
    other = DuplicateRegistry(store, clock=clock)
    assert other.is_recently_cleaned("txn-1")


@pytest.mark.parametrize("blob", [
    b"not json{",
    b"\xff\xfe\x00",
    b"[]",
    b'{"format": 1}',
    b'{"format": 99, "entries": {}}',
    b'{"format": 1, "entries": {"txn-1": {"cleaned_at": "x", "reason": "user-merge", "expires_at": 1}}}',
    b'{"format": 1, "entries": {"txn-1": 5}}',
])
def test_corrupt_blob_reads_as_empty(registry, store, caplog, blob):
    store.set(config.REGISTRY_KEY, blob)
    with caplog.at_level(logging.WARNING):
        assert registry.entries() == {}
        assert registry.is_recently_cleaned("txn-1") is False
    assert "RegistryCorrupt" in caplog.text


def test_corrupt_blob_is_replaced_on_next_write(registry, store):
    store.set(config.REGISTRY_KEY, b"garbage")
    registry.mark_cleaned("txn-9", "auto-detect")
    assert set(registry.entries()) == {"txn-9"}


def test_evicted_registry_reads_as_empty(registry, store):
    registry.mark_cleaned("txn-1", "user-merge")
    store.delete(config.REGISTRY_KEY)
    assert registry.is_recently_cleaned("txn-1") is False


def test_writes_go_through_injected_writer(store, clock):
    calls = []

    def writer(key, value):
        calls.append(key)
        return store.set(key, value)

    registry = DuplicateRegistry(store, writer=writer, clock=clock)
    registry.mark_cleaned("txn-1", "user-merge")
    assert calls == [config.REGISTRY_KEY]


def test_clear_removes_everything(registry):
    registry.mark_cleaned("txn-1", "user-merge")
    assert registry.clear() is True
    assert registry.entries() == {}


# ── Stats ──

def test_stats_empty(registry):
    s = registry.stats()
    assert s == RegistryStats(count=0, oldest_entry_age_ms=None, newest_entry_age_ms=None,
                              by_reason={}, recent_24h=0)


def test_stats_ages_and_reasons(registry, clock):
    registry.mark_cleaned("txn-1", "user-merge")
    clock.advance(2 * DAY)
    registry.mark_cleaned("txn-2", "auto-detect")
    clock.advance(3600)
    registry.mark_cleaned("txn-3", "auto-detect")

    s = registry.stats()
    assert s.count == 3
    assert s.oldest_entry_age_ms == (2 * DAY + 3600) * 1000
    assert s.newest_entry_age_ms == 0
    assert s.by_reason == {"user-merge": 1, "auto-detect": 2}
    assert s.recent_24h == 2


# ── Fractional retention ──

def test_fractional_retention_keeps_registry_readable(registry, clock):
    registry.mark_cleaned("txn-1", "user-merge")
    entry = registry.mark_cleaned("txn-2", "user-merge", retention_seconds=1.5 * DAY)

    assert isinstance(entry.expires_at, int)
    assert entry.expires_at == clock.now + int(1.5 * DAY * 1000)
    assert registry.is_recently_cleaned("txn-1")
    assert registry.is_recently_cleaned("txn-2")


def test_fractional_refresh_stores_int(registry, clock):
    registry.mark_cleaned("txn-1", "user-merge", retention_seconds=DAY)
    registry.refresh(["txn-1"], retention_seconds=2.25 * DAY)
    assert isinstance(registry.entries()["txn-1"].expires_at, int)


def test_float_timestamps_in_blob_are_accepted(registry, store, clock):
    store.set(config.REGISTRY_KEY, json.dumps({
        "format": 1,
        "entries": {"txn-1": {"cleaned_at": clock.now + 0.5, "reason": "auto-detect",
                              "expires_at": clock.now + 1000.5}},
    }))
    entry = registry.entries()["txn-1"]
    assert entry.expires_at == clock.now + 1000
    assert registry.is_recently_cleaned("txn-1")


def test_non_finite_timestamp_is_corrupt(registry, store, caplog):
    store.set(config.REGISTRY_KEY, b'{"format": 1, "entries": {"txn-1": '
                                   b'{"cleaned_at": 1, "reason": "user-merge", "expires_at": Infinity}}}')
    with caplog.at_level(logging.WARNING):
        assert registry.entries() == {}
    assert "RegistryCorrupt" in caplog.text
