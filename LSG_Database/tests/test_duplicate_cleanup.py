import json

import pytest

from LSG_Database.governor import StorageGovernor
from LSG_Database.duplicate_cleanup import default_fingerprint
from LSG_Database.lsg_shared.types import DuplicateCleanupResult, DuplicateGroup


pytestmark = pytest.mark.asyncio


@pytest.fixture
def put(governor, clock):
    """Store ``record:{id}`` with the given payload, one second after the previous write."""
    def _put(record_id, **payload):
        clock.advance(1)
        governor.write(f"record:{record_id}", json.dumps({"id": record_id, "version": 1, "payload": payload}))
    return _put


def _coffee(**extra):
    return {"amount": 4.5, "description": "Coffee", "date": "2024-03-01", "category": "food", **extra}


# ── Fingerprint ──

@pytest.mark.parametrize("payload,expected", [
    (_coffee(), "4.50|coffee|2024-03-01|food"),
    ({"amount": "4.5", "name": "  COFFEE ", "date": "2024-03-01"}, "4.50|coffee|2024-03-01|"),
    ({"amount": 10}, "10.00|||"),
    ({"amount": None, "description": "x"}, None),
    ({"amount": "ten"}, None),
    ({"amount": True}, None),
])
async def test_default_fingerprint(payload, expected):
    assert default_fingerprint(payload) == expected


# ── Detection ──

async def test_groups_keep_oldest(governor, put):
    put("a", **_coffee())
    put("b", **_coffee())
    put("c", **_coffee(description="coffee "))
    put("lunch", amount=12, description="Lunch", date="2024-03-01")

    groups = governor.find_duplicates()

    assert groups == [DuplicateGroup(fingerprint="4.50|coffee|2024-03-01|food", keep="a", duplicates=["b", "c"])]


async def test_created_at_decides_oldest(governor, put):
    put("first-written", **_coffee(created_at="2024-03-02T10:00:00Z"))
    put("second-written", **_coffee(created_at="2024-03-01T09:00:00Z"))

    [group] = governor.find_duplicates()
    assert group.keep == "second-written"
    assert group.duplicates == ["first-written"]


async def test_non_record_and_unreadable_keys_ignored(governor, put):
    put("a", **_coffee())
    governor.write("cache:coffee", json.dumps({"payload": _coffee()}))
    governor.write("record:broken", "{{")
    governor.write("record:no-payload", json.dumps({"id": "no-payload"}))

    assert governor.find_duplicates() == []


async def test_custom_fingerprint(store, cfg, clock):
    gov = StorageGovernor(store, cfg, clock=clock, fingerprint=lambda p: p.get("ref"))
    for record_id, ref in [("x", "R1"), ("y", "R1"), ("z", None)]:
        clock.advance(1)
        gov.write(f"record:{record_id}", json.dumps({"id": record_id, "version": 1, "payload": {"ref": ref}}))

    assert [(g.keep, g.duplicates) for g in gov.find_duplicates()] == [("x", ["y"])]


# ── Cleanup ──

async def test_dry_run_by_default(governor, put):
    put("a", **_coffee())
    put("b", **_coffee())

    result = governor.cleanup_duplicates()

    assert isinstance(result, DuplicateCleanupResult)
    assert result.dry_run is True
    assert result.removed_ids == ["b"]
    assert governor.read("record:b") is not None
    assert governor.stats().count == 0


async def test_apply_removes_and_marks_auto_detect(governor, put):
    put("a", **_coffee())
    put("b", **_coffee())
    put("c", **_coffee())
    put("t1", amount=1, description="Tea")
    put("t2", amount=1, description="Tea")

    result = governor.cleanup_duplicates(dry_run=False)

    assert result.total_groups == 2
    assert result.total_duplicates == 3
    assert result.largest_group == 3
    assert result.processed_groups == 2
    assert sorted(result.removed_ids) == ["b", "c", "t2"]
    assert sorted(k for k in governor.store.keys() if k.startswith("record:")) == ["record:a", "record:t1"]
    assert governor.stats().by_reason == {"auto-detect": 3}


async def test_cap_limits_removals(governor, put):
    for record_id in "abcd":
        put(record_id, **_coffee())

    result = governor.cleanup_duplicates(dry_run=False, max_to_delete=2)

    assert result.total_duplicates == 3
    assert result.removed_ids == ["b", "c"]
    assert governor.read("record:d") is not None


async def test_zero_cap_processes_nothing(governor, put):
    put("a", **_coffee())
    put("b", **_coffee())
    result = governor.cleanup_duplicates(dry_run=False, max_to_delete=0)
    assert result.removed_ids == []
    assert result.processed_groups == 0


async def test_negative_cap_rejected(governor):
    with pytest.raises(ValueError):
        governor.cleanup_duplicates(max_to_delete=-1)


async def test_removed_duplicates_stay_out_after_sync(governor, source, put):
    put("a", **_coffee())
    put("b", **_coffee())
    governor.cleanup_duplicates(dry_run=False)

    source.batches.append([{"id": "b", "version": 2, "payload": _coffee()}])
    result = await governor.sync()

    assert result.skipped_duplicates == 1
    assert governor.read("record:b") is None
