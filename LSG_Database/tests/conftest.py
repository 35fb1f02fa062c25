import inspect

import pytest
import fakeredis

from LSG_Database.governor import StorageGovernor
from LSG_Database.lsg_shared.types import GovernorConfig
from LSG_Database.lsg_db.record_store import RecordStore

START_MS = 1_700_000_000_000
DAY_MS = 86_400_000


class FakeClock:
    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class FakeSource:
    """Hands out queued batches; ``on_fetch`` runs while the reconciler is FETCHING."""

    def __init__(self, batches=None, error=None, on_fetch=None):
        self.batches = list(batches or [])
        self.error = error
        self.on_fetch = on_fetch
        self.calls = 0

    async def next_batch(self):
        self.calls += 1
        if self.on_fetch is not None:
            outcome = self.on_fetch()
            if inspect.isawaitable(outcome):
                await outcome
        if self.error is not None:
            raise self.error
        return self.batches.pop(0) if self.batches else []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store_client():
    r = fakeredis.FakeRedis()
    yield r
    r.flushdb()
    r.close()


@pytest.fixture
def store(store_client, clock):
    return RecordStore(store_client, capacity_bytes=2000, clock=clock)


@pytest.fixture
def cfg():
    return GovernorConfig(
        ceiling_bytes=2000,
        disposable_prefixes={"cache:": 3600},
        retention_seconds=30 * 86400,
        top_n=5,
    )


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def governor(store, cfg, source, clock):
    return StorageGovernor(store, cfg, source=source, clock=clock)


@pytest.fixture
def record():
    def _record(record_id, version, **payload):
        return {"id": record_id, "version": version, "payload": payload or {"amount": 1}}
    return _record
