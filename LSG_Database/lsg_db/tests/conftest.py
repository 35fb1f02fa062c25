import pytest
import fakeredis

from LSG_Database.lsg_shared.types import GovernorConfig
from LSG_Database.lsg_db.record_store import RecordStore
from LSG_Database.lsg_db.usage import UsageAccounting
from LSG_Database.lsg_db.eviction import EvictionEngine
from LSG_Database.lsg_db.quota_monitor import QuotaMonitor
from LSG_Database.lsg_db.duplicate_registry import DuplicateRegistry

START_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


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
def cfg():
    return GovernorConfig(
        warn_threshold_pct=80.0,
        critical_threshold_pct=90.0,
        ceiling_bytes=1000,
        disposable_prefixes={"cache:": 3600, "syncStatus": 0},
        top_n=3,
    ).validate()


@pytest.fixture
def store(store_client, clock):
    return RecordStore(store_client, capacity_bytes=1000, clock=clock)


@pytest.fixture
def usage(store, cfg):
    return UsageAccounting(store, cfg)


@pytest.fixture
def eviction(store, usage, cfg):
    return EvictionEngine(store, usage, cfg)


@pytest.fixture
def monitor(store, usage, eviction, cfg):
    return QuotaMonitor(store, usage, eviction, cfg)


@pytest.fixture
def registry(store, clock):
    return DuplicateRegistry(store, retention_seconds=7 * 86400, clock=clock)


@pytest.fixture
def fill():
    """Write ``{key: size}`` straight into the store as filler bytes."""
    def _fill(target: RecordStore, sizes: dict[str, int]) -> None:
        for key, size in sizes.items():
            target.set(key, b"x" * size)
    return _fill
