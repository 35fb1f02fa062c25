"""
StorageGovernor: one instance per process, wires the quota and duplicate
subsystems around an injected Record Store and (optional) Sync Source.

    store writes  → QuotaMonitor.guarded_write → EvictionEngine on breach
    sync cycles   → SyncReconciler → DuplicateRegistry filter → guarded_write

The diagnostic surface (report, stats, manual cleanup tiers, duplicate
detection) is exposed as plain methods for operator tooling.
"""

import logging
from typing import Callable, Optional

from LSG_Database.lsg_shared import config, errors
from LSG_Database.lsg_shared.types import (
    DuplicateCleanupResult, DuplicateEntry, DuplicateGroup, EvictionResult, GovernorConfig,
    RegistryStats, SyncResult, UsageReport,
)
from LSG_Database.lsg_db.record_store import RecordStore
from LSG_Database.lsg_db.usage import UsageAccounting
from LSG_Database.lsg_db.eviction import EvictionEngine
from LSG_Database.lsg_db.quota_monitor import QuotaMonitor
from LSG_Database.lsg_db.duplicate_registry import DuplicateRegistry
from LSG_Database.lsg_server.sync_source import SyncSource
from LSG_Database.sync_reconciler import SyncReconciler
from LSG_Database.duplicate_cleanup import DuplicateDetector, Fingerprint, default_fingerprint

logger = logging.getLogger(__name__)


class StorageGovernor:
    def __init__(
        self,
        store: RecordStore,
        cfg: Optional[GovernorConfig] = None,
        source: Optional[SyncSource] = None,
        clock: Optional[Callable[[], int]] = None,
        fingerprint: Fingerprint = default_fingerprint,
    ):
        self.cfg = (cfg or GovernorConfig()).validate()
        self.store = store
        if clock is not None:
            self.store.clock = clock
        if store.capacity_bytes > self.cfg.ceiling_bytes:
            # writes past the ceiling are refused by the store itself
            store.capacity_bytes = self.cfg.ceiling_bytes

        self.usage = UsageAccounting(store, self.cfg)
        self.eviction = EvictionEngine(store, self.usage, self.cfg)
        self.monitor = QuotaMonitor(store, self.usage, self.eviction, self.cfg)
        self.registry = DuplicateRegistry(
            store,
            writer=self.monitor.guarded_write,
            retention_seconds=self.cfg.retention_seconds,
        )
        self.detector = DuplicateDetector(store, self.registry, self.cfg, fingerprint)
        self.reconciler: Optional[SyncReconciler] = None
        if source is not None:
            self.attach_source(source)

    def attach_source(self, source: SyncSource) -> SyncReconciler:
        self.reconciler = SyncReconciler(source, self.registry, self.monitor, self.store, self.cfg)
        return self.reconciler

    # ─── Record Access ───

    def write(self, key: str, value: str | bytes) -> bool:
        return self.monitor.guarded_write(key, value)

    def read(self, key: str) -> Optional[bytes]:
        return self.store.get(key)

    def remove(self, key: str) -> bool:
        return self.store.delete(key)

    def remove_duplicate(self, record_id: str, reason: str = "user-merge",
                         retention_seconds: Optional[float] = None) -> DuplicateEntry:
        """Delete a local record found to be a duplicate and keep it from syncing back."""
        entry = self.registry.mark_cleaned(record_id, reason, retention_seconds)
        self.store.delete(f"{self.cfg.record_key_prefix}{record_id}")
        logger.info("removed duplicate %s (%s)", record_id, reason)
        return entry

    def find_duplicates(self) -> list[DuplicateGroup]:
        return self.detector.scan()

    def cleanup_duplicates(self, dry_run: bool = True,
                           max_to_delete: int = config.DUPLICATE_CLEANUP_MAX) -> DuplicateCleanupResult:
        """Keep the oldest record of each duplicate group; the rest are removed as ``auto-detect``."""
        return self.detector.cleanup(dry_run=dry_run, max_to_delete=max_to_delete)

    def is_storage_available(self) -> bool:
        check_key = f"{config.WRITE_CHECK_KEY_PREFIX}{self.store.clock()}"
        try:
            self.store.set(check_key, "test")
        except (errors.CapacityExceededError, errors.StoreUnavailableError):
            return False
        self.store.delete(check_key)
        return True

    # ─── Diagnostics ───

    def report(self, top_n: Optional[int] = None) -> UsageReport:
        return self.usage.report(top_n)

    def state(self) -> str:
        return self.monitor.evaluate()

    def stats(self) -> RegistryStats:
        return self.registry.stats()

    def purge_expired(self) -> int:
        return self.registry.purge_expired()

    def standard_cleanup(self) -> EvictionResult:
        return self.eviction.standard_cleanup()

    def emergency_cleanup(self) -> EvictionResult:
        return self.eviction.emergency_cleanup()

    def destructive_cleanup(self, confirm: bool = False) -> EvictionResult:
        return self.eviction.destructive_cleanup(confirm=confirm)

    def run_cleanup(self, tier: str, confirm: bool = False) -> EvictionResult:
        return self.eviction.run_tier(tier, confirm=confirm)

    def plan_cleanup(self, tier: str) -> EvictionResult:
        return self.eviction.plan(tier)

    # ─── Sync ───

    async def sync(self) -> SyncResult:
        if self.reconciler is None:
            raise errors.SourceUnavailableError("no sync source attached")
        return await self.reconciler.run_cycle()

    def cancel_sync(self) -> bool:
        return self.reconciler is not None and self.reconciler.cancel()
