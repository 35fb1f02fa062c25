from typing import Optional

from LSG_Database.lsg_shared.types import GovernorConfig, StorageEntry, UsageReport
from LSG_Database.lsg_db.record_store import RecordStore


class UsageAccounting:
    def __init__(self, store: RecordStore, cfg: GovernorConfig):
        self.store = store
        self.cfg = cfg

    def size_of(self, key: str) -> int:
        return self.store.size_of(key)

    def sizes_of(self, keys: list[str]) -> dict[str, int]:
        return self.store.sizes(keys)

    def all_key_sizes(self) -> dict[str, int]:
        return self.store.sizes(self.store.keys())

    def total_usage(self) -> int:
        return sum(self.all_key_sizes().values())

    def usage_percentage(self, total: Optional[int] = None) -> float:
        if total is None:
            total = self.total_usage()
        return min(100.0, total / self.cfg.ceiling_bytes * 100)

    def report(self, top_n: Optional[int] = None) -> UsageReport:
        if top_n is None:
            top_n = self.cfg.top_n

        sizes = self.all_key_sizes()
        total = sum(sizes.values())
        pct = self.usage_percentage(total)

        ranked = sorted(sizes.items(), key=lambda kv: (-kv[1], kv[0]))
        largest = [StorageEntry(key=k, size_bytes=s) for k, s in ranked[:max(top_n, 0)]]

        return UsageReport(
            total_usage_bytes=total,
            usage_percentage=round(pct, 2),
            is_approaching_quota=pct >= self.cfg.warn_threshold_pct,
            largest_entries=largest,
            ceiling_bytes=self.cfg.ceiling_bytes,
        )
