"""
Tiered eviction against the Record Store.

    STANDARD     stale disposable caches only, oldest first
    EMERGENCY    everything except essential keys (the duplicate registry goes too)
    DESTRUCTIVE  everything except the auth/session subset, confirmation required

Candidates are always taken in store order (lexical key order), except the
standard tier which orders by last write time. Every tier is idempotent.
"""

import logging

from LSG_Database.lsg_shared import config, errors
from LSG_Database.lsg_shared.types import EvictionResult, GovernorConfig
from LSG_Database.lsg_db.record_store import RecordStore
from LSG_Database.lsg_db.usage import UsageAccounting

logger = logging.getLogger(__name__)


class EvictionEngine:
    def __init__(self, store: RecordStore, usage: UsageAccounting, cfg: GovernorConfig):
        self.store = store
        self.usage = usage
        self.cfg = cfg

    def _validate_tier(self, tier: str) -> str:
        tier = tier.upper()
        if tier not in config.VALID_EVICTION_TIERS:
            raise errors.InvalidEvictionTierError(tier)
        return tier

    def _standard_candidates(self) -> list[str]:
        now = self.store.clock()
        aged: list[tuple[int, str]] = []

        for key in self.store.keys():
            if self.cfg.is_essential(key):
                continue
            freshness = self.cfg.disposable_freshness(key)
            if freshness is None:
                continue

            written = self.store.written_at(key)
            if written is not None and now - written < freshness * 1000:
                continue
            # unknown write time sorts as oldest
            aged.append((written if written is not None else 0, key))

        return [key for _, key in sorted(aged)]

    def _emergency_candidates(self) -> list[str]:
        return [key for key in self.store.keys() if not self.cfg.is_essential(key)]

    def _destructive_candidates(self) -> list[str]:
        return [key for key in self.store.keys() if not self.cfg.is_auth(key)]

    def _candidates(self, tier: str) -> list[str]:
        if tier == "STANDARD":
            return self._standard_candidates()
        if tier == "EMERGENCY":
            return self._emergency_candidates()
        return self._destructive_candidates()

    def _remove(self, tier: str, keys: list[str]) -> EvictionResult:
        sizes = self.usage.sizes_of(keys)
        deleted = self.store.delete_many(keys)

        removed = [key for key, ok in zip(keys, deleted) if ok]
        freed = sum(sizes[key] for key in removed)

        logger.info("%s cleanup removed %d keys, freed %d bytes", tier.lower(), len(removed), freed)
        return EvictionResult(tier=tier, removed_keys=removed, freed_bytes=freed)

    # ─── Tiers ───

    def standard_cleanup(self) -> EvictionResult:
        return self._remove("STANDARD", self._standard_candidates())

    def emergency_cleanup(self) -> EvictionResult:
        candidates = self._emergency_candidates()
        if config.REGISTRY_KEY in candidates:
            logger.warning("emergency cleanup is evicting the duplicate registry")
        return self._remove("EMERGENCY", candidates)

    def destructive_cleanup(self, confirm: bool = False) -> EvictionResult:
        if confirm is not True:
            raise errors.DestructiveCleanupRefusedError()
        logger.warning("destructive cleanup confirmed, keeping auth keys only")
        return self._remove("DESTRUCTIVE", self._destructive_candidates())

    def run_tier(self, tier: str, confirm: bool = False) -> EvictionResult:
        tier = self._validate_tier(tier)
        if tier == "STANDARD":
            return self.standard_cleanup()
        if tier == "EMERGENCY":
            return self.emergency_cleanup()
        return self.destructive_cleanup(confirm=confirm)

    def plan(self, tier: str) -> EvictionResult:
        tier = self._validate_tier(tier)
        keys = self._candidates(tier)
        sizes = self.usage.sizes_of(keys)
        return EvictionResult(
            tier=tier,
            removed_keys=keys,
            freed_bytes=sum(sizes.values()),
            dry_run=True,
        )
