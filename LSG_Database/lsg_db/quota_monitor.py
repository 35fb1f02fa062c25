import logging

from LSG_Database.lsg_shared import errors
from LSG_Database.lsg_shared.types import GovernorConfig
from LSG_Database.lsg_db.record_store import RecordStore
from LSG_Database.lsg_db.usage import UsageAccounting
from LSG_Database.lsg_db.eviction import EvictionEngine

logger = logging.getLogger(__name__)


class QuotaMonitor:
    def __init__(self, store: RecordStore, usage: UsageAccounting, eviction: EvictionEngine, cfg: GovernorConfig):
        self.store = store
        self.usage = usage
        self.eviction = eviction
        self.cfg = cfg

    def evaluate(self) -> str:
        pct = self.usage.usage_percentage()
        if pct >= self.cfg.critical_threshold_pct:
            return "CRITICAL"
        if pct >= self.cfg.warn_threshold_pct:
            return "APPROACHING"
        return "NOMINAL"

    def _evict_for(self, state: str) -> None:
        # DESTRUCTIVE is never chosen here
        if state == "CRITICAL":
            self.eviction.emergency_cleanup()
        else:
            self.eviction.standard_cleanup()

    def _quota_exceeded(self, key: str) -> errors.QuotaExceededError:
        return errors.QuotaExceededError(key, self.usage.total_usage(), self.cfg.ceiling_bytes)

    def guarded_write(self, key: str, value: str | bytes) -> bool:
        """Write ``value`` under ``key`` with at most one eviction and one retry.

        A CRITICAL pre-write state evicts first and then writes once. Otherwise
        the write is attempted directly; on CapacityExceededError the tier
        matching the current state runs and the write is retried once. Any
        failure after the eviction surfaces as QuotaExceededError.
        """
        state = self.evaluate()

        if state != "CRITICAL":
            try:
                return self.store.set(key, value)
            except errors.CapacityExceededError as e:
                logger.warning("write of %s rejected by store (%s), escalating", key, e)
                state = self.evaluate()
        else:
            logger.warning("usage critical before writing %s, running emergency cleanup", key)

        self._evict_for(state)

        try:
            return self.store.set(key, value)
        except errors.CapacityExceededError:
            logger.error("write of %s still rejected after %s-tier cleanup", key, state.lower())
            raise self._quota_exceeded(key)
