"""
Automatic duplicate detection over the stored records.

Records under ``record_key_prefix`` are grouped by a payload fingerprint.
The oldest record in each group is kept. The rest are deleted and marked
``auto-detect`` in the duplicate registry, so a later sync cannot bring
them back.

    default fingerprint:  amount|description|date|category
"""

import json
import logging
from typing import Any, Callable, Mapping, Optional

from LSG_Database.lsg_shared import config
from LSG_Database.lsg_shared.types import DuplicateCleanupResult, DuplicateGroup, GovernorConfig
from LSG_Database.lsg_db.record_store import RecordStore
from LSG_Database.lsg_db.duplicate_registry import DuplicateRegistry
from LSG_Database.sync_reconciler import coerce_version

logger = logging.getLogger(__name__)

Fingerprint = Callable[[Mapping[str, Any]], Optional[str]]


def default_fingerprint(payload: Mapping[str, Any]) -> Optional[str]:
    """Amount to two decimals, case-folded description (or name), date and category.

    Returns None for payloads without a numeric amount; those are never grouped.
    """
    amount = payload.get("amount")
    if isinstance(amount, bool):
        return None
    try:
        amount = f"{float(amount):.2f}"
    except (TypeError, ValueError):
        return None

    description = payload.get("description") or payload.get("name") or ""
    return "|".join([
        amount,
        str(description).strip().lower(),
        str(payload.get("date") or ""),
        str(payload.get("category") or ""),
    ])


class DuplicateDetector:
    def __init__(
        self,
        store: RecordStore,
        registry: DuplicateRegistry,
        cfg: GovernorConfig,
        fingerprint: Fingerprint = default_fingerprint,
    ):
        self.store = store
        self.registry = registry
        self.cfg = cfg
        self.fingerprint = fingerprint

    def _payload(self, key: str) -> Optional[Mapping[str, Any]]:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            doc = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.debug("skipping unreadable record %s", key)
            return None
        if not isinstance(doc, dict) or not isinstance(doc.get("payload"), Mapping):
            return None
        return doc["payload"]

    def _age_key(self, key: str, payload: Mapping[str, Any]) -> tuple:
        # created_at, then date, then the local write time
        for name in ("created_at", "date"):
            created = coerce_version(payload.get(name))
            if created is not None:
                break
        written = self.store.written_at(key)
        return (
            created if created is not None else 0,
            written if written is not None else 0,
        )

    # ─── Detection ───

    def scan(self) -> list[DuplicateGroup]:
        prefix = self.cfg.record_key_prefix
        buckets: dict[str, list[tuple]] = {}

        for key in self.store.keys():
            if not key.startswith(prefix):
                continue
            payload = self._payload(key)
            if payload is None:
                continue
            fp = self.fingerprint(payload)
            if fp is None:
                continue
            record_id = key[len(prefix):]
            buckets.setdefault(fp, []).append((*self._age_key(key, payload), record_id))

        groups = []
        for fp in sorted(buckets):
            if len(buckets[fp]) < 2:
                continue
            ids = [member[-1] for member in sorted(buckets[fp])]
            groups.append(DuplicateGroup(fingerprint=fp, keep=ids[0], duplicates=ids[1:]))
        return groups

    # ─── Cleanup ───

    def cleanup(
        self,
        dry_run: bool = True,
        max_to_delete: int = config.DUPLICATE_CLEANUP_MAX,
        groups: Optional[list[DuplicateGroup]] = None,
    ) -> DuplicateCleanupResult:
        """Remove up to ``max_to_delete`` duplicates. Nothing is touched on a dry run."""
        if max_to_delete < 0:
            raise ValueError(f"max_to_delete must be >= 0, got {max_to_delete}")
        if groups is None:
            groups = self.scan()

        result = DuplicateCleanupResult(
            total_groups=len(groups),
            total_duplicates=sum(len(g.duplicates) for g in groups),
            largest_group=max((len(g.duplicates) + 1 for g in groups), default=0),
            dry_run=dry_run,
        )

        for group in groups:
            if len(result.removed_ids) >= max_to_delete:
                break
            result.processed_groups += 1
            for record_id in group.duplicates:
                if len(result.removed_ids) >= max_to_delete:
                    break
                if not dry_run:
                    self.registry.mark_cleaned(record_id, "auto-detect")
                    self.store.delete(f"{self.cfg.record_key_prefix}{record_id}")
                result.removed_ids.append(record_id)

        logger.info(
            "%s %d of %d duplicates in %d groups",
            "would remove" if dry_run else "removed",
            len(result.removed_ids), result.total_duplicates, result.total_groups,
        )
        return result
