"""
Registry of record ids that were deliberately deleted as duplicates.

The whole table is one JSON blob under ``config.REGISTRY_KEY``:

    {"format": 1,
     "entries": {"<record_id>": {"cleaned_at": ms, "reason": str, "expires_at": ms}}}

It is re-read from the store on every call, so an eviction of the blob is
observed immediately. An unreadable blob counts as an empty registry.
"""

import json
import logging
import math
from typing import Callable, Iterable, Optional

from LSG_Database.lsg_shared import config, errors
from LSG_Database.lsg_shared.types import DuplicateEntry, RegistryStats
from LSG_Database.lsg_db.record_store import RecordStore

logger = logging.getLogger(__name__)

_ENTRY_FIELDS = {"cleaned_at": (int, float), "reason": str, "expires_at": (int, float)}


class DuplicateRegistry:
    def __init__(
        self,
        store: RecordStore,
        writer: Optional[Callable[[str, str], bool]] = None,
        retention_seconds: int = config.DUPLICATE_RETENTION_SECONDS,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.writer = writer or store.set
        self.retention_seconds = retention_seconds
        self.clock = clock or store.clock
        self.key = config.REGISTRY_KEY

    def _validate_reason(self, reason: str) -> None:
        if reason not in config.VALID_DUPLICATE_REASONS:
            raise errors.InvalidDuplicateReasonError(reason)

    def _retention_ms(self, retention_seconds: Optional[float]) -> int:
        seconds = self.retention_seconds if retention_seconds is None else retention_seconds
        if seconds <= 0:
            raise ValueError(f"retention must be positive, got {seconds}")
        return int(seconds * 1000)

    # ─── Persistence ───

    def _decode(self, raw: bytes) -> dict[str, DuplicateEntry]:
        try:
            doc = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise errors.RegistryCorruptError(str(e))

        if not isinstance(doc, dict) or not isinstance(doc.get("entries"), dict):
            raise errors.RegistryCorruptError("missing entries table")
        if doc.get("format") != config.REGISTRY_FORMAT_VERSION:
            raise errors.RegistryCorruptError(f"unknown format {doc.get('format')!r}")

        entries: dict[str, DuplicateEntry] = {}
        for record_id, data in doc["entries"].items():
            if not isinstance(data, dict):
                raise errors.RegistryCorruptError(f"entry {record_id} is not an object")
            for name, kind in _ENTRY_FIELDS.items():
                value = data.get(name)
                if not isinstance(value, kind) or isinstance(value, bool):
                    raise errors.RegistryCorruptError(f"entry {record_id} has bad {name}")
                if isinstance(value, float) and not math.isfinite(value):
                    raise errors.RegistryCorruptError(f"entry {record_id} has bad {name}")
            entries[record_id] = DuplicateEntry(
                record_id=record_id,
                cleaned_at=int(data["cleaned_at"]),
                reason=data["reason"],
                expires_at=int(data["expires_at"]),
            )
        return entries

    def _encode(self, entries: dict[str, DuplicateEntry]) -> str:
        return json.dumps({
            "format": config.REGISTRY_FORMAT_VERSION,
            "entries": {
                e.record_id: {"cleaned_at": e.cleaned_at, "reason": e.reason, "expires_at": e.expires_at}
                for e in entries.values()
            },
        }, separators=(",", ":"), sort_keys=True)

    def _load(self) -> dict[str, DuplicateEntry]:
        raw = self.store.get(self.key)
        if raw is None:
            return {}
        try:
            return self._decode(raw)
        except errors.RegistryCorruptError as e:
            logger.warning("RegistryCorrupt: %s; starting from an empty registry", e)
            return {}

    def _save(self, entries: dict[str, DuplicateEntry]) -> None:
        if not entries:
            self.store.delete(self.key)
            return
        self.writer(self.key, self._encode(entries))

    # ─── Write Operations ───

    def mark_cleaned(self, record_id: str, reason: str, retention_seconds: Optional[float] = None) -> DuplicateEntry:
        if not isinstance(record_id, str) or not record_id:
            raise ValueError("record_id must be a non-empty string")
        self._validate_reason(reason)

        now = self.clock()
        entry = DuplicateEntry(
            record_id=record_id,
            cleaned_at=now,
            reason=reason,
            expires_at=now + self._retention_ms(retention_seconds),
        )
        entries = self._load()
        entries[record_id] = entry
        self._save(entries)
        return entry

    def refresh(self, record_ids: Iterable[str], retention_seconds: Optional[float] = None) -> int:
        """Slide ``expires_at`` forward for ids already tracked. Unknown ids are ignored."""
        entries = self._load()
        expires_at = self.clock() + self._retention_ms(retention_seconds)

        refreshed = 0
        for record_id in set(record_ids):
            entry = entries.get(record_id)
            if entry is None or entry.expires_at >= expires_at:
                continue
            entry.expires_at = expires_at
            refreshed += 1

        if refreshed:
            self._save(entries)
        return refreshed

    def purge_expired(self, now: Optional[int] = None) -> int:
        if now is None:
            now = self.clock()
        entries = self._load()
        kept = {rid: e for rid, e in entries.items() if e.expires_at >= now}

        purged = len(entries) - len(kept)
        if purged:
            self._save(kept)
            logger.info("purged %d expired duplicate entries", purged)
        return purged

    def clear(self) -> bool:
        return self.store.delete(self.key)

    # ─── Query Operations ───

    def is_recently_cleaned(self, record_id: str, now: Optional[int] = None) -> bool:
        if now is None:
            now = self.clock()
        entry = self._load().get(record_id)
        return entry is not None and now <= entry.expires_at

    def recently_cleaned(self, record_ids: Iterable[str], now: Optional[int] = None) -> set[str]:
        """Batch form of ``is_recently_cleaned``; loads the blob once."""
        if now is None:
            now = self.clock()
        entries = self._load()
        return {
            rid for rid in record_ids
            if rid in entries and now <= entries[rid].expires_at
        }

    def entries(self) -> dict[str, DuplicateEntry]:
        return self._load()

    def stats(self, now: Optional[int] = None) -> RegistryStats:
        if now is None:
            now = self.clock()
        entries = list(self._load().values())

        by_reason: dict[str, int] = {}
        for e in entries:
            by_reason[e.reason] = by_reason.get(e.reason, 0) + 1

        recent_cutoff = now - config.RECENT_WINDOW_SECONDS * 1000
        cleaned = [e.cleaned_at for e in entries]

        return RegistryStats(
            count=len(entries),
            oldest_entry_age_ms=now - min(cleaned) if cleaned else None,
            newest_entry_age_ms=now - max(cleaned) if cleaned else None,
            by_reason=by_reason,
            recent_24h=sum(1 for ts in cleaned if ts > recent_cutoff),
        )
