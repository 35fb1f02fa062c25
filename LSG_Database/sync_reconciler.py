"""
Merges remote batches into the local Record Store.

Cycle:
    IDLE → FETCHING → RECONCILING → COMMITTING → DONE
    any of the above → ABORTED   (cancel, source unavailable, quota exceeded)

Recently cleaned duplicates are skipped, never written. Everything else is
last-writer-wins on the record version. Upserts go through the guarded write
path, and an abort keeps whatever was already committed.
"""

import asyncio
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from LSG_Database.lsg_shared import config, errors
from LSG_Database.lsg_shared.types import GovernorConfig, SyncRecord, SyncResult
from LSG_Database.lsg_db.record_store import RecordStore
from LSG_Database.lsg_db.quota_monitor import QuotaMonitor
from LSG_Database.lsg_db.duplicate_registry import DuplicateRegistry
from LSG_Database.lsg_server.sync_source import SyncSource

logger = logging.getLogger(__name__)

_IN_FLIGHT = ("FETCHING", "RECONCILING", "COMMITTING")


def coerce_version(value: Any) -> Optional[int | float]:
    """Numbers pass through; ISO-8601 strings become epoch ms. Anything else is rejected."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return None


class SyncReconciler:
    def __init__(
        self,
        source: SyncSource,
        registry: DuplicateRegistry,
        monitor: QuotaMonitor,
        store: RecordStore,
        cfg: GovernorConfig,
        id_field: str = config.SYNC_ID_FIELD,
        version_field: str = config.SYNC_VERSION_FIELD,
    ):
        self.source = source
        self.registry = registry
        self.monitor = monitor
        self.store = store
        self.cfg = cfg
        self.id_field = id_field
        self.version_field = version_field

        self.state = "IDLE"
        self.last_result: Optional[SyncResult] = None
        self._cancel_requested = False

    def record_key(self, record_id: str) -> str:
        return f"{self.cfg.record_key_prefix}{record_id}"

    def cancel(self) -> bool:
        """Ask the running cycle to stop at its next state boundary."""
        if self.state not in _IN_FLIGHT:
            return False
        self._cancel_requested = True
        return True

    # ─── State Handling ───

    def _abort(self, result: SyncResult, reason: str) -> SyncResult:
        logger.warning("sync cycle aborted in %s: %s", self.state, reason)
        self.state = "ABORTED"
        result.state = "ABORTED"
        result.abort_reason = reason
        return result

    def _advance(self, result: SyncResult, new_state: str) -> bool:
        if self._cancel_requested:
            self._abort(result, "cancelled")
            return False
        self.state = new_state
        result.state = new_state
        return True

    # ─── Record Handling ───

    def _parse(self, raw: Any) -> Optional[SyncRecord]:
        if not isinstance(raw, Mapping):
            return None
        record_id = raw.get(self.id_field)
        if not isinstance(record_id, str) or not record_id.strip():
            return None
        version = coerce_version(raw.get(self.version_field))
        if version is None:
            return None
        return SyncRecord(record_id=record_id, version=version, payload=raw.get("payload"))

    def _local_version(self, key: str) -> Optional[int | float]:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            doc = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("local record %s is unreadable, remote copy wins", key)
            return None
        if not isinstance(doc, dict):
            return None
        return coerce_version(doc.get("version"))

    def _reconcile(self, raw_batch: list, result: SyncResult) -> dict[str, SyncRecord]:
        result.received = len(raw_batch)

        records: list[SyncRecord] = []
        for raw in raw_batch:
            record = self._parse(raw)
            if record is None:
                ident = raw.get(self.id_field) if isinstance(raw, Mapping) else None
                result.quarantined.append(repr(ident))
                continue
            records.append(record)
        if result.quarantined:
            logger.warning("quarantined %d malformed records", len(result.quarantined))
        result.batch_size = len(records)

        cleaned = self.registry.recently_cleaned({r.record_id for r in records})

        latest: dict[str, SyncRecord] = {}
        sighted: list[str] = []
        for record in records:
            if record.record_id in cleaned:
                result.skipped_duplicates += 1
                sighted.append(record.record_id)
                continue
            result.applied_count += 1
            key = self.record_key(record.record_id)
            if key not in latest or record.version > latest[key].version:
                latest[key] = record

        if sighted:
            logger.info("skipped %d recently cleaned duplicates", len(sighted))
            if self.cfg.refresh_on_sighting:
                self.registry.refresh(sighted, self.cfg.retention_seconds)

        upserts: dict[str, SyncRecord] = {}
        for key, record in latest.items():
            local = self._local_version(key)
            if local is None or record.version > local:
                upserts[key] = record
        return upserts

    def _commit(self, upserts: dict[str, SyncRecord], result: SyncResult) -> None:
        for key, record in upserts.items():
            value = json.dumps({
                "id": record.record_id,
                "version": record.version,
                "payload": record.payload,
            }, separators=(",", ":"))
            self.monitor.guarded_write(key, value)
            result.written_count += 1

    # ─── Cycle ───

    async def run_cycle(self) -> SyncResult:
        if self.state in _IN_FLIGHT:
            raise errors.SyncInProgressError(self.state)

        result = SyncResult(state="IDLE")
        self.state = "IDLE"
        self._cancel_requested = False

        try:
            self._advance(result, "FETCHING")
            try:
                raw_batch = await self.source.next_batch()
            except errors.SourceUnavailableError as e:
                logger.warning("sync source unavailable: %s", e)
                return self._abort(result, "source_unavailable")
            except asyncio.CancelledError:
                self._abort(result, "cancelled")
                raise

            if not self._advance(result, "RECONCILING"):
                return result
            upserts = self._reconcile(list(raw_batch), result)

            if not self._advance(result, "COMMITTING"):
                return result
            self._commit(upserts, result)

            if not self._advance(result, "DONE"):
                return result
            self.registry.purge_expired(self.store.clock())

            logger.info(
                "sync cycle done: received=%d applied=%d written=%d skipped=%d quarantined=%d",
                result.received, result.applied_count, result.written_count,
                result.skipped_duplicates, len(result.quarantined),
            )
            return result
        except errors.QuotaExceededError:
            self._abort(result, "quota_exceeded")
            raise
        finally:
            if self.state in _IN_FLIGHT:
                self._abort(result, "error")
            self._cancel_requested = False
            self.last_result = result
