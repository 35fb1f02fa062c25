"""
FastAPI admin endpoints exposing the governor's diagnostic surface.

Operator/debug only; these routes are not part of the automatic quota path.
The destructive tier needs ``{"confirm": true}`` in the request body.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from LSG_Database.governor import StorageGovernor
from LSG_Database.lsg_db import connection
from LSG_Database.lsg_db.record_store import RecordStore
from LSG_Database.lsg_shared import config
from LSG_Database.lsg_shared.errors import (
    DestructiveCleanupRefusedError,
    InvalidEvictionTierError,
    QuotaExceededError,
    StoreUnavailableError,
)


# ── Pydantic request/response models ──


class EntryOut(BaseModel):
    key: str
    size_bytes: int


class ReportResponse(BaseModel):
    total_usage_bytes: int
    usage_percentage: float
    is_approaching_quota: bool
    ceiling_bytes: int
    state: str
    largest_entries: list[EntryOut]


class RegistryStatsResponse(BaseModel):
    count: int
    oldest_entry_age_ms: Optional[int]
    newest_entry_age_ms: Optional[int]
    by_reason: dict[str, int]
    recent_24h: int


class CleanupRequest(BaseModel):
    confirm: bool = False
    dry_run: bool = False


class CleanupResponse(BaseModel):
    tier: str
    removed_keys: list[str]
    freed_bytes: int
    dry_run: bool


class PurgeResponse(BaseModel):
    purged: int


class DuplicateCleanupRequest(BaseModel):
    dry_run: bool = True
    max_to_delete: int = Field(config.DUPLICATE_CLEANUP_MAX, ge=0)


class DuplicateCleanupResponse(BaseModel):
    total_groups: int
    total_duplicates: int
    largest_group: int
    processed_groups: int
    removed_ids: list[str]
    dry_run: bool


class HealthResponse(BaseModel):
    status: str
    store_connected: bool
    store_key_count: int


# ── App lifecycle ──

governor: StorageGovernor = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global governor
    client = None
    if governor is None:
        client = connection.create_store_client()
        governor = StorageGovernor(RecordStore(client))
    yield
    if client is not None:
        connection.close(client)
        governor = None


app = FastAPI(title="LSG Storage Governor", version="1.0.0", lifespan=lifespan)


def _get_governor() -> StorageGovernor:
    if governor is None:
        raise HTTPException(status_code=503, detail="Storage governor not initialized")
    return governor


# ── Endpoints ──


@app.get("/v1/storage/report", response_model=ReportResponse)
async def storage_report(top_n: Optional[int] = Query(None, ge=0)):
    gov = _get_governor()
    try:
        report = gov.report(top_n)
        state = gov.state()
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return ReportResponse(
        total_usage_bytes=report.total_usage_bytes,
        usage_percentage=report.usage_percentage,
        is_approaching_quota=report.is_approaching_quota,
        ceiling_bytes=report.ceiling_bytes,
        state=state,
        largest_entries=[EntryOut(key=e.key, size_bytes=e.size_bytes) for e in report.largest_entries],
    )


@app.get("/v1/duplicates/stats", response_model=RegistryStatsResponse)
async def duplicate_stats():
    gov = _get_governor()
    try:
        s = gov.stats()
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return RegistryStatsResponse(
        count=s.count,
        oldest_entry_age_ms=s.oldest_entry_age_ms,
        newest_entry_age_ms=s.newest_entry_age_ms,
        by_reason=s.by_reason,
        recent_24h=s.recent_24h,
    )


@app.post("/v1/duplicates/purge", response_model=PurgeResponse)
async def purge_duplicates():
    gov = _get_governor()
    try:
        purged = gov.purge_expired()
    except QuotaExceededError as e:
        raise HTTPException(status_code=507, detail=str(e))
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return PurgeResponse(purged=purged)


@app.post("/v1/duplicates/cleanup", response_model=DuplicateCleanupResponse)
async def cleanup_duplicates(req: DuplicateCleanupRequest):
    gov = _get_governor()
    try:
        result = gov.cleanup_duplicates(dry_run=req.dry_run, max_to_delete=req.max_to_delete)
    except QuotaExceededError as e:
        raise HTTPException(status_code=507, detail=str(e))
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return DuplicateCleanupResponse(
        total_groups=result.total_groups,
        total_duplicates=result.total_duplicates,
        largest_group=result.largest_group,
        processed_groups=result.processed_groups,
        removed_ids=result.removed_ids,
        dry_run=result.dry_run,
    )


@app.post("/v1/admin/cleanup/{tier}", response_model=CleanupResponse)
async def cleanup(tier: str, req: CleanupRequest):
    gov = _get_governor()
    try:
        if req.dry_run:
            result = gov.plan_cleanup(tier)
        else:
            result = gov.run_cleanup(tier, confirm=req.confirm)
    except InvalidEvictionTierError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except DestructiveCleanupRefusedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return CleanupResponse(
        tier=result.tier,
        removed_keys=result.removed_keys,
        freed_bytes=result.freed_bytes,
        dry_run=result.dry_run,
    )


@app.get("/v1/health", response_model=HealthResponse)
async def health():
    gov = _get_governor()
    status = connection.health_check(gov.store.db)
    return HealthResponse(
        status="ok" if status.store_connected else "degraded",
        store_connected=status.store_connected,
        store_key_count=status.store_key_count,
    )
