"""
Sync Source backed by the remote PostgreSQL table.

    CREATE TABLE synced_records(
        user_id    UUID   NOT NULL,
        record_id  TEXT   NOT NULL,
        version    BIGINT NOT NULL,       -- last-modified, epoch ms
        payload    JSONB  NOT NULL,
        PRIMARY KEY (user_id, record_id)
    );

Batches are pulled in version order; the high-water mark advances on every
successful fetch.
"""

import json
import logging
from typing import Any, Mapping, Protocol
from uuid import UUID

import asyncpg

from LSG_Database.lsg_server import config
from LSG_Database.lsg_shared import errors

logger = logging.getLogger(__name__)


class SyncSource(Protocol):
    async def next_batch(self) -> list[Mapping[str, Any]]:
        ...


class PostgresSyncSource:
    pool: asyncpg.Pool

    def __init__(self, p: asyncpg.Pool, user_id: UUID, limit: int = config.SYNC_FETCH_LIMIT,
                 since_version: int = 0):
        self.pool = p
        self.user_id = user_id
        self.limit = limit
        self.cursor = since_version

    async def next_batch(self) -> list[dict[str, Any]]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(f"""
                                        SELECT record_id, version, payload
                                        FROM {config.SYNC_TABLE}
                                        WHERE user_id = $1 AND version > $2
                                        ORDER BY version ASC
                                        LIMIT $3
                                        """,
                                        self.user_id,
                                        self.cursor,
                                        self.limit,
                                        )
        except (asyncpg.PostgresError, OSError) as e:
            raise errors.SourceUnavailableError(f"next_batch failed: {e}")

        batch = []
        for row in rows:
            payload = row["payload"]
            if isinstance(payload, str):
                try:
                    payload = json.loads(payload)
                except json.JSONDecodeError:
                    logger.debug("record %s has a non-JSON payload, passing it through as text", row["record_id"])
            batch.append({"id": row["record_id"], "version": row["version"], "payload": payload})

        if rows:
            self.cursor = max(row["version"] for row in rows)
        return batch
