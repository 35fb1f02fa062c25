"""
Redis-backed Record Store with a hard byte capacity.

Every key in the logical DB is a plain string value. A sidecar sorted set
(``config.WRITTEN_AT_INDEX_KEY``) scores each key by its last write time in
epoch ms; it is bookkeeping only, so it is hidden from ``keys()`` and does not
count against capacity.
"""

import logging
import time
from typing import Callable, Optional

import redis

from LSG_Database.lsg_shared import config, errors

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class RecordStore:
    def __init__(
        self,
        client: redis.Redis,
        capacity_bytes: int = config.STORE_CAPACITY_BYTES,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.db: redis.Redis = client
        self.capacity_bytes = capacity_bytes
        self.clock = clock or now_ms

    @staticmethod
    def _encode(value: str | bytes) -> bytes:
        if isinstance(value, bytes):
            return value
        return value.encode("utf-8")

    def _is_internal(self, key: str) -> bool:
        return key == config.WRITTEN_AT_INDEX_KEY

    # ─── Read Operations ───

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self.db.get(key)
        except redis.exceptions.ResponseError as e:
            logger.warning("get(%s) on non-string key: %s", key, e)
            return None
        except redis.exceptions.ConnectionError:
            raise errors.StoreUnavailableError("get")

    def size_of(self, key: str) -> int:
        try:
            return int(self.db.strlen(key))
        except redis.exceptions.ResponseError:
            return 0
        except redis.exceptions.ConnectionError:
            raise errors.StoreUnavailableError("size_of")

    def keys(self) -> list[str]:
        try:
            found: list[str] = []
            cursor = 0
            while True:
                cursor, batch = self.db.scan(cursor=cursor, count=100)
                for raw in batch:
                    if isinstance(raw, bytes):
                        try:
                            key = raw.decode("utf-8")
                        except UnicodeDecodeError:
                            logger.warning("skipping non-UTF-8 key %r", raw)
                            continue
                    else:
                        key = raw
                    if not self._is_internal(key):
                        found.append(key)
                if cursor == 0:
                    break
            return sorted(set(found))
        except redis.exceptions.ConnectionError:
            raise errors.StoreUnavailableError("keys")

    def sizes(self, keys: list[str]) -> dict[str, int]:
        if not keys:
            return {}
        try:
            pipe = self.db.pipeline(transaction=False)
            for key in keys:
                pipe.strlen(key)
            results = pipe.execute(raise_on_error=False)
        except redis.exceptions.ConnectionError:
            raise errors.StoreUnavailableError("sizes")

        return {
            key: (0 if isinstance(size, Exception) else int(size))
            for key, size in zip(keys, results)
        }

    def used_bytes(self) -> int:
        return sum(self.sizes(self.keys()).values())

    def written_at(self, key: str) -> Optional[int]:
        try:
            score = self.db.zscore(config.WRITTEN_AT_INDEX_KEY, key)
            return None if score is None else int(score)
        except redis.exceptions.ConnectionError:
            raise errors.StoreUnavailableError("written_at")

    # ─── Write Operations ───

    def set(self, key: str, value: str | bytes) -> bool:
        if self._is_internal(key):
            raise ValueError(f"{key} is reserved for store bookkeeping")

        data = self._encode(value)
        try:
            existing = self.size_of(key)
            available = self.capacity_bytes - (self.used_bytes() - existing)
            if len(data) > available:
                raise errors.CapacityExceededError(key, len(data), max(available, 0))

            pipe = self.db.pipeline(transaction=True)
            pipe.set(key, data)
            pipe.zadd(config.WRITTEN_AT_INDEX_KEY, {key: self.clock()})
            pipe.execute()
            return True
        except redis.exceptions.ResponseError as e:
            # maxmemory on the server side
            if "OOM" in str(e):
                raise errors.CapacityExceededError(key, len(data), 0)
            raise
        except redis.exceptions.ConnectionError:
            raise errors.StoreUnavailableError("set")

    def delete(self, key: str) -> bool:
        try:
            pipe = self.db.pipeline(transaction=True)
            pipe.delete(key)
            pipe.zrem(config.WRITTEN_AT_INDEX_KEY, key)
            deleted, _ = pipe.execute()
            return bool(deleted)
        except redis.exceptions.ConnectionError:
            raise errors.StoreUnavailableError("delete")

    def delete_many(self, keys: list[str]) -> list[bool]:
        if not keys:
            return []
        try:
            pipe = self.db.pipeline(transaction=False)
            for key in keys:
                pipe.delete(key)
            pipe.zrem(config.WRITTEN_AT_INDEX_KEY, *keys)
            results = pipe.execute()
            return [bool(n) for n in results[:-1]]
        except redis.exceptions.ConnectionError:
            raise errors.StoreUnavailableError("delete_many")
