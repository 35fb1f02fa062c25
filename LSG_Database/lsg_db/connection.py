import redis
from LSG_Database.lsg_shared import errors, config
from LSG_Database.lsg_shared.types import HealthStatus


def create_store_client(host: str = config.REDIS_HOST, port: int = config.REDIS_PORT,
                        db: int = config.REDIS_STORE_DB) -> redis.Redis:
    r = redis.Redis(
        host=host,
        port=port,
        db=db,
        decode_responses=False,
        socket_connect_timeout=config.REDIS_SOCKET_TIMEOUT,
        socket_timeout=config.REDIS_SOCKET_TIMEOUT,
    )
    try:
        r.ping()
    except redis.exceptions.ConnectionError:
        raise errors.StoreUnavailableError(f"Cannot connect to Redis at {host}:{port}")
    return r


def health_check(store_client) -> HealthStatus:
    ok = False
    keys = 0
    uptime = 0.0

    try:
        ok = store_client.ping()
        keys = store_client.dbsize()
        uptime = store_client.info().get('uptime_in_seconds', 0)
    except redis.exceptions.RedisError:
        pass

    return HealthStatus(
        store_connected=ok,
        store_key_count=keys,
        uptime_seconds=uptime,
    )


def close(store_client) -> None:
    store_client.close()
