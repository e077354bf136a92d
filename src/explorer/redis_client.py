"""Redis connection pools: the shared client and the arq job queue."""

import redis.asyncio as redis
from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

_pool: redis.Redis | None = None
_arq_pool: ArqRedis | None = None


async def init_redis(url: str) -> None:
    """Initialize the Redis connection pool used for events and cache invalidation."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )


async def init_arq(url: str) -> None:
    """Initialize the arq pool used to enqueue parent notifications."""
    global _arq_pool  # noqa: PLW0603
    _arq_pool = await create_pool(RedisSettings.from_dsn(url))


async def close_redis() -> None:
    """Close both pools."""
    global _pool, _arq_pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None
    if _arq_pool:
        await _arq_pool.aclose()
        _arq_pool = None


def get_redis() -> redis.Redis:
    """Get the shared Redis client."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


def get_arq() -> ArqRedis:
    """Get the arq job pool."""
    if _arq_pool is None:
        msg = "arq pool not initialized. Call init_arq() first."
        raise RuntimeError(msg)
    return _arq_pool
