"""Shared Redis connection pool for the oracle limiter and verdict cache."""

import redis

from attempt_engine.config import settings

_pool: redis.ConnectionPool | None = None


def get_redis() -> redis.Redis:
    """Return a Redis client backed by a shared connection pool."""
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=10,
        )
    return redis.Redis(connection_pool=_pool)
