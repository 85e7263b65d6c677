"""Redis connection factory — one async pool shared by the process."""

import redis.asyncio as aioredis
from redis.backoff import ExponentialBackoff
from redis.exceptions import BusyLoadingError, ConnectionError, TimeoutError
from redis.retry import Retry

from app.core.config import get_settings

_pool: aioredis.Redis | None = None

_RETRY = Retry(ExponentialBackoff(cap=1, base=0.05), retries=2)
_RETRY_ERRORS = [ConnectionError, TimeoutError, BusyLoadingError]


def get_redis() -> aioredis.Redis:
    """Return the process-wide Redis client (FastAPI dependency).

    Every round trip is bounded by ``redis_socket_timeout``.
    """
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=50,
            health_check_interval=15,
            retry_on_error=_RETRY_ERRORS,
            retry=_RETRY,
            socket_connect_timeout=settings.redis_socket_timeout,
            socket_timeout=settings.redis_socket_timeout,
        )
    return _pool


async def close_redis() -> None:
    """Gracefully close the Redis connection pool."""
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None
