"""ARQ worker entrypoint."""

import asyncio

from arq import cron
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import setup_logging
from app.workers.maintenance import purge_expired_refresh_tokens


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    settings = get_settings()
    # redis://host:port/db
    url = settings.redis_url
    rest = url.split("://", 1)[1] if "://" in url else url
    host_port, _, db = rest.partition("/")
    host, _, port = host_port.partition(":")
    return RedisSettings(
        host=host or "localhost",
        port=int(port) if port else 6379,
        database=int(db) if db else 0,
        conn_timeout=int(settings.redis_socket_timeout) or 1,
    )


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    setup_logging(get_settings().log_level)
    from app.core.database import init_db
    await init_db()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""
    from app.core.database import engine
    await engine.dispose()


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [purge_expired_refresh_tokens]
    cron_jobs = [cron(purge_expired_refresh_tokens, hour={3}, minute={0})]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 10
    job_timeout = 300


if __name__ == "__main__":
    from arq import run_worker
    asyncio.run(run_worker(WorkerSettings))  # type: ignore[arg-type]
