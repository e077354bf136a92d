"""Process lifecycle: database, Redis and arq pools wired into EngineHooks."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from explorer.config import Settings, get_settings
from explorer.database import close_db, create_schema, init_db
from explorer.logging_setup import setup_logging
from explorer.points.hooks import EngineHooks, build_redis_hooks
from explorer.redis_client import close_redis, get_arq, get_redis, init_arq, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
    notifications: bool = True,
    create_tables: bool = False,
) -> AsyncGenerator[EngineHooks, None]:
    """Startup and shutdown lifecycle. Yields the Redis-backed hooks.

    Parent notifications need the arq pool; pass ``notifications=False`` to run without it.
    """
    settings = settings or get_settings()
    setup_logging(settings)
    try:
        await init_db(settings.database_url)
        if create_tables:
            await create_schema()
        await init_redis(settings.redis_url)
        if notifications:
            await init_arq(settings.arq_redis_url)

        hooks = build_redis_hooks(get_redis(), get_arq() if notifications else None)
        logger.info("Explorer engine started (%s)", settings.environment)
        yield hooks
    finally:
        await close_db()
        await close_redis()
        logger.info("Explorer engine stopped")
