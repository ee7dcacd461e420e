"""Redis connection management.

Mirrors engine.py for PostgreSQL: when REDIS_URL is configured we
create a connection pool; when it's None (local dev, tests) the
permission cache falls back to a per-process dict and no Redis server
is needed.

Redis holds only the permission cache here.  Entries are hot-path
(read on every request), shared across API instances, and disposable:
losing them costs one membership read each, never correctness.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from leadcrm.core.config import SETTINGS

logger = logging.getLogger(__name__)

# Same pattern as engine.py: decided once at import time.  Every consumer
# of redis_pool checks for None and falls back to in-memory.

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis; mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, permission cache is per-process")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except aioredis.RedisError:
        # Start anyway; cache reads will fail loudly per request instead.
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
