"""
Redis async client for the presence fast path.

Optional: with REDIS_URL empty or the server unreachable at startup, the
client stays None and every presence helper becomes a no-op, leaving the
session registry to answer from heartbeat timestamps in the database.
"""

import logging

import redis.asyncio as aioredis

from pairline.config import settings

logger = logging.getLogger(__name__)

_pool: aioredis.ConnectionPool | None = None
_client: aioredis.Redis | None = None


async def init_redis() -> None:
    """Connect once at startup.  Leaves the client unset on any failure."""
    global _pool, _client
    if not settings.REDIS_URL:
        logger.info("REDIS_URL is empty, presence served from the database")
        return
    pool = aioredis.ConnectionPool.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
    )
    client = aioredis.Redis(connection_pool=pool)
    try:
        await client.ping()
    except Exception as exc:
        logger.warning("Redis unavailable (%s), presence served from the database", exc)
        await pool.aclose()
        return
    _pool, _client = pool, client
    logger.info("Redis connected: %s", settings.REDIS_URL)


async def close_redis() -> None:
    global _pool, _client
    if _client is not None:
        await _client.aclose()
        _client = None
    if _pool is not None:
        await _pool.aclose()
        _pool = None


def get_redis() -> aioredis.Redis | None:
    return _client


async def redis_status() -> str:
    """"connected", "unreachable" (configured but failing a ping) or "disabled"."""
    if _client is None:
        return "disabled"
    try:
        await _client.ping()
        return "connected"
    except Exception:
        return "unreachable"
