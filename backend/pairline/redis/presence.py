"""
Session presence: mirrors registry heartbeats into Redis TTL keys.

Key scheme:
  {SERVER_DOMAIN}:presence:{session_id}  →  "online"
  TTL = HEARTBEAT_INTERVAL_SECONDS * SESSION_EXPIRY_FACTOR

The database row stays the source of truth; these keys only answer "is this
session alive?" without a query.  If Redis is unavailable every write is a
no-op and is_online returns None so callers fall back to the database.
"""

import logging

from pairline.config import settings
from pairline.redis.client import get_redis
from pairline.redis.keys import presence_key

logger = logging.getLogger(__name__)


async def set_online(session_id: str) -> None:
    r = get_redis()
    if r is None:
        return
    try:
        await r.setex(presence_key(session_id), settings.session_expiry_seconds, "online")
    except Exception as exc:
        logger.warning("presence.set_online failed: %s", exc)


async def set_offline(session_id: str) -> None:
    r = get_redis()
    if r is None:
        return
    try:
        await r.delete(presence_key(session_id))
    except Exception as exc:
        logger.warning("presence.set_offline failed: %s", exc)


async def heartbeat(session_id: str) -> None:
    """Refresh the TTL; recreates the key if it already expired."""
    r = get_redis()
    if r is None:
        return
    try:
        refreshed = await r.expire(presence_key(session_id), settings.session_expiry_seconds)
        if not refreshed:
            await r.setex(presence_key(session_id), settings.session_expiry_seconds, "online")
    except Exception as exc:
        logger.warning("presence.heartbeat failed: %s", exc)


async def is_online(session_id: str) -> bool | None:
    """True/False from Redis, or None when Redis cannot answer."""
    r = get_redis()
    if r is None:
        return None
    try:
        return await r.get(presence_key(session_id)) is not None
    except Exception as exc:
        logger.warning("presence.is_online failed: %s", exc)
        return None
