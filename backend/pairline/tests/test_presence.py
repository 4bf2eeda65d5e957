"""
Tests for the Redis presence fast path.

Redis is fully mocked; no real Redis instance required.
Covers:
  - presence module unit tests (set_online, set_offline, heartbeat, is_online)
  - graceful degradation when Redis is unavailable or erroring
  - the session registry preferring Redis and falling back to the database
"""

import pytest

import pairline.redis.presence as presence_mod
from pairline.config import settings
from pairline.redis.keys import presence_key
from pairline.services import session_registry


class FakeRedis:
    """Minimal in-memory fake that mimics redis.asyncio.Redis."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def setex(self, key: str, ttl: int, value: str):
        self._data[key] = value
        self._ttls[key] = ttl

    async def get(self, key: str):
        return self._data.get(key)

    async def delete(self, key: str):
        self._data.pop(key, None)
        self._ttls.pop(key, None)

    async def expire(self, key: str, ttl: int):
        if key in self._data:
            self._ttls[key] = ttl
            return 1
        return 0


class BrokenRedis:
    async def setex(self, *args):
        raise ConnectionError("redis down")

    async def get(self, *args):
        raise ConnectionError("redis down")


@pytest.fixture()
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(presence_mod, "get_redis", lambda: fake)
    return fake


@pytest.fixture()
def no_redis(monkeypatch):
    monkeypatch.setattr(presence_mod, "get_redis", lambda: None)


class TestPresence:
    @pytest.mark.asyncio
    async def test_set_online_uses_expiry_window(self, fake_redis):
        await presence_mod.set_online("s1")
        key = presence_key("s1")
        assert fake_redis._data[key] == "online"
        assert fake_redis._ttls[key] == settings.HEARTBEAT_INTERVAL_SECONDS * settings.SESSION_EXPIRY_FACTOR

    def test_key_is_namespaced(self):
        assert presence_key("s1") == f"{settings.SERVER_DOMAIN}:presence:s1"

    @pytest.mark.asyncio
    async def test_set_offline(self, fake_redis):
        await presence_mod.set_online("s1")
        await presence_mod.set_offline("s1")
        assert await presence_mod.is_online("s1") is False

    @pytest.mark.asyncio
    async def test_heartbeat_recreates_expired_key(self, fake_redis):
        await presence_mod.heartbeat("s1")
        assert await presence_mod.is_online("s1") is True

    @pytest.mark.asyncio
    async def test_heartbeat_refreshes_ttl(self, fake_redis):
        await presence_mod.set_online("s1")
        fake_redis._ttls[presence_key("s1")] = 1
        await presence_mod.heartbeat("s1")
        assert fake_redis._ttls[presence_key("s1")] == settings.session_expiry_seconds

    @pytest.mark.asyncio
    async def test_no_redis_is_a_no_op(self, no_redis):
        await presence_mod.set_online("s1")
        await presence_mod.heartbeat("s1")
        await presence_mod.set_offline("s1")
        assert await presence_mod.is_online("s1") is None

    @pytest.mark.asyncio
    async def test_redis_errors_are_swallowed(self, monkeypatch):
        monkeypatch.setattr(presence_mod, "get_redis", lambda: BrokenRedis())
        await presence_mod.set_online("s1")
        assert await presence_mod.is_online("s1") is None


class TestRegistryWithRedis:
    @pytest.mark.asyncio
    async def test_create_marks_online(self, fake_redis, db):
        session = await session_registry.create_session(db, "192.0.2.1")
        assert fake_redis._data[presence_key(session.session_id)] == "online"

    @pytest.mark.asyncio
    async def test_redis_answer_wins(self, fake_redis, db):
        session = await session_registry.create_session(db, "192.0.2.1")
        # key expired in Redis even though the row still looks fresh
        await fake_redis.delete(presence_key(session.session_id))
        assert await session_registry.is_active(db, session.session_id) is False

    @pytest.mark.asyncio
    async def test_destroy_clears_presence(self, fake_redis, db):
        session = await session_registry.create_session(db, "192.0.2.1")
        await session_registry.destroy_session(db, session.session_id)
        assert presence_key(session.session_id) not in fake_redis._data

    @pytest.mark.asyncio
    async def test_falls_back_to_database(self, no_redis, db):
        session = await session_registry.create_session(db, "192.0.2.1")
        assert await session_registry.is_active(db, session.session_id) is True
