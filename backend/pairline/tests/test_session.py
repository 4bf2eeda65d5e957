"""
Tests for the session registry.

Covers:
  - POST/PUT/DELETE /api/session
  - IP ban check at creation (hashed identity, expiring bans)
  - destroy cascading to the queue entry and the active room
  - is_active window and the expired-session reaper
"""

from datetime import timedelta

import pytest

from pairline.core.security import hash_ip
from pairline.models.banned_ip import BannedIp
from pairline.models.chat_message import MESSAGE_SYSTEM, ChatMessage
from pairline.models.chat_room import ChatRoom
from pairline.models.online_session import OnlineSession, utcnow
from pairline.models.queue_entry import QueueEntry
from pairline.services import session_registry
from pairline.tests.conftest import matched_pair, new_session, request_match


class TestSessionApi:
    def test_create_returns_opaque_id(self, client, db):
        sid = new_session(client)
        assert len(sid) == 32
        int(sid, 16)
        assert db.query(OnlineSession).filter(OnlineSession.session_id == sid).count() == 1

    def test_ip_is_stored_hashed(self, client, db):
        sid = new_session(client, ip="203.0.113.7")
        session = db.query(OnlineSession).filter(OnlineSession.session_id == sid).first()
        assert session.ip_hash == hash_ip("203.0.113.7")
        assert "203.0.113.7" not in session.ip_hash

    def test_heartbeat(self, client):
        sid = new_session(client)
        resp = client.put("/api/session", json={"sessionId": sid})
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    def test_heartbeat_unknown_session(self, client):
        resp = client.put("/api/session", json={"sessionId": "nobody"})
        assert resp.status_code == 404

    def test_banned_ip_rejected(self, client, db):
        db.add(BannedIp(ip_hash=hash_ip("198.51.100.1"), reason="test", banned_until=utcnow() + timedelta(hours=1)))
        db.commit()
        resp = client.post("/api/session", headers={"x-forwarded-for": "198.51.100.1, 10.0.0.1"})
        assert resp.status_code == 403

    def test_expired_ban_allows_session(self, client, db):
        db.add(BannedIp(ip_hash=hash_ip("198.51.100.2"), reason="test", banned_until=utcnow() - timedelta(minutes=1)))
        db.commit()
        assert new_session(client, ip="198.51.100.2")

    def test_permanent_ban(self, client, db):
        db.add(BannedIp(ip_hash=hash_ip("198.51.100.3"), reason="test", banned_until=None))
        db.commit()
        resp = client.post("/api/session", headers={"x-real-ip": "198.51.100.3"})
        assert resp.status_code == 403

    def test_destroy_removes_queue_entry(self, client, db):
        sid = new_session(client)
        request_match(client, sid)
        resp = client.delete("/api/session", params={"sessionId": sid})
        assert resp.status_code == 200
        assert db.query(QueueEntry).filter(QueueEntry.session_id == sid).count() == 0
        assert db.query(OnlineSession).filter(OnlineSession.session_id == sid).count() == 0

    def test_destroy_ends_active_room(self, client, db):
        waiter, claimer, rid = matched_pair(client)
        client.delete("/api/session", params={"sessionId": claimer})

        db.expire_all()
        room = db.query(ChatRoom).filter(ChatRoom.id == rid).first()
        assert room.status == "ended"
        notices = db.query(ChatMessage).filter(ChatMessage.room_id == rid, ChatMessage.message_type == MESSAGE_SYSTEM).all()
        assert [n.content for n in notices] == ["Stranger has disconnected."]
        # the partner's matched entry goes too, so it can search again
        assert db.query(QueueEntry).filter(QueueEntry.session_id == waiter).count() == 0

    def test_destroy_unknown_session_is_harmless(self, client):
        resp = client.delete("/api/session", params={"sessionId": "nobody"})
        assert resp.status_code == 200


class TestRegistry:
    @pytest.mark.asyncio
    async def test_is_active_within_window(self, db):
        session = await session_registry.create_session(db, "192.0.2.1")
        assert await session_registry.is_active(db, session.session_id) is True

    @pytest.mark.asyncio
    async def test_is_active_false_after_expiry(self, db):
        session = await session_registry.create_session(db, "192.0.2.1")
        session.last_heartbeat = utcnow() - timedelta(minutes=10)
        db.commit()
        assert await session_registry.is_active(db, session.session_id) is False

    @pytest.mark.asyncio
    async def test_is_active_unknown(self, db):
        assert await session_registry.is_active(db, "nobody") is False

    @pytest.mark.asyncio
    async def test_create_rejects_banned(self, db):
        db.add(BannedIp(ip_hash=hash_ip("192.0.2.9"), reason="test"))
        db.commit()
        with pytest.raises(session_registry.AccessDeniedError):
            await session_registry.create_session(db, "192.0.2.9")

    @pytest.mark.asyncio
    async def test_reaper_destroys_only_expired(self, db):
        stale = await session_registry.create_session(db, "192.0.2.1")
        fresh = await session_registry.create_session(db, "192.0.2.2")
        stale.last_heartbeat = utcnow() - timedelta(minutes=10)
        db.commit()

        reaped = await session_registry.reap_expired(db)

        assert list(reaped) == [stale.session_id]
        assert session_registry.get_session(db, stale.session_id) is None
        assert session_registry.get_session(db, fresh.session_id) is not None

    @pytest.mark.asyncio
    async def test_reaper_reports_ended_rooms(self, db):
        from pairline.services import matchmaking

        a = await session_registry.create_session(db, "192.0.2.1")
        b = await session_registry.create_session(db, "192.0.2.2")
        matchmaking.try_match(db, a.session_id, "text")
        result = matchmaking.try_match(db, b.session_id, "text")

        a.last_heartbeat = utcnow() - timedelta(minutes=10)
        db.commit()

        reaped = await session_registry.reap_expired(db)
        assert reaped == {a.session_id: [result.room_id]}
