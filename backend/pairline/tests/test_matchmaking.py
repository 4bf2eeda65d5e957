"""
Tests for the matchmaking queue.

Covers:
  - idempotent enqueue (one entry per session, original place kept)
  - pairing, FIFO order, chat type separation
  - the conditional claim: a stale candidate can only be claimed once
  - cancel / idle status, and the storage-failure error shape
  - match.found push over /ws/matchmaking
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

import pairline.services.matchmaking as matchmaking_mod
from pairline.core.pairing import room_id
from pairline.models.chat_room import ChatRoom
from pairline.models.queue_entry import QueueEntry
from pairline.tests.conftest import matched_pair, new_session, request_match


class TestEnqueue:
    def test_first_request_waits(self, client):
        sid = new_session(client)
        data = request_match(client, sid)
        assert data == {"matched": False, "status": "searching"}

    def test_repeated_requests_keep_one_entry(self, client, db):
        sid = new_session(client)
        for _ in range(4):
            assert request_match(client, sid)["matched"] is False

        entries = db.query(QueueEntry).filter(QueueEntry.session_id == sid).all()
        assert len(entries) == 1

    def test_repeated_request_keeps_queue_position(self, client, db):
        first = new_session(client)
        second = new_session(client)
        request_match(client, first)
        request_match(client, second)
        request_match(client, first)  # re-request must not move first behind second

        newcomer = new_session(client)
        assert request_match(client, newcomer)["partnerId"] == first

    def test_invalid_chat_type_rejected(self, client):
        sid = new_session(client)
        resp = client.post("/api/matchmaking", json={"sessionId": sid, "chatType": "voice"})
        assert resp.status_code == 422


class TestPairing:
    def test_second_arrival_is_matched(self, client):
        waiter, claimer, rid = matched_pair(client)
        assert rid == room_id(waiter, claimer)

        resp = client.get("/api/matchmaking", params={"sessionId": waiter})
        assert resp.status_code == 200
        assert resp.json() == {"matched": True, "partnerId": claimer, "roomId": rid}

    def test_matched_session_gets_same_partner_again(self, client):
        waiter, claimer, rid = matched_pair(client)
        again = request_match(client, claimer)
        assert again["matched"] is True
        assert again["partnerId"] == waiter
        assert again["roomId"] == rid

    def test_match_opens_active_room(self, client, db):
        waiter, claimer, rid = matched_pair(client, chat_type="video")
        room = db.query(ChatRoom).filter(ChatRoom.id == rid).first()
        assert room is not None
        assert room.is_active
        assert room.chat_type == "video"
        assert (room.participant_a, room.participant_b) == tuple(sorted((waiter, claimer)))

    def test_oldest_waiter_matched_first(self, client):
        w1 = new_session(client)
        w2 = new_session(client)
        request_match(client, w1)
        request_match(client, w2)

        newcomer = new_session(client)
        result = request_match(client, newcomer)
        assert result["partnerId"] == w1

        # w2 is still waiting
        assert client.get("/api/matchmaking", params={"sessionId": w2}).json()["status"] == "searching"

    def test_chat_types_do_not_mix(self, client):
        text_waiter = new_session(client)
        request_match(client, text_waiter, "text")

        video = new_session(client)
        assert request_match(client, video, "video")["matched"] is False

    def test_pair_can_match_again_after_room_ended(self, client, db):
        waiter, claimer, rid = matched_pair(client)
        resp = client.delete("/api/chat", params={"roomId": rid, "sessionId": waiter})
        assert resp.status_code == 200

        assert request_match(client, waiter)["matched"] is False
        again = request_match(client, claimer)
        assert again["matched"] is True
        assert again["roomId"] == rid

        db.expire_all()
        room = db.query(ChatRoom).filter(ChatRoom.id == rid).first()
        assert room.is_active


class TestConditionalClaim:
    def test_stale_candidate_claimed_once(self, db, monkeypatch):
        waiter, late1, late2 = "a" * 32, "b" * 32, "c" * 32
        assert matchmaking_mod.try_match(db, waiter, "text").matched is False

        # Both late arrivals "found" the same waiting entry before either claimed it
        stale = matchmaking_mod.get_entry(db, waiter)
        monkeypatch.setattr(matchmaking_mod, "_find_candidate", lambda *_: stale)

        first = matchmaking_mod.try_match(db, late1, "text")
        second = matchmaking_mod.try_match(db, late2, "text")

        assert first.matched is True and first.partner_id == waiter
        assert second.matched is False and second.status == "searching"

        db.expire_all()
        assert matchmaking_mod.get_entry(db, waiter).matched_with == late1
        assert matchmaking_mod.get_entry(db, late1).matched_with == waiter
        assert matchmaking_mod.get_entry(db, late2).matched_with is None

    def test_claim_does_not_touch_matched_entry(self, db):
        matchmaking_mod.try_match(db, "a" * 32, "text")
        matchmaking_mod.try_match(db, "b" * 32, "text")
        entry = matchmaking_mod.get_entry(db, "a" * 32)

        assert matchmaking_mod._claim(db, entry.id, "c" * 32, entry.matched_at) is False
        db.rollback()
        assert matchmaking_mod.get_entry(db, "a" * 32).matched_with == "b" * 32

    def test_self_is_never_a_candidate(self, db):
        matchmaking_mod.try_match(db, "a" * 32, "text")
        assert matchmaking_mod._find_candidate(db, "a" * 32, "text") is None

    def test_unknown_chat_type_raises(self, db):
        with pytest.raises(ValueError):
            matchmaking_mod.try_match(db, "a" * 32, "audio")


class TestCancelAndStatus:
    def test_status_idle_without_entry(self, client):
        sid = new_session(client)
        resp = client.get("/api/matchmaking", params={"sessionId": sid})
        assert resp.json() == {"matched": False, "status": "idle"}

    def test_cancel_is_idempotent(self, client):
        sid = new_session(client)
        request_match(client, sid)
        for _ in range(2):
            resp = client.delete("/api/matchmaking", params={"sessionId": sid})
            assert resp.status_code == 200
            assert resp.json() == {"success": True}
        assert client.get("/api/matchmaking", params={"sessionId": sid}).json()["status"] == "idle"

    def test_cancel_without_entry(self, client):
        resp = client.delete("/api/matchmaking", params={"sessionId": "nobody"})
        assert resp.status_code == 200

    def test_cancelled_waiter_is_not_matched(self, client):
        waiter = new_session(client)
        request_match(client, waiter)
        client.delete("/api/matchmaking", params={"sessionId": waiter})

        newcomer = new_session(client)
        assert request_match(client, newcomer)["matched"] is False

    def test_storage_failure_reports_matchmaking_failed(self, client, monkeypatch):
        def boom(*args, **kwargs):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(matchmaking_mod, "try_match", boom)
        sid = new_session(client)
        resp = client.post("/api/matchmaking", json={"sessionId": sid, "chatType": "text"})
        assert resp.status_code == 500
        body = resp.json()
        assert body["code"] == "MATCHMAKING_FAILED"
        assert body["recoverable"] is True
        assert body["action"] == "Try Again"
        assert "locked" not in body["detail"]


class TestMatchPush:
    def test_waiter_receives_match_found(self, client):
        waiter = new_session(client)
        request_match(client, waiter)

        with client.websocket_connect("/ws/matchmaking") as ws:
            ws.send_json({"type": "auth", "session_id": waiter})
            ws.send_text("ping")
            assert ws.receive_json() == {"type": "pong"}

            claimer = new_session(client)
            request_match(client, claimer)

            event = ws.receive_json()
            assert event["type"] == "match.found"
            assert event["partner_id"] == claimer
            assert event["room_id"] == room_id(waiter, claimer)

    def test_already_matched_pushed_on_connect(self, client):
        waiter, claimer, rid = matched_pair(client)
        with client.websocket_connect("/ws/matchmaking") as ws:
            ws.send_json({"type": "auth", "session_id": waiter})
            event = ws.receive_json()
            assert event == {"type": "match.found", "partner_id": claimer, "room_id": rid}

    def test_unknown_session_rejected(self, client):
        with pytest.raises(Exception):
            with client.websocket_connect("/ws/matchmaking") as ws:
                ws.send_json({"type": "auth", "session_id": "nobody"})
                ws.receive_json()
