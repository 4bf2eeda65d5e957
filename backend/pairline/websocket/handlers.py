import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from pairline.core import events
from pairline.services import matchmaking, rooms, session_registry
from pairline.websocket.manager import manager

logger = logging.getLogger(__name__)


async def _authenticate(websocket: WebSocket, db: Session) -> str | None:
    """Expect the first message to be {"type": "auth", "session_id": "<id>"}."""
    await websocket.accept()  # must accept before receive_text()
    try:
        raw = await websocket.receive_text()
        data = json.loads(raw)
    except Exception:
        await websocket.close(code=1008)
        return None

    if not isinstance(data, dict) or data.get("type") != events.AUTH:
        await websocket.close(code=1008)
        return None

    session_id = data.get("session_id")
    if not isinstance(session_id, str) or session_registry.get_session(db, session_id) is None:
        await websocket.close(code=1008)
        return None

    return session_id


async def relay_ws_handler(websocket: WebSocket, channel: str, db: Session) -> None:
    """Broadcast relay for one room's negotiation messages.

    Only the room's two participants may subscribe, and only while the room
    is active.  {"type": "relay.broadcast", "event": ..., "payload": ...}
    from one subscriber is forwarded verbatim to the other.
    """
    session_id = await _authenticate(websocket, db)
    if session_id is None:
        return

    room = rooms.get_room(db, channel)
    if room is None or not room.is_active or not room.has_participant(session_id):
        await websocket.close(code=1008)
        return

    manager.join_channel(channel, session_id, websocket)
    try:
        await websocket.send_text(json.dumps({"type": events.RELAY_SUBSCRIBED, "channel": channel}))

        while True:
            raw = await websocket.receive_text()
            try:
                msg: dict[str, Any] = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict) or msg.get("type") != events.RELAY_BROADCAST:
                continue
            event = msg.get("event")
            if not isinstance(event, str):
                continue
            await manager.relay(
                channel,
                {"type": events.RELAY_BROADCAST, "event": event, "payload": msg.get("payload")},
                exclude_session_id=session_id,
            )

    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.exception("relay_ws_handler: unexpected error: %s", exc)
    finally:
        manager.leave_channel(channel, session_id, websocket)


async def match_ws_handler(websocket: WebSocket, db: Session) -> None:
    """Push channel for match notifications.

    If the session is already matched when it connects, the match is pushed
    straight away; otherwise a match.found arrives when a later arrival claims
    this session's queue entry.
    """
    session_id = await _authenticate(websocket, db)
    if session_id is None:
        return

    await manager.watch(session_id, websocket)
    try:
        result = matchmaking.poll_match(db, session_id)
        if result.matched:
            await websocket.send_text(
                json.dumps(
                    {
                        "type": events.MATCH_FOUND,
                        "partner_id": result.partner_id,
                        "room_id": result.room_id,
                    }
                )
            )
        while True:
            raw = await websocket.receive_text()
            if raw == events.PING:
                await websocket.send_text(json.dumps({"type": events.PONG}))
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.exception("match_ws_handler: unexpected error: %s", exc)
    finally:
        manager.unwatch(session_id, websocket)


async def room_ws_handler(websocket: WebSocket, room_id: str, db: Session) -> None:
    """Live push of a room's text messages and its end notice."""
    session_id = await _authenticate(websocket, db)
    if session_id is None:
        return

    room = rooms.get_room(db, room_id)
    if room is None or not room.has_participant(session_id):
        await websocket.close(code=1008)
        return

    manager.join_room(room_id, session_id, websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            if raw == events.PING:
                await websocket.send_text(json.dumps({"type": events.PONG}))
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.exception("room_ws_handler: unexpected error: %s", exc)
    finally:
        manager.leave_room(room_id, session_id, websocket)
