"""
Room lifecycle and the per-room message stream (text, system notices and
stored negotiation signals).

Functions here stage changes on the session; callers commit.
"""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from pairline.core import events
from pairline.core.pairing import room_id
from pairline.models.chat_message import (
    MESSAGE_SIGNAL,
    MESSAGE_SYSTEM,
    MESSAGE_TEXT,
    SYSTEM_SENDER,
    ChatMessage,
)
from pairline.models.chat_room import ROOM_ACTIVE, ChatRoom
from pairline.models.online_session import utcnow
from pairline.models.queue_entry import QueueEntry

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_room(db: Session, rid: str) -> ChatRoom | None:
    return db.query(ChatRoom).filter(ChatRoom.id == rid).first()


def open_room(db: Session, a: str, b: str, chat_type: str) -> ChatRoom:
    """Return the active room for a pair, creating it if needed.

    An ended room for the same pair is reopened with its old messages
    removed, so history never outlives the room it belonged to.
    """
    rid = room_id(a, b)
    room = get_room(db, rid)
    if room is not None and room.is_active:
        return room
    if room is not None:
        db.query(ChatMessage).filter(ChatMessage.room_id == rid).delete(synchronize_session=False)
        room.status = ROOM_ACTIVE
        room.chat_type = chat_type
        room.created_at = utcnow()
        room.ended_at = None
        logger.info("Room %s reopened (%s)", rid, chat_type)
        return room
    first, second = sorted((a, b))
    room = ChatRoom(id=rid, participant_a=first, participant_b=second, chat_type=chat_type, status=ROOM_ACTIVE)
    db.add(room)
    logger.info("Room %s opened (%s)", rid, chat_type)
    return room


def end_room(db: Session, room: ChatRoom) -> bool:
    """End a room: system notice, status → ended, both queue entries removed.

    Returns False when the room had already ended (nothing is changed).
    """
    if not room.end():
        return False
    db.add(
        ChatMessage(
            room_id=room.id,
            sender_session_id=SYSTEM_SENDER,
            message_type=MESSAGE_SYSTEM,
            content=events.DISCONNECT_NOTICE,
        )
    )
    db.query(QueueEntry).filter(
        QueueEntry.session_id.in_([room.participant_a, room.participant_b])
    ).delete(synchronize_session=False)
    logger.info("Room %s ended", room.id)
    return True


def active_rooms_for(db: Session, session_id: str) -> list[ChatRoom]:
    return (
        db.query(ChatRoom)
        .filter(
            ChatRoom.status == ROOM_ACTIVE,
            (ChatRoom.participant_a == session_id) | (ChatRoom.participant_b == session_id),
        )
        .all()
    )


def add_message(db: Session, room: ChatRoom, sender: str, content: str, max_length: int) -> ChatMessage:
    message = ChatMessage(
        room_id=room.id,
        sender_session_id=sender,
        message_type=MESSAGE_TEXT,
        content=content[:max_length],
    )
    db.add(message)
    return message


def list_messages(db: Session, rid: str, limit: int, before: datetime | None = None) -> list[ChatMessage]:
    """Newest `limit` non-signal messages (before a timestamp), oldest first."""
    query = db.query(ChatMessage).filter(
        ChatMessage.room_id == rid,
        ChatMessage.message_type != MESSAGE_SIGNAL,
    )
    if before is not None:
        query = query.filter(ChatMessage.created_at < as_utc(before))
    newest = query.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc()).limit(limit).all()
    return list(reversed(newest))


def add_signal(db: Session, room: ChatRoom, sender: str, signal_type: str, signal: object) -> ChatMessage:
    message = ChatMessage(
        room_id=room.id,
        sender_session_id=sender,
        message_type=MESSAGE_SIGNAL,
        content=json.dumps({"type": signal_type, "signal": signal}),
    )
    db.add(message)
    return message


def list_signals(
    db: Session,
    rid: str,
    session_id: str,
    after: datetime | None,
    limit: int,
) -> list[dict]:
    """Signals sent by the *other* participant strictly after `after`, ascending."""
    query = db.query(ChatMessage).filter(
        ChatMessage.room_id == rid,
        ChatMessage.message_type == MESSAGE_SIGNAL,
        ChatMessage.sender_session_id != session_id,
    )
    if after is not None:
        query = query.filter(ChatMessage.created_at > as_utc(after))
    rows = query.order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc()).limit(limit).all()

    signals = []
    for row in rows:
        try:
            body = json.loads(row.content)
        except json.JSONDecodeError:
            logger.warning("Skipping unreadable signal %s in room %s", row.id, rid)
            continue
        signals.append(
            {
                "id": row.id,
                "type": body.get("type"),
                "signal": body.get("signal"),
                "created_at": as_utc(row.created_at),
            }
        )
    return signals
