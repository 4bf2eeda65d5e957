"""
Session registry: who is currently present.

A session is created on first contact (after the IP ban check), kept alive by
heartbeats and destroyed on explicit disconnect or when its heartbeat is older
than HEARTBEAT_INTERVAL_SECONDS * SESSION_EXPIRY_FACTOR.  Destroying a session
cascades to its queue entry and any active room.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from pairline.config import settings
from pairline.core.security import generate_session_id, hash_ip
from pairline.models.banned_ip import BannedIp
from pairline.models.online_session import OnlineSession, utcnow
from pairline.models.queue_entry import QueueEntry
from pairline.redis import presence
from pairline.services import rooms

logger = logging.getLogger(__name__)


class AccessDeniedError(Exception):
    """The caller's network identity is banned."""


def get_session(db: Session, session_id: str) -> OnlineSession | None:
    return db.query(OnlineSession).filter(OnlineSession.session_id == session_id).first()


def is_banned(db: Session, ip_hash: str, now: datetime | None = None) -> bool:
    now = now or utcnow()
    ban = (
        db.query(BannedIp)
        .filter(
            BannedIp.ip_hash == ip_hash,
            BannedIp.banned_until.is_(None) | (BannedIp.banned_until > now),
        )
        .first()
    )
    return ban is not None


async def create_session(db: Session, ip: str) -> OnlineSession:
    ip_hash = hash_ip(ip)
    if is_banned(db, ip_hash):
        logger.info("Rejected session for banned ip hash %s", ip_hash[:8])
        raise AccessDeniedError("Access denied")

    session = OnlineSession(session_id=generate_session_id(), ip_hash=ip_hash)
    db.add(session)
    db.commit()
    db.refresh(session)
    await presence.set_online(session.session_id)
    return session


async def heartbeat(db: Session, session_id: str) -> bool:
    """Refresh last_heartbeat.  False if the session does not exist."""
    session = get_session(db, session_id)
    if session is None:
        return False
    session.last_heartbeat = utcnow()
    db.commit()
    await presence.heartbeat(session_id)
    return True


async def is_active(db: Session, session_id: str) -> bool:
    online = await presence.is_online(session_id)
    if online is not None:
        return online
    session = get_session(db, session_id)
    if session is None:
        return False
    window = timedelta(seconds=settings.session_expiry_seconds)
    return utcnow() - rooms.as_utc(session.last_heartbeat) <= window


async def destroy_session(db: Session, session_id: str) -> list[str]:
    """Delete a session, its queue entry, and end its active rooms.

    Returns the ids of rooms that were ended so callers can notify the
    remaining participant.  Safe to call for an unknown session.
    """
    db.query(QueueEntry).filter(QueueEntry.session_id == session_id).delete(synchronize_session=False)
    ended = [room.id for room in rooms.active_rooms_for(db, session_id) if rooms.end_room(db, room)]
    db.query(OnlineSession).filter(OnlineSession.session_id == session_id).delete(synchronize_session=False)
    db.commit()
    await presence.set_offline(session_id)
    logger.info("Session %s destroyed (%d room(s) ended)", session_id, len(ended))
    return ended


async def reap_expired(db: Session) -> dict[str, list[str]]:
    """Destroy every session whose heartbeat is past the expiry window.

    Returns {session_id: [ended room ids]}.
    """
    cutoff = utcnow() - timedelta(seconds=settings.session_expiry_seconds)
    stale = [
        s.session_id
        for s in db.query(OnlineSession).filter(OnlineSession.last_heartbeat < cutoff).all()
    ]
    reaped = {}
    for session_id in stale:
        reaped[session_id] = await destroy_session(db, session_id)
    if reaped:
        logger.info("Reaped %d expired session(s)", len(reaped))
    return reaped


async def run_reaper(session_factory, on_rooms_ended=None) -> None:
    """Background loop: reap expired sessions once per heartbeat interval."""
    while True:
        await asyncio.sleep(settings.HEARTBEAT_INTERVAL_SECONDS)
        db = session_factory()
        try:
            reaped = await reap_expired(db)
            if on_rooms_ended is not None:
                for room_ids in reaped.values():
                    for rid in room_ids:
                        await on_rooms_ended(rid)
        except Exception as exc:
            logger.error("Session reaper pass failed: %s", exc, exc_info=True)
        finally:
            db.close()
