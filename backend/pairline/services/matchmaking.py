"""
Matchmaking queue: pairs two waiting sessions that asked for the same chat
type.

try_match():
  1. already matched           → return the recorded partner
  2. oldest unmatched waiter of the same chat type (FIFO by created_at)
  3. claim it with a conditional UPDATE ... WHERE matched_with IS NULL
  4. claim won                 → record the reciprocal pairing, open the room
  5. claim lost / no waiter    → upsert our own waiting entry

The conditional claim is the only place two requests race on shared state;
its rowcount decides the single winner.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pairline.core.pairing import room_id
from pairline.models.online_session import utcnow
from pairline.models.queue_entry import QueueEntry
from pairline.services import rooms

logger = logging.getLogger(__name__)

CHAT_TYPES = ("text", "video")

STATUS_SEARCHING = "searching"
STATUS_IDLE = "idle"


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    partner_id: str | None = None
    room_id: str | None = None
    status: str | None = None

    @classmethod
    def paired(cls, session_id: str, partner_id: str) -> "MatchResult":
        return cls(matched=True, partner_id=partner_id, room_id=room_id(session_id, partner_id))


def get_entry(db: Session, session_id: str) -> QueueEntry | None:
    return db.query(QueueEntry).filter(QueueEntry.session_id == session_id).first()


def _find_candidate(db: Session, session_id: str, chat_type: str) -> QueueEntry | None:
    return (
        db.query(QueueEntry)
        .filter(
            QueueEntry.chat_type == chat_type,
            QueueEntry.matched_with.is_(None),
            QueueEntry.session_id != session_id,
        )
        .order_by(QueueEntry.created_at.asc(), QueueEntry.id.asc())
        .first()
    )


def _claim(db: Session, entry_id: int, claimer_id: str, now: datetime) -> bool:
    """Atomically set matched_with on a waiting entry.  True if we won."""
    updated = (
        db.query(QueueEntry)
        .filter(QueueEntry.id == entry_id, QueueEntry.matched_with.is_(None))
        .update({"matched_with": claimer_id, "matched_at": now}, synchronize_session=False)
    )
    return updated == 1


def _record_own_match(db: Session, session_id: str, chat_type: str, partner_id: str, now: datetime) -> bool:
    """Write the claimer's reciprocal entry.

    Conditional as well: if our own waiting entry was claimed by someone else
    while we were claiming, we must not overwrite that pairing.
    """
    if get_entry(db, session_id) is None:
        db.add(QueueEntry(session_id=session_id, chat_type=chat_type, matched_with=partner_id, matched_at=now))
        try:
            db.flush()
            return True
        except IntegrityError:
            return False
    updated = (
        db.query(QueueEntry)
        .filter(QueueEntry.session_id == session_id, QueueEntry.matched_with.is_(None))
        .update(
            {"chat_type": chat_type, "matched_with": partner_id, "matched_at": now},
            synchronize_session=False,
        )
    )
    return updated == 1


def _enqueue(db: Session, session_id: str, chat_type: str) -> None:
    """Upsert an unmatched entry.  A repeat call keeps its original place."""
    entry = get_entry(db, session_id)
    if entry is None:
        db.add(QueueEntry(session_id=session_id, chat_type=chat_type))
        try:
            db.commit()
            return
        except IntegrityError:
            # A concurrent request for the same session inserted first
            db.rollback()
            entry = get_entry(db, session_id)
            if entry is None:
                raise
    if entry.matched_with is None:
        entry.chat_type = chat_type
    db.commit()


def try_match(db: Session, session_id: str, chat_type: str) -> MatchResult:
    if chat_type not in CHAT_TYPES:
        raise ValueError(f"chat_type must be one of {CHAT_TYPES}")

    existing = get_entry(db, session_id)
    if existing is not None and existing.matched_with:
        return MatchResult.paired(session_id, existing.matched_with)

    candidate = _find_candidate(db, session_id, chat_type)
    if candidate is not None:
        partner_id = candidate.session_id
        now = utcnow()
        if _claim(db, candidate.id, session_id, now):
            if _record_own_match(db, session_id, chat_type, partner_id, now):
                rooms.open_room(db, session_id, partner_id, chat_type)
                db.commit()
                logger.info("Matched %s with %s (%s)", session_id, partner_id, chat_type)
                return MatchResult.paired(session_id, partner_id)

            # We were claimed by a third session mid-flight: undo our claim
            db.rollback()
            mine = get_entry(db, session_id)
            if mine is not None and mine.matched_with:
                return MatchResult.paired(session_id, mine.matched_with)
        else:
            logger.info("Lost claim on %s to a concurrent request (%s)", partner_id, session_id)
            db.rollback()

    _enqueue(db, session_id, chat_type)
    mine = get_entry(db, session_id)
    if mine is not None and mine.matched_with:
        return MatchResult.paired(session_id, mine.matched_with)
    return MatchResult(matched=False, status=STATUS_SEARCHING)


def poll_match(db: Session, session_id: str) -> MatchResult:
    """Pure read of the caller's entry."""
    entry = get_entry(db, session_id)
    if entry is not None and entry.matched_with:
        return MatchResult.paired(session_id, entry.matched_with)
    return MatchResult(matched=False, status=STATUS_SEARCHING if entry is not None else STATUS_IDLE)


def cancel(db: Session, session_id: str) -> None:
    """Delete the caller's entry.  Idempotent."""
    deleted = db.query(QueueEntry).filter(QueueEntry.session_id == session_id).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info("Queue entry for %s cancelled", session_id)
