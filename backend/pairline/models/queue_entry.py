from sqlalchemy import Column, DateTime, Integer, String

from pairline.database import Base
from pairline.models.online_session import utcnow


class QueueEntry(Base):
    """A waiting-or-matched record for one session in the matchmaking queue.

    session_id is unique: enqueueing twice overwrites rather than duplicates.
    matched_with is written once by the matcher and never cleared; the row is
    deleted instead.
    """

    __tablename__ = "matchmaking_queue"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), unique=True, index=True, nullable=False)
    chat_type = Column(String(10), index=True, nullable=False)
    matched_with = Column(String(64), nullable=True, index=True)
    matched_at = Column(DateTime(timezone=True), nullable=True)
    # Python-side default keeps microseconds so FIFO order is stable on SQLite
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
