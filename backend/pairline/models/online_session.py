from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from pairline.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OnlineSession(Base):
    """One anonymous participant, alive while it keeps sending heartbeats."""

    __tablename__ = "online_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), unique=True, index=True, nullable=False)
    # sha256(ip + SECRET_KEY), truncated; the raw address is never stored
    ip_hash = Column(String(64), index=True, nullable=False)
    last_heartbeat = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
