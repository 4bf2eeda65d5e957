from sqlalchemy import Column, DateTime, Integer, String

from pairline.database import Base
from pairline.models.online_session import utcnow


class BannedIp(Base):
    __tablename__ = "banned_ips"

    id = Column(Integer, primary_key=True, index=True)
    ip_hash = Column(String(64), unique=True, index=True, nullable=False)
    reason = Column(String(200), nullable=True)
    # NULL means permanent
    banned_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
