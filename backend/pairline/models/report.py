from sqlalchemy import Column, DateTime, Integer, String

from pairline.database import Base
from pairline.models.online_session import utcnow

REPORT_PENDING = "pending"
REPORT_ACTIONED = "actioned"


class UserReport(Base):
    __tablename__ = "user_reports"

    id = Column(Integer, primary_key=True, index=True)
    reporter_session_id = Column(String(64), nullable=False)
    reported_session_id = Column(String(64), index=True, nullable=False)
    room_id = Column(String(140), nullable=True)
    reason = Column(String(20), nullable=False)
    description = Column(String(1000), nullable=True)
    status = Column(String(10), default=REPORT_PENDING, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
