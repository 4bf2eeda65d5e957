from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from pairline.database import Base
from pairline.models.online_session import utcnow

MESSAGE_TEXT = "text"
MESSAGE_SYSTEM = "system"
MESSAGE_SIGNAL = "signal"

SYSTEM_SENDER = "system"


class ChatMessage(Base):
    """A text message, system notice or stored negotiation signal in a room."""

    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(String(140), ForeignKey("chat_rooms.id", ondelete="CASCADE"), index=True, nullable=False)
    sender_session_id = Column(String(64), nullable=False)
    message_type = Column(String(10), default=MESSAGE_TEXT, nullable=False)
    # For signals: JSON {"type": ..., "signal": ...}
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    room = relationship("ChatRoom", back_populates="messages")
