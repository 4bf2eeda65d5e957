from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship

from pairline.database import Base
from pairline.models.online_session import utcnow

ROOM_ACTIVE = "active"
ROOM_ENDED = "ended"


class ChatRoom(Base):
    """The pairing of two matched sessions.

    The primary key is derived from the two session ids (see
    pairline.core.pairing.room_id), so both sides can compute it on their own.
    participant_a always holds the lexicographically smaller id.
    """

    __tablename__ = "chat_rooms"

    id = Column(String(140), primary_key=True)
    participant_a = Column(String(64), index=True, nullable=False)
    participant_b = Column(String(64), index=True, nullable=False)
    chat_type = Column(String(10), nullable=False)
    status = Column(String(10), default=ROOM_ACTIVE, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    messages = relationship("ChatMessage", back_populates="room", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == ROOM_ACTIVE

    def has_participant(self, session_id: str) -> bool:
        return session_id in (self.participant_a, self.participant_b)

    def other_participant(self, session_id: str) -> str:
        return self.participant_b if self.participant_a == session_id else self.participant_a

    def end(self) -> bool:
        """Move active → ended.  Returns False if the room had already ended."""
        if self.status != ROOM_ACTIVE:
            return False
        self.status = ROOM_ENDED
        self.ended_at = utcnow()
        return True
