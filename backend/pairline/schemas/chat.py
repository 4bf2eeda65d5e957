from datetime import datetime
from typing import Literal

from pydantic import Field, field_validator

from pairline.schemas.base import CamelModel


class MessageCreate(CamelModel):
    room_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    content: str

    @field_validator("content")
    @classmethod
    def require_content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message must have content")
        return value


class MessageResponse(CamelModel):
    id: int
    room_id: str
    sender_session_id: str
    message_type: Literal["text", "system"]
    content: str
    created_at: datetime


class MessageList(CamelModel):
    messages: list[MessageResponse]
    status: Literal["active", "ended"]


class SentMessage(CamelModel):
    message: MessageResponse
