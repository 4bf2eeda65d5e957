from typing import Literal

from pydantic import Field

from pairline.schemas.base import CamelModel


class MatchRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    chat_type: Literal["text", "video"]


class MatchResponse(CamelModel):
    matched: bool
    partner_id: str | None = None
    room_id: str | None = None
    status: Literal["searching", "idle"] | None = None
