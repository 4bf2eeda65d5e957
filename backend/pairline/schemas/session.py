from pydantic import Field

from pairline.schemas.base import CamelModel


class SessionResponse(CamelModel):
    session_id: str


class HeartbeatRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
