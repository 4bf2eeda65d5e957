from datetime import datetime
from typing import Any

from pydantic import Field

from pairline.core.signals import SignalKind
from pairline.schemas.base import CamelModel


class SignalCreate(CamelModel):
    room_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    type: SignalKind
    signal: Any = Field(...)


class SignalResponse(CamelModel):
    id: int
    type: str | None
    signal: Any
    created_at: datetime


class SignalList(CamelModel):
    signals: list[SignalResponse]
