from typing import Literal

from pydantic import Field

from pairline.schemas.base import CamelModel


class ReportCreate(CamelModel):
    session_id: str = Field(..., min_length=1)
    reported_session_id: str = Field(..., min_length=1)
    room_id: str | None = None
    reason: Literal["inappropriate", "spam", "harassment", "underage", "other"]
    description: str | None = None


class ReportResponse(CamelModel):
    success: bool = True
    report_id: int
