"""
Signal fallback endpoints: the delivery path used when the push relay drops
a negotiation message.

POST /api/chat/signal {roomId, sessionId, type, signal}   400 room not active, 403 not a participant
GET  /api/chat/signal?roomId&sessionId&after              ≤ SIGNAL_PAGE_SIZE signals from the other side, ascending
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pairline.api.deps import require_room_participant
from pairline.config import settings
from pairline.database import get_db
from pairline.schemas.base import SuccessResponse
from pairline.schemas.signal import SignalCreate, SignalList, SignalResponse
from pairline.services import rooms

router = APIRouter(prefix="/chat/signal", tags=["signal"])


@router.post("", response_model=SuccessResponse)
async def post_signal(body: SignalCreate, db: Session = Depends(get_db)) -> SuccessResponse:
    room = require_room_participant(db, body.room_id, body.session_id, require_active=True)
    rooms.add_signal(db, room, body.session_id, body.type.value, body.signal)
    db.commit()
    return SuccessResponse()


@router.get("", response_model=SignalList)
async def get_signals(
    room_id: str = Query(..., alias="roomId", min_length=1),
    session_id: str = Query(..., alias="sessionId", min_length=1),
    after: datetime | None = Query(None),
    db: Session = Depends(get_db),
) -> SignalList:
    require_room_participant(db, room_id, session_id)
    signals = rooms.list_signals(db, room_id, session_id, after, settings.SIGNAL_PAGE_SIZE)
    return SignalList(signals=[SignalResponse(**s) for s in signals])
