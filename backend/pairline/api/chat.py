"""
Text relay for an active room.

GET    /api/chat?roomId&sessionId&limit&before  messages (oldest first) + room status
POST   /api/chat {roomId, sessionId, content}   400 once the room has ended
DELETE /api/chat?roomId&sessionId               end the room for both sides
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pairline.api.deps import require_room_participant
from pairline.config import settings
from pairline.core import events
from pairline.database import get_db
from pairline.schemas.base import SuccessResponse
from pairline.schemas.chat import MessageCreate, MessageList, MessageResponse, SentMessage
from pairline.services import rooms
from pairline.websocket.manager import manager

router = APIRouter(prefix="/chat", tags=["chat"])


@router.get("", response_model=MessageList)
async def get_messages(
    room_id: str = Query(..., alias="roomId", min_length=1),
    session_id: str = Query(..., alias="sessionId", min_length=1),
    limit: int = Query(50, ge=1, le=200),
    before: datetime | None = Query(None),
    db: Session = Depends(get_db),
) -> MessageList:
    room = require_room_participant(db, room_id, session_id)
    limit = min(limit, settings.MESSAGE_PAGE_LIMIT)
    messages = rooms.list_messages(db, room_id, limit, before)
    return MessageList(
        messages=[MessageResponse.model_validate(m) for m in messages],
        status=room.status,
    )


@router.post("", response_model=SentMessage)
async def send_message(body: MessageCreate, db: Session = Depends(get_db)) -> SentMessage:
    room = require_room_participant(db, body.room_id, body.session_id, require_active=True)
    message = rooms.add_message(db, room, body.session_id, body.content, settings.MESSAGE_MAX_LENGTH)
    db.commit()
    db.refresh(message)
    response = MessageResponse.model_validate(message)
    await manager.broadcast_room(
        room.id,
        {"type": events.MESSAGE_NEW, "message": response.model_dump(mode="json", by_alias=True)},
    )
    return SentMessage(message=response)


@router.delete("", response_model=SuccessResponse)
async def end_chat(
    room_id: str = Query(..., alias="roomId", min_length=1),
    session_id: str = Query(..., alias="sessionId", min_length=1),
    db: Session = Depends(get_db),
) -> SuccessResponse:
    room = require_room_participant(db, room_id, session_id)
    if rooms.end_room(db, room):
        db.commit()
        await manager.announce_room_ended(room.id)
    return SuccessResponse()
