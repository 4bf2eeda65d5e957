"""
Session registry endpoints.

POST   /api/session              issue a new session id (403 if the caller's IP is banned)
PUT    /api/session              heartbeat {sessionId}
DELETE /api/session?sessionId=   destroy; ends any active room and leaves the queue
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from pairline.api.deps import get_client_ip
from pairline.database import get_db
from pairline.schemas.base import SuccessResponse
from pairline.schemas.session import HeartbeatRequest, SessionResponse
from pairline.services import session_registry
from pairline.websocket.manager import manager

router = APIRouter(prefix="/session", tags=["session"])


@router.post("", response_model=SessionResponse)
async def create_session(request: Request, db: Session = Depends(get_db)) -> SessionResponse:
    try:
        session = await session_registry.create_session(db, get_client_ip(request))
    except session_registry.AccessDeniedError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied") from None
    return SessionResponse(session_id=session.session_id)


@router.put("", response_model=SuccessResponse)
async def heartbeat(body: HeartbeatRequest, db: Session = Depends(get_db)) -> SuccessResponse:
    if not await session_registry.heartbeat(db, body.session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return SuccessResponse()


@router.delete("", response_model=SuccessResponse)
async def destroy_session(
    session_id: str = Query(..., alias="sessionId", min_length=1),
    db: Session = Depends(get_db),
) -> SuccessResponse:
    ended = await session_registry.destroy_session(db, session_id)
    for room_id in ended:
        await manager.announce_room_ended(room_id)
    return SuccessResponse()
