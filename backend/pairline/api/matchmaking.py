"""
Matchmaking endpoints.

POST   /api/matchmaking {sessionId, chatType} → {matched, partnerId?, roomId?} | {matched: false, status: "searching"}
GET    /api/matchmaking?sessionId=            → same shape, status "idle" when there is no entry
DELETE /api/matchmaking?sessionId=            → {success}
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pairline.core import events
from pairline.core.errors import AppException, ErrorCode, create_error
from pairline.database import get_db
from pairline.schemas.base import SuccessResponse
from pairline.schemas.matchmaking import MatchRequest, MatchResponse
from pairline.services import matchmaking
from pairline.websocket.manager import manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matchmaking", tags=["matchmaking"])


def _response(result: matchmaking.MatchResult) -> MatchResponse:
    return MatchResponse(
        matched=result.matched,
        partner_id=result.partner_id,
        room_id=result.room_id,
        status=result.status,
    )


def _failure(db: Session, exc: Exception, context: str) -> AppException:
    db.rollback()
    logger.error("%s failed: %s", context, exc, exc_info=True)
    return AppException(create_error(ErrorCode.MATCHMAKING_FAILED, str(exc)))


@router.post("", response_model=MatchResponse, response_model_exclude_none=True)
async def request_match(body: MatchRequest, db: Session = Depends(get_db)) -> MatchResponse:
    try:
        result = matchmaking.try_match(db, body.session_id, body.chat_type)
    except SQLAlchemyError as exc:
        raise _failure(db, exc, "Matchmaking") from exc

    if result.matched:
        # Push to the waiter we paired with; polling covers a missed push
        await manager.notify_session(
            result.partner_id,
            {"type": events.MATCH_FOUND, "partner_id": body.session_id, "room_id": result.room_id},
        )
    return _response(result)


@router.get("", response_model=MatchResponse, response_model_exclude_none=True)
async def match_status(
    session_id: str = Query(..., alias="sessionId", min_length=1),
    db: Session = Depends(get_db),
) -> MatchResponse:
    try:
        return _response(matchmaking.poll_match(db, session_id))
    except SQLAlchemyError as exc:
        raise _failure(db, exc, "Match status") from exc


@router.delete("", response_model=SuccessResponse)
async def cancel_match(
    session_id: str = Query(..., alias="sessionId", min_length=1),
    db: Session = Depends(get_db),
) -> SuccessResponse:
    try:
        matchmaking.cancel(db, session_id)
    except SQLAlchemyError as exc:
        raise _failure(db, exc, "Cancel matchmaking") from exc
    return SuccessResponse()
