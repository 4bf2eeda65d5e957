from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from pairline.database import get_db
from pairline.schemas.report import ReportCreate, ReportResponse
from pairline.services import moderation, session_registry

router = APIRouter(prefix="/report", tags=["report"])


@router.post("", response_model=ReportResponse)
async def submit_report(body: ReportCreate, db: Session = Depends(get_db)) -> ReportResponse:
    if session_registry.get_session(db, body.session_id) is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    if body.reported_session_id == body.session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot report yourself")

    report = moderation.submit_report(
        db,
        reporter_session_id=body.session_id,
        reported_session_id=body.reported_session_id,
        reason=body.reason,
        room_id=body.room_id,
        description=body.description,
    )
    return ReportResponse(report_id=report.id)
