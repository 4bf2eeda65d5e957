"""
Report handling with a fixed auto-moderation trigger.

Once a session has AUTO_BAN_THRESHOLD pending reports, its hashed network
identity is banned for AUTO_BAN_DURATION and those reports are marked
actioned.  The threshold is fixed.
"""

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from pairline.models.banned_ip import BannedIp
from pairline.models.online_session import OnlineSession, utcnow
from pairline.models.report import REPORT_ACTIONED, REPORT_PENDING, UserReport

logger = logging.getLogger(__name__)

REPORT_REASONS = ("inappropriate", "spam", "harassment", "underage", "other")
AUTO_BAN_THRESHOLD = 3
AUTO_BAN_DURATION = timedelta(hours=24)
DESCRIPTION_MAX_LENGTH = 1000


def _ban(db: Session, ip_hash: str, report_count: int) -> None:
    until = utcnow() + AUTO_BAN_DURATION
    ban = db.query(BannedIp).filter(BannedIp.ip_hash == ip_hash).first()
    if ban is None:
        ban = BannedIp(ip_hash=ip_hash)
        db.add(ban)
    ban.reason = f"Auto-ban: {report_count} reports"
    ban.banned_until = until


def submit_report(
    db: Session,
    reporter_session_id: str,
    reported_session_id: str,
    reason: str,
    room_id: str | None = None,
    description: str | None = None,
) -> UserReport:
    if reason not in REPORT_REASONS:
        raise ValueError(f"reason must be one of {REPORT_REASONS}")

    report = UserReport(
        reporter_session_id=reporter_session_id,
        reported_session_id=reported_session_id,
        room_id=room_id,
        reason=reason,
        description=description[:DESCRIPTION_MAX_LENGTH] if description else None,
        status=REPORT_PENDING,
    )
    db.add(report)
    db.flush()

    pending = (
        db.query(UserReport)
        .filter(
            UserReport.reported_session_id == reported_session_id,
            UserReport.status == REPORT_PENDING,
        )
        .count()
    )
    if pending >= AUTO_BAN_THRESHOLD:
        reported = (
            db.query(OnlineSession).filter(OnlineSession.session_id == reported_session_id).first()
        )
        if reported is not None:
            _ban(db, reported.ip_hash, pending)
            db.query(UserReport).filter(
                UserReport.reported_session_id == reported_session_id,
                UserReport.status == REPORT_PENDING,
            ).update({"status": REPORT_ACTIONED}, synchronize_session=False)
            logger.warning(
                "AUTO_BAN | session=%s reports=%d until=%s",
                reported_session_id,
                pending,
                AUTO_BAN_DURATION,
            )

    db.commit()
    db.refresh(report)
    return report
