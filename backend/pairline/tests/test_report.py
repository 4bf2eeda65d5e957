"""
Tests for reports and the automatic ban trigger.
"""

from pairline.core.security import hash_ip
from pairline.models.banned_ip import BannedIp
from pairline.models.report import UserReport
from pairline.tests.conftest import new_session


def _report(client, reporter, reported, reason="spam", **extra):
    return client.post(
        "/api/report",
        json={"sessionId": reporter, "reportedSessionId": reported, "reason": reason, **extra},
    )


class TestReports:
    def test_report_created(self, client, db):
        reporter = new_session(client)
        reported = new_session(client)
        resp = _report(client, reporter, reported, "harassment", description="rude")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True

        report = db.query(UserReport).filter(UserReport.id == body["reportId"]).first()
        assert report.reason == "harassment"
        assert report.status == "pending"

    def test_description_truncated(self, client, db):
        reporter = new_session(client)
        reported = new_session(client)
        body = _report(client, reporter, reported, description="y" * 1500).json()
        report = db.query(UserReport).filter(UserReport.id == body["reportId"]).first()
        assert len(report.description) == 1000

    def test_unknown_reason_rejected(self, client):
        reporter = new_session(client)
        reported = new_session(client)
        assert _report(client, reporter, reported, reason="boring").status_code == 422

    def test_unknown_reporter_rejected(self, client):
        reported = new_session(client)
        assert _report(client, "nobody", reported).status_code == 401

    def test_cannot_report_self(self, client):
        sid = new_session(client)
        assert _report(client, sid, sid).status_code == 400


class TestAutoBan:
    def test_third_report_bans_identity(self, client, db):
        reported = new_session(client, ip="203.0.113.50")
        for n in range(2):
            _report(client, new_session(client, ip=f"198.51.100.{n + 10}"), reported)
        assert db.query(BannedIp).count() == 0

        _report(client, new_session(client, ip="198.51.100.20"), reported)

        ban = db.query(BannedIp).filter(BannedIp.ip_hash == hash_ip("203.0.113.50")).first()
        assert ban is not None
        assert ban.banned_until is not None
        statuses = {r.status for r in db.query(UserReport).filter(UserReport.reported_session_id == reported)}
        assert statuses == {"actioned"}

        # the banned identity cannot get a new session
        resp = client.post("/api/session", headers={"x-forwarded-for": "203.0.113.50"})
        assert resp.status_code == 403

    def test_actioned_reports_do_not_count_again(self, client, db):
        reported = new_session(client, ip="203.0.113.51")
        for n in range(3):
            _report(client, new_session(client), reported)
        db.query(BannedIp).delete()
        db.commit()

        _report(client, new_session(client), reported)
        assert db.query(BannedIp).count() == 0
