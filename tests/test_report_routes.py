"""
Tests for the capture-page and resolve API (app/api/routes/reports.py)
"""
import base64
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import select

from app.core.config import settings
from app.db.database import utcnow
from app.db.models.conversation_session import ConversationSession
from app.db.models.outbox_message import MessageStatus, OutboxMessage
from app.db.models.report import Report, ReportStatus, ReportType
from app.db.models.report_link import ReportLink
from tests.conftest import ADMIN_HEADERS, DIGHI_POINT, MUMBAI_POINT, UNCOVERED_POINT

USER = "whatsapp:+919876543210"


@pytest.fixture
def report_link(db_session):
    async def _create(user_handle: str = USER, report_type: str = "Accident", **fields) -> ReportLink:
        link = ReportLink(user_handle=user_handle, report_type=report_type, **fields)
        db_session.add(link)
        await db_session.commit()
        return link

    return _create


@pytest.fixture
def stored_report(db_session):
    async def _create(**fields) -> Report:
        data = {
            "reporter_handle": USER,
            "reporter_name": "Ravi",
            "report_type": ReportType.ACCIDENT,
            "description": "Bus blocking the junction",
            "latitude": DIGHI_POINT[0],
            "longitude": DIGHI_POINT[1],
            "division_name": "DIGHI ALANDI",
            "division_notified": True,
        }
        data.update(fields)
        report = Report(**data)
        db_session.add(report)
        await db_session.commit()
        return report

    return _create


@pytest.fixture
def queued_submissions():
    task = MagicMock()
    with patch("app.api.routes.reports.process_report_submission", task):
        yield task.delay


async def outbox_rows(db_session) -> list[OutboxMessage]:
    result = await db_session.execute(select(OutboxMessage).order_by(OutboxMessage.id))
    return list(result.scalars().all())


class TestCheckLinkValidity:
    @pytest.mark.integration
    async def test_fresh_link_is_valid(self, test_client, report_link):
        link = await report_link()

        response = await test_client.get(
            "/api/check-link-validity", params={"linkId": link.link_id, "userId": USER}
        )

        assert response.status_code == 200
        assert response.json() == {"valid": True, "reason": None, "report_type": "Accident"}

    @pytest.mark.integration
    async def test_unknown_link(self, test_client):
        response = await test_client.get(
            "/api/check-link-validity", params={"linkId": "nope", "userId": USER}
        )
        assert response.status_code == 404
        assert response.json()["reason"] == "not_found"

    @pytest.mark.integration
    async def test_link_of_another_user(self, test_client, report_link):
        link = await report_link(user_handle="whatsapp:+919000000000")
        response = await test_client.get(
            "/api/check-link-validity", params={"linkId": link.link_id, "userId": USER}
        )
        assert response.status_code == 404

    @pytest.mark.integration
    async def test_used_link(self, test_client, report_link):
        link = await report_link(used=True, used_at=utcnow())
        response = await test_client.get(
            "/api/check-link-validity", params={"linkId": link.link_id, "userId": USER}
        )
        assert response.status_code == 403
        assert response.json() == {"valid": False, "reason": "used", "report_type": None}

    @pytest.mark.integration
    async def test_expired_link(self, test_client, report_link):
        created = utcnow() - timedelta(hours=settings.REPORT_LINK_TTL_HOURS + 1)
        link = await report_link(created_at=created)
        response = await test_client.get(
            "/api/check-link-validity", params={"linkId": link.link_id, "userId": USER}
        )
        assert response.status_code == 403
        assert response.json()["reason"] == "expired"

    @pytest.mark.integration
    async def test_missing_params(self, test_client):
        response = await test_client.get("/api/check-link-validity", params={"linkId": "abc"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_1001"


class TestCheckLocation:
    @pytest.mark.integration
    async def test_inside(self, test_client, dighi_division):
        response = await test_client.get(
            "/api/check-location", params={"lat": DIGHI_POINT[0], "lng": DIGHI_POINT[1]}
        )
        assert response.status_code == 200
        assert response.json() == {"inside": True, "division": "DIGHI ALANDI"}

    @pytest.mark.integration
    @pytest.mark.parametrize("point", [MUMBAI_POINT, UNCOVERED_POINT])
    async def test_outside(self, test_client, dighi_division, point):
        response = await test_client.get("/api/check-location", params={"lat": point[0], "lng": point[1]})
        assert response.json() == {"inside": False, "division": None}

    @pytest.mark.integration
    async def test_invalid_coordinates(self, test_client):
        response = await test_client.get("/api/check-location", params={"lat": "abc", "lng": "73.9"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_7001"


class TestSubmitReport:
    @pytest.mark.integration
    async def test_report_is_queued_and_link_consumed(
        self, test_client, db_session, report_link, queued_submissions
    ):
        link = await report_link()

        response = await test_client.post("/api/report", data={
            "userId": USER,
            "reportType": "3",
            "latitude": str(DIGHI_POINT[0]),
            "longitude": str(DIGHI_POINT[1]),
            "description": "Truck overturned",
            "address": "Alandi Road",
            "linkId": link.link_id,
            "language": "en",
        })

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Report received and is being processed"}

        queued_submissions.assert_called_once()
        payload = queued_submissions.call_args[0][0]
        assert payload["user_handle"] == USER
        assert payload["option"] == "3"
        assert payload["latitude"] == DIGHI_POINT[0]
        assert payload["description"] == "Truck overturned"
        assert payload["image_b64"] is None
        assert payload["submission_key"] == f"link:{link.link_id}"

        await db_session.refresh(link)
        assert link.used is True
        assert link.used_at is not None

    @pytest.mark.integration
    async def test_image_is_passed_as_base64(self, test_client, report_link, queued_submissions):
        link = await report_link()

        await test_client.post(
            "/api/report",
            data={
                "userId": USER,
                "reportType": "5",
                "latitude": str(DIGHI_POINT[0]),
                "longitude": str(DIGHI_POINT[1]),
                "linkId": link.link_id,
            },
            files={"image": ("photo.jpg", b"\xff\xd8photo", "image/jpeg")},
        )

        payload = queued_submissions.call_args[0][0]
        assert base64.b64decode(payload["image_b64"]) == b"\xff\xd8photo"
        assert payload["image_content_type"] == "image/jpeg"

    @pytest.mark.integration
    async def test_used_link_is_rejected(self, test_client, report_link, queued_submissions):
        link = await report_link(used=True, used_at=utcnow())

        response = await test_client.post("/api/report", data={
            "userId": USER,
            "reportType": "1",
            "latitude": str(DIGHI_POINT[0]),
            "longitude": str(DIGHI_POINT[1]),
            "linkId": link.link_id,
        })

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ERR_2004"
        queued_submissions.assert_not_called()

    @pytest.mark.integration
    @pytest.mark.parametrize("report_type", ["0", "8", "accident"])
    async def test_unknown_report_type(self, test_client, queued_submissions, report_type):
        response = await test_client.post("/api/report", data={
            "userId": USER,
            "reportType": report_type,
            "latitude": str(DIGHI_POINT[0]),
            "longitude": str(DIGHI_POINT[1]),
        })
        assert response.status_code == 400
        queued_submissions.assert_not_called()

    @pytest.mark.integration
    async def test_missing_coordinates(self, test_client, queued_submissions):
        response = await test_client.post("/api/report", data={"userId": USER, "reportType": "1"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_7001"

    @pytest.mark.integration
    async def test_script_in_description_is_rejected(self, test_client, queued_submissions):
        response = await test_client.post("/api/report", data={
            "userId": USER,
            "reportType": "1",
            "latitude": str(DIGHI_POINT[0]),
            "longitude": str(DIGHI_POINT[1]),
            "description": "<script>alert(1)</script>",
        })
        assert response.status_code == 400
        queued_submissions.assert_not_called()


class TestSubmitSuggestion:
    @pytest.mark.integration
    async def test_suggestion_recorded_and_acknowledged(self, test_client, db_session, report_link):
        link = await report_link(report_type="Suggestion")

        response = await test_client.post("/api/suggestion", data={
            "userId": USER,
            "suggestion": "Add a signal at the Moshi junction",
            "linkId": link.link_id,
        })

        assert response.status_code == 200
        report = (await db_session.execute(select(Report))).scalar_one()
        assert report.report_type == ReportType.SUGGESTION
        assert report.division_id is None
        assert report.description == "Add a signal at the Moshi junction"

        [message] = await outbox_rows(db_session)
        assert message.recipient_id == USER
        assert message.message_type == "suggestion_response"
        assert message.message_content["message_text"].startswith("Thank you for your suggestion!")

    @pytest.mark.integration
    async def test_reply_uses_session_language(self, test_client, db_session):
        db_session.add(ConversationSession(
            user_handle=USER, current_state="MENU", language="mr", context_data={}
        ))
        await db_session.commit()

        await test_client.post("/api/suggestion", data={"userId": USER, "suggestion": "More buses"})

        [message] = await outbox_rows(db_session)
        assert "तुमच्या सूचनेबद्दल धन्यवाद" in message.message_content["message_text"]

    @pytest.mark.integration
    async def test_empty_suggestion(self, test_client, db_session):
        response = await test_client.post("/api/suggestion", data={"userId": USER, "suggestion": "   "})
        assert response.status_code == 400
        assert await outbox_rows(db_session) == []


class TestReportDetails:
    @pytest.mark.integration
    async def test_get_report(self, test_client, stored_report):
        report = await stored_report()

        response = await test_client.get(f"/api/reports/{report.public_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["public_id"] == report.public_id
        assert data["report_type"] == "Accident"
        assert data["status"] == "Pending"
        assert data["division_name"] == "DIGHI ALANDI"
        assert "reporter_handle" not in data

    @pytest.mark.integration
    async def test_unknown_report(self, test_client):
        response = await test_client.get("/api/reports/doesnotexist")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_2001"

    @pytest.mark.integration
    async def test_pending_list_requires_admin_key(self, test_client):
        response = await test_client.get("/api/reports/status/pending")
        assert response.status_code == 401

        response = await test_client.get(
            "/api/reports/status/pending", headers={"X-Admin-API-Key": "wrong"}
        )
        assert response.status_code == 403

    @pytest.mark.integration
    async def test_pending_list_excludes_closed(self, test_client, stored_report):
        open_report = await stored_report()
        in_progress = await stored_report(status=ReportStatus.IN_PROGRESS)
        await stored_report(status=ReportStatus.RESOLVED)

        response = await test_client.get("/api/reports/status/pending", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        ids = {item["public_id"] for item in response.json()}
        assert ids == {open_report.public_id, in_progress.public_id}

    @pytest.mark.integration
    async def test_admin_disabled_without_configured_key(self, test_client):
        with patch.object(settings, "ADMIN_API_KEY", ""):
            response = await test_client.get("/api/reports/status/pending", headers=ADMIN_HEADERS)
        assert response.status_code == 403


class TestResolveReport:
    @pytest.mark.integration
    async def test_resolve_notifies_reporter(self, test_client, db_session, stored_report):
        report = await stored_report()

        response = await test_client.post(
            f"/api/reports/{report.public_id}/resolve",
            data={"status": "Resolved", "resolutionNote": "Bus towed away"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "Resolved"
        assert data["resolution_note"] == "Bus towed away"
        assert data["resolved_at"] is not None

        [message] = await outbox_rows(db_session)
        assert message.recipient_id == USER
        assert message.message_type == "status_update"
        assert message.status == MessageStatus.PENDING
        text = message.message_content["message_text"]
        assert "Your Accident report has been resolved" in text
        assert "Resolution details: Bus towed away" in text
        assert message.message_content["report_public_id"] == report.public_id

    @pytest.mark.integration
    async def test_in_progress_then_rejected(self, test_client, db_session, stored_report):
        report = await stored_report()

        first = await test_client.post(
            f"/api/reports/{report.public_id}/resolve", data={"status": "In Progress"}, headers=ADMIN_HEADERS
        )
        second = await test_client.post(
            f"/api/reports/{report.public_id}/resolve", data={"status": "rejected"}, headers=ADMIN_HEADERS
        )

        assert first.json()["status"] == "In Progress"
        assert first.json()["resolved_at"] is None
        assert second.json()["status"] == "Rejected"
        texts = [m.message_content["message_text"] for m in await outbox_rows(db_session)]
        assert "being reviewed" in texts[0]
        assert "Reason: No details provided" in texts[1]

    @pytest.mark.integration
    async def test_closed_report_returns_409(self, test_client, db_session, stored_report):
        report = await stored_report(status=ReportStatus.RESOLVED, resolved_at=utcnow())

        response = await test_client.post(
            f"/api/reports/{report.public_id}/resolve", data={"status": "Rejected"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_2003"
        assert await outbox_rows(db_session) == []

    @pytest.mark.integration
    @pytest.mark.parametrize("status", ["Pending", "Done"])
    async def test_invalid_target_status(self, test_client, stored_report, status):
        report = await stored_report()
        response = await test_client.post(
            f"/api/reports/{report.public_id}/resolve", data={"status": status}, headers=ADMIN_HEADERS
        )
        assert response.status_code == 400

    @pytest.mark.integration
    async def test_resolution_photo_uploaded_and_forwarded(
        self, test_client, db_session, stored_report, media_store
    ):
        report = await stored_report()

        response = await test_client.post(
            f"/api/reports/{report.public_id}/resolve",
            data={"status": "Resolved"},
            files={"image": ("after.jpg", b"\xff\xd8after", "image/jpeg")},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert media_store.uploads == [(len(b"\xff\xd8after"), "image/jpeg", "traffic_buddy_resolutions")]
        media_url = "https://media.test/traffic_buddy_resolutions/1.jpg"
        assert response.json()["resolution_media_url"] == media_url
        [message] = await outbox_rows(db_session)
        assert message.message_content["media_url"] == media_url

    @pytest.mark.integration
    async def test_resolve_requires_admin(self, test_client, stored_report):
        report = await stored_report()
        response = await test_client.post(
            f"/api/reports/{report.public_id}/resolve", data={"status": "Resolved"}
        )
        assert response.status_code == 401
