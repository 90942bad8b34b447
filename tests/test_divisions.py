"""
בדיקות למחלקות וקצינים - OfficerService וה-API של האדמין.
"""
import pytest

from app.core.exceptions import ErrorCode, NotFoundException, ValidationException
from app.db.models.division import OfficerStatus
from app.domain.services.division_registry import DivisionRegistry
from app.domain.services.officer_service import OfficerService
from tests.conftest import ADMIN_HEADERS, TEST_WEST


class TestOfficerService:
    @pytest.mark.asyncio
    async def test_assign_relieves_previous_officer(self, db_session, dighi_division):
        service = OfficerService(db_session)
        previous_id = dighi_division.active_officer_id

        officer = await service.assign_officer(dighi_division.id, name="PSI PAWAR", phone="9822000000")

        assert officer.phone == "+919822000000"
        assert officer.is_active
        division = await DivisionRegistry(db_session).find_by_id(dighi_division.id)
        assert division.active_officer_id == officer.id
        active = DivisionRegistry.active_officers(division)
        assert [o.id for o in active] == [officer.id]

        old = next(o for o in division.officers if o.id == previous_id)
        assert old.is_active is False
        assert old.status == OfficerStatus.RELIEVED.value
        assert old.relieved_at is not None

    @pytest.mark.asyncio
    async def test_roster_keeps_history_in_order(self, db_session, dighi_division):
        service = OfficerService(db_session)
        await service.assign_officer(dighi_division.id, name="PSI PAWAR", phone="+919822000000")
        await service.assign_officer(dighi_division.id, name="PSI JADHAV", phone="+919822000001")

        roster = await service.roster(dighi_division.id)

        assert [o.name for o in roster] == ["PI NANDURKAR", "PSI PAWAR", "PSI JADHAV"]
        assert [o.is_active for o in roster] == [False, False, True]

    @pytest.mark.asyncio
    async def test_relieve_current_officer(self, db_session, dighi_division):
        service = OfficerService(db_session)

        relieved = await service.relieve_current_officer(dighi_division.id)

        assert relieved.name == "PI NANDURKAR"
        assert relieved.is_active is False
        division = await DivisionRegistry(db_session).find_by_id(dighi_division.id)
        assert division.active_officer_id is None
        assert DivisionRegistry.active_officers(division) == []

    @pytest.mark.asyncio
    async def test_relieve_without_active_officer(self, db_session, division_factory):
        division = await division_factory(TEST_WEST)
        with pytest.raises(NotFoundException) as exc_info:
            await OfficerService(db_session).relieve_current_officer(division.id)
        assert exc_info.value.error_code == ErrorCode.NO_ACTIVE_OFFICER

    @pytest.mark.asyncio
    async def test_unknown_division(self, db_session):
        with pytest.raises(NotFoundException) as exc_info:
            await OfficerService(db_session).assign_officer(999, name="PSI PAWAR", phone="+919822000000")
        assert exc_info.value.error_code == ErrorCode.DIVISION_NOT_FOUND

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,phone", [("", "+919822000000"), ("PSI PAWAR", "12")])
    async def test_invalid_officer_data(self, db_session, dighi_division, name, phone):
        with pytest.raises(ValidationException):
            await OfficerService(db_session).assign_officer(dighi_division.id, name=name, phone=phone)

    @pytest.mark.asyncio
    async def test_new_officer_receives_next_report(self, db_session, dighi_division, mock_provider):
        from app.domain.services.submission_pipeline import ReportDraft, SubmissionPipeline
        from app.db.models.report import ReportType

        await OfficerService(db_session).assign_officer(dighi_division.id, name="PSI PAWAR", phone="+919822000000")
        division = await DivisionRegistry(db_session).find_by_id(dighi_division.id)

        draft = ReportDraft(
            reporter_handle="whatsapp:+919876543210",
            report_type=ReportType.ROAD_DAMAGE,
            latitude=18.65,
            longitude=73.9,
        )
        result = await SubmissionPipeline(db_session, provider=mock_provider).submit(draft, division)

        assert result.notified_officers == ["+919822000000"]
        assert mock_provider.texts_to("+918180094312") == []


class TestDivisionRoutes:
    @pytest.mark.integration
    async def test_list_divisions(self, test_client, dighi_division, test_west_division):
        response = await test_client.get("/api/divisions/", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert [d["code"] for d in data] == ["DIGA", "TWST"]
        assert data[0]["active_officers"][0]["name"] == "PI NANDURKAR"
        assert data[0]["active_officer_id"] == data[0]["active_officers"][0]["id"]

    @pytest.mark.integration
    async def test_requires_admin_key(self, test_client, dighi_division):
        response = await test_client.get("/api/divisions/")
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_assign_officer(self, test_client, dighi_division):
        response = await test_client.post(
            f"/api/divisions/{dighi_division.id}/officers",
            json={"name": "PSI PAWAR", "phone": "9822000000", "post": "Sub Inspector"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["phone"] == "+919822000000"
        assert data["status"] == "active"

        roster = await test_client.get(f"/api/divisions/{dighi_division.id}/officers", headers=ADMIN_HEADERS)
        statuses = {o["name"]: o["status"] for o in roster.json()}
        assert statuses == {"PI NANDURKAR": "relieved", "PSI PAWAR": "active"}

    @pytest.mark.integration
    async def test_assign_with_bad_phone(self, test_client, dighi_division):
        response = await test_client.post(
            f"/api/divisions/{dighi_division.id}/officers",
            json={"name": "PSI PAWAR", "phone": "abc"},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_relieve_twice(self, test_client, dighi_division):
        url = f"/api/divisions/{dighi_division.id}/officers/relieve"

        first = await test_client.post(url, headers=ADMIN_HEADERS)
        second = await test_client.post(url, headers=ADMIN_HEADERS)

        assert first.status_code == 200
        assert first.json()["status"] == "relieved"
        assert second.status_code == 404
        assert second.json()["error"]["code"] == "ERR_3003"

    @pytest.mark.integration
    async def test_unknown_division(self, test_client):
        response = await test_client.get("/api/divisions/999/officers", headers=ADMIN_HEADERS)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_3001"
