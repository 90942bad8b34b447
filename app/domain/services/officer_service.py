"""
Officer Service - שיבוץ ושחרור קצינים במחלקה.

הרשימה רק מתווספת: קצין ששוחרר נשאר עם status=relieved ו-relieved_at.
שיבוץ קצין חדש משחרר באותה טרנזקציה כל קצין פעיל אחר במחלקה, כך
שלכל היותר קצין פעיל אחד קיים בכל רגע.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ErrorCode, NotFoundException, ValidationException
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.database import utcnow
from app.db.models.division import Division, Officer, OfficerStatus
from app.domain.services.division_registry import DivisionRegistry

logger = get_logger(__name__)


class OfficerService:
    """ניהול רשימת הקצינים של מחלקה"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.registry = DivisionRegistry(db)

    async def _get_division(self, division_id: int) -> Division:
        division = await self.registry.find_by_id(division_id)
        if division is None:
            raise NotFoundException("Division", division_id, ErrorCode.DIVISION_NOT_FOUND)
        return division

    @staticmethod
    def _relieve(officer: Officer) -> None:
        officer.is_active = False
        officer.status = OfficerStatus.RELIEVED.value
        officer.relieved_at = utcnow()

    async def assign_officer(
        self,
        division_id: int,
        name: str,
        phone: str,
        alternate_phone: Optional[str] = None,
        email: Optional[str] = None,
        post: Optional[str] = None,
    ) -> Officer:
        """מוסיף קצין פעיל חדש ומשחרר את הקודמים"""
        if not name or not name.strip():
            raise ValidationException("Officer name is required", field="name")
        if not PhoneNumberValidator.validate(phone):
            raise ValidationException("Invalid officer phone number", field="phone")
        if alternate_phone and not PhoneNumberValidator.validate(alternate_phone):
            raise ValidationException("Invalid alternate phone number", field="alternate_phone")

        division = await self._get_division(division_id)

        relieved_ids = []
        for current in division.officers:
            if current.is_active:
                self._relieve(current)
                relieved_ids.append(current.id)

        officer = Officer(
            division_id=division.id,
            name=name.strip(),
            phone=PhoneNumberValidator.normalize(phone),
            alternate_phone=PhoneNumberValidator.normalize(alternate_phone) if alternate_phone else None,
            email=email,
            post=post,
            is_active=True,
            status=OfficerStatus.ACTIVE.value,
        )
        # flush של השחרורים לפני ההוספה - ה-partial unique index ב-PostgreSQL
        await self.db.flush()
        division.officers.append(officer)
        await self.db.flush()
        division.active_officer_id = officer.id
        await self.db.commit()

        logger.info(
            "Officer assigned",
            extra_data={
                "division_id": division.id,
                "officer_id": officer.id,
                "phone": PhoneNumberValidator.mask(officer.phone),
                "relieved_officer_ids": relieved_ids,
            },
        )
        return officer

    async def relieve_current_officer(self, division_id: int) -> Officer:
        """משחרר את הקצין הפעיל בלי להחליף אותו"""
        division = await self._get_division(division_id)
        active = [officer for officer in division.officers if officer.is_active]
        if not active:
            raise NotFoundException("Active officer for division", division_id, ErrorCode.NO_ACTIVE_OFFICER)

        for officer in active:
            self._relieve(officer)
        division.active_officer_id = None
        await self.db.commit()

        logger.info(
            "Officer relieved",
            extra_data={"division_id": division.id, "officer_ids": [o.id for o in active]},
        )
        return active[-1]

    async def roster(self, division_id: int) -> list[Officer]:
        """כל הקצינים, כולל משוחררים, לפי סדר השיבוץ"""
        division = await self._get_division(division_id)
        return list(division.officers)
