"""
Division Registry - גישה לקריאה למחלקות ולקציניהן.

סדר find_all (לפי id) קובע מי מנצח כשפוליגונים חופפים.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models.division import Division, Officer

logger = get_logger(__name__)


class DivisionRegistry:
    """מאגר מחלקות - קריאה בלבד"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_all(self) -> list[Division]:
        result = await self.db.execute(select(Division).order_by(Division.id))
        return list(result.scalars().all())

    async def find_by_id(self, division_id: int) -> Division | None:
        """
        שליפה לפי id עם נתוני קצינים עדכניים.

        populate_existing מרענן אובייקט שכבר נמצא ב-identity map, כך
        שפגיעה במטמון הגאוגרפי תמיד מחזירה את רשימת הקצינים הנוכחית.
        """
        result = await self.db.execute(
            select(Division)
            .where(Division.id == division_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_code(self, code: str) -> Division | None:
        result = await self.db.execute(select(Division).where(Division.code == code.upper()))
        return result.scalar_one_or_none()

    @staticmethod
    def active_officers(division: Division, limit: int | None = None) -> list[Officer]:
        """קצינים פעילים לפי סדר הרשימה, עד limit"""
        active = [officer for officer in division.officers if officer.is_active]
        if len(active) > 1:
            # מצב ישן שלא אמור לקרות אחרי OfficerService.assign
            logger.warning(
                "More than one active officer in division",
                extra_data={
                    "division_id": division.id,
                    "active_officer_ids": [o.id for o in active],
                    "active_officer_id": division.active_officer_id,
                },
            )
        if limit is not None:
            return active[:limit]
        return active
