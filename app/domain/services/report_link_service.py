"""
Report Link Service - קישורי צילום חד-פעמיים.
"""
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ReportLinkError, ValidationException
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.database import utcnow
from app.db.models.report_link import ReportLink

logger = get_logger(__name__)


class ReportLinkService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_link(self, user_handle: str, report_type: str) -> ReportLink:
        link = ReportLink(user_handle=user_handle, report_type=report_type)
        self.db.add(link)
        await self.db.flush()
        logger.debug(
            "Report link created",
            extra_data={"link_id": link.link_id, "user": PhoneNumberValidator.mask(user_handle)},
        )
        return link

    async def validate_link(self, link_id: str | None, user_handle: str | None) -> ReportLink:
        """
        בדיקת קישור לפני פתיחת דף הצילום.

        Raises:
            ValidationException: פרמטרים חסרים (400)
            ReportLinkError: not_found (404), used (403), expired (403)
        """
        if not link_id or not user_handle:
            raise ValidationException("linkId and userId are required")

        result = await self.db.execute(
            select(ReportLink).where(
                ReportLink.link_id == link_id,
                ReportLink.user_handle == user_handle,
            )
        )
        link = result.scalar_one_or_none()
        if link is None:
            raise ReportLinkError("not_found", link_id, status_code=404)
        if link.used:
            raise ReportLinkError("used", link_id, status_code=403)
        if utcnow() - link.created_at > timedelta(hours=settings.REPORT_LINK_TTL_HOURS):
            raise ReportLinkError("expired", link_id, status_code=403)
        return link

    async def consume_link(self, link_id: str | None, user_handle: str) -> bool:
        """מסמן קישור כמנוצל. קישור שלא נמצא לא חוסם את הדיווח"""
        if not link_id:
            return False
        result = await self.db.execute(
            select(ReportLink).where(
                ReportLink.link_id == link_id,
                ReportLink.user_handle == user_handle,
            )
        )
        link = result.scalar_one_or_none()
        if link is None:
            logger.warning("Report link not found on submit", extra_data={"link_id": link_id})
            return False
        link.used = True
        link.used_at = utcnow()
        await self.db.commit()
        return True

    async def purge_expired(self) -> int:
        """מחיקת קישורים שפג תוקפם (פי 7 מ-TTL - שומר היסטוריה קצרה)"""
        cutoff = utcnow() - timedelta(hours=settings.REPORT_LINK_TTL_HOURS * 7)
        result = await self.db.execute(delete(ReportLink).where(ReportLink.created_at < cutoff))
        await self.db.commit()
        return result.rowcount or 0
