"""
Report Service - שליפה ועדכון סטטוס של דיווחים קיימים.

מעבר סטטוס:
- Pending -> In Progress / Resolved / Rejected
- In Progress -> Resolved / Rejected
- Resolved / Rejected הם סופיים: ניסיון עדכון מחזיר 409

עדכון סטטוס שולח למדווח הודעה מתורגמת דרך ה-outbox באותה טרנזקציה.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ReportClosedError, ReportNotFoundError, ValidationException
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator, TextLimits, TextSanitizer
from app.db.database import utcnow
from app.db.models.conversation_session import ConversationSession
from app.db.models.outbox_message import OutboxMessageType
from app.db.models.report import Report, ReportStatus, ReportType
from app.domain.services.localization import get_text, normalize_language, report_type_label
from app.domain.services.media_store import MediaFolder, MediaStore, get_media_store
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)

STATUS_MESSAGE_KEYS = {
    ReportStatus.IN_PROGRESS: "STATUS_IN_PROGRESS",
    ReportStatus.RESOLVED: "STATUS_RESOLVED",
    ReportStatus.REJECTED: "STATUS_REJECTED",
}

DEFAULT_RESOLUTION_NOTE = "No details provided"


def parse_status(value: str | ReportStatus) -> ReportStatus:
    """מקבל "Resolved" / "resolved" / "in_progress" ומחזיר ReportStatus"""
    if isinstance(value, ReportStatus):
        return value
    normalized = (value or "").strip().replace("_", " ").lower()
    for status in ReportStatus:
        if status.value.lower() == normalized:
            return status
    raise ValidationException(
        f"Invalid status: {value}",
        field="status",
        details={"allowed": [s.value for s in ReportStatus]},
    )


class ReportService:
    def __init__(self, db: AsyncSession, media_store: MediaStore | None = None):
        self.db = db
        self._media_store = media_store
        self.outbox = OutboxService(db)

    @property
    def media_store(self) -> MediaStore:
        if self._media_store is None:
            self._media_store = get_media_store()
        return self._media_store

    async def reporter_language(self, reporter_handle: str) -> str:
        """שפת השיחה של המדווח, en כשאין סשן"""
        result = await self.db.execute(
            select(ConversationSession.language).where(ConversationSession.user_handle == reporter_handle)
        )
        return normalize_language(result.scalar_one_or_none())

    async def get_by_public_id(self, public_id: str) -> Report:
        result = await self.db.execute(select(Report).where(Report.public_id == public_id))
        report = result.scalar_one_or_none()
        if report is None:
            raise ReportNotFoundError(public_id)
        return report

    async def list_pending(self, division_id: Optional[int] = None, limit: int = 100) -> list[Report]:
        query = select(Report).where(
            Report.status.in_([ReportStatus.PENDING, ReportStatus.IN_PROGRESS])
        )
        if division_id is not None:
            query = query.where(Report.division_id == division_id)
        result = await self.db.execute(query.order_by(Report.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    async def update_status(
        self,
        public_id: str,
        status: str | ReportStatus,
        resolution_note: Optional[str] = None,
        resolution_media: Optional[bytes] = None,
        resolution_media_type: Optional[str] = None,
        language: Optional[str] = None,
    ) -> Report:
        """
        עדכון סטטוס דיווח.

        Raises:
            ValidationException: סטטוס לא חוקי או חזרה ל-Pending
            ReportNotFoundError: אין דיווח עם public_id
            ReportClosedError: הדיווח כבר בסטטוס סופי
        """
        new_status = parse_status(status)
        if new_status == ReportStatus.PENDING:
            raise ValidationException("Cannot move a report back to Pending", field="status")

        report = await self.get_by_public_id(public_id)
        current = ReportStatus(report.status)
        if current.is_terminal:
            raise ReportClosedError(public_id, current.value)

        language = language or await self.reporter_language(report.reporter_handle)
        note = TextSanitizer.sanitize(resolution_note, max_length=TextLimits.RESOLUTION_NOTE) if resolution_note else None

        if resolution_media:
            report.resolution_media_url = await self.media_store.upload(
                resolution_media, resolution_media_type or "image/jpeg", MediaFolder.RESOLUTIONS
            )

        report.status = new_status
        if note:
            report.resolution_note = note
        if new_status.is_terminal:
            report.resolved_at = utcnow()

        text = get_text(
            STATUS_MESSAGE_KEYS[new_status],
            language,
            report_type_label(report.report_type, language),
            note or DEFAULT_RESOLUTION_NOTE,
        )
        await self.outbox.queue_text(
            report.reporter_handle,
            OutboxMessageType.STATUS_UPDATE,
            text,
            report_public_id=report.public_id,
            status=new_status.value,
            media_url=report.resolution_media_url,
        )
        await self.db.commit()

        logger.info(
            "Report status updated",
            extra_data={
                "public_id": public_id,
                "from_status": current.value,
                "to_status": new_status.value,
                "has_resolution_media": report.resolution_media_url is not None,
            },
        )
        return report

    async def record_suggestion(
        self,
        reporter_handle: str,
        text: str,
        reporter_name: Optional[str] = None,
        media_url: Optional[str] = None,
    ) -> Report:
        """הצעה מדף ההצעות - נשמרת בלי שיוך למחלקה ובלי התראה לקצינים"""
        report = Report(
            reporter_handle=reporter_handle,
            reporter_name=reporter_name,
            report_type=ReportType.SUGGESTION,
            description=TextSanitizer.sanitize(text, max_length=TextLimits.DESCRIPTION),
            media_url=media_url,
        )
        self.db.add(report)
        await self.db.commit()
        logger.info(
            "Suggestion recorded",
            extra_data={"report_id": report.id, "user": PhoneNumberValidator.mask(reporter_handle)},
        )
        return report

    async def record_join_request(
        self,
        reporter_handle: str,
        fields: dict[str, str],
        raw_text: str,
        reporter_name: Optional[str] = None,
    ) -> Report:
        """בקשת הצטרפות שנשלחה כטקסט בצ'אט"""
        location = fields.get("location")
        report = Report(
            reporter_handle=reporter_handle,
            reporter_name=reporter_name,
            report_type=ReportType.JOIN_REQUEST,
            description=TextSanitizer.sanitize(raw_text, max_length=TextLimits.DESCRIPTION),
            address=location,
            contact_name=fields.get("name"),
            contact_email=fields.get("email"),
            contact_phone=fields.get("phone"),
        )
        self.db.add(report)
        await self.db.commit()
        logger.info(
            "Join request recorded",
            extra_data={
                "report_id": report.id,
                "user": PhoneNumberValidator.mask(reporter_handle),
                "fields": sorted(fields),
            },
        )
        return report
