"""
Submission Pipeline - מטיוטה מאושרת-מיקום לדיווח שמור + התראות לקצינים.

שלבים:
1. העלאת מדיה במקביל לשליפת הקצינים הפעילים (asyncio.gather)
2. עד MAX_OFFICERS_TO_NOTIFY קצינים לפי סדר הרשימה
3. התראות במקביל; כשל בקצין אחד לא מפיל את השאר; טלפון חלופי כגיבוי
4. שמירה רק אם לפחות התראה אחת הצליחה (או PERSIST_UNNOTIFIED_REPORTS)
5. תשובה מתורגמת למשתמש

כשל בהעלאה = אין התראות, אין שמירה, הודעת REPORT_ERROR.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import AppException, ResolutionUnavailable
from app.core.logging import get_logger, log_async_operation
from app.core.validation import PhoneNumberValidator
from app.db.models.division import Division, Officer
from app.db.models.report import Report, ReportType, generate_public_id
from app.domain.services.division_registry import DivisionRegistry
from app.domain.services.localization import build_officer_notification, get_text
from app.domain.services.media_store import MediaFolder, MediaStore, get_media_store
from app.domain.services.whatsapp import BaseWhatsAppProvider, get_whatsapp_provider

logger = get_logger(__name__)

NO_DESCRIPTION = "No description provided"


@dataclass
class ReportDraft:
    """דיווח שנאסף מהשיחה או מדף הצילום, לפני שיוך ושמירה"""

    reporter_handle: str
    report_type: ReportType
    reporter_name: Optional[str] = None
    description: Optional[str] = None
    # URL של ה-gateway (MediaUrl0) שעוד לא הועלה לאחסון
    media_url: Optional[str] = None
    # או בתים גולמיים מדף הצילום
    media_bytes: Optional[bytes] = None
    media_content_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    language: str = "en"
    submission_key: Optional[str] = None

    @property
    def has_media(self) -> bool:
        return bool(self.media_bytes or self.media_url)


class SubmissionOutcome(str, Enum):
    SUBMITTED = "submitted"
    PERSISTED_UNNOTIFIED = "persisted_unnotified"
    NOTIFICATION_FAILED = "notification_failed"
    UPLOAD_FAILED = "upload_failed"
    DUPLICATE = "duplicate"


@dataclass
class SubmissionResult:
    outcome: SubmissionOutcome
    reply_text: str
    report_id: Optional[int] = None
    public_id: Optional[str] = None
    notified_officers: list[str] = field(default_factory=list)

    @property
    def persisted(self) -> bool:
        return self.report_id is not None


class SubmissionPipeline:
    """צינור השליחה - שירות בלי state מעבר לתלויות"""

    def __init__(
        self,
        db: AsyncSession,
        provider: BaseWhatsAppProvider | None = None,
        media_store: MediaStore | None = None,
        registry: DivisionRegistry | None = None,
    ):
        self.db = db
        self.provider = provider or get_whatsapp_provider()
        self.media_store = media_store or get_media_store()
        self.registry = registry or DivisionRegistry(db)

    @log_async_operation("report submission")
    async def submit(self, draft: ReportDraft, division: Division) -> SubmissionResult:
        existing = await self._find_by_submission_key(draft.submission_key)
        if existing is not None:
            logger.info(
                "Duplicate submission ignored",
                extra_data={"submission_key": draft.submission_key, "report_id": existing.id},
            )
            return self._duplicate_result(existing, draft)

        upload_result, officers_result = await asyncio.gather(
            self._store_media(draft),
            self._load_officers(division),
            return_exceptions=True,
        )

        if isinstance(officers_result, BaseException):
            if isinstance(officers_result, SQLAlchemyError):
                raise ResolutionUnavailable(details={"error": str(officers_result)}) from officers_result
            raise officers_result

        if isinstance(upload_result, AppException):
            logger.error(
                "Media upload failed, report not submitted",
                extra_data={
                    "user": PhoneNumberValidator.mask(draft.reporter_handle),
                    "division_id": division.id,
                    "error": upload_result.message,
                },
            )
            return SubmissionResult(
                outcome=SubmissionOutcome.UPLOAD_FAILED,
                reply_text=get_text("REPORT_ERROR", draft.language),
            )
        if isinstance(upload_result, BaseException):
            raise upload_result

        media_url: Optional[str] = upload_result
        public_id = generate_public_id()
        description = draft.description or NO_DESCRIPTION
        message = build_officer_notification(
            division_name=division.name,
            report_type=draft.report_type.value,
            address=draft.address,
            description=description,
            public_id=public_id,
        )

        receipts = await self._notify_officers(officers_result, message)

        if not receipts and not settings.PERSIST_UNNOTIFIED_REPORTS:
            logger.warning(
                "No officer notified, report dropped",
                extra_data={
                    "division_id": division.id,
                    "officer_count": len(officers_result),
                    "user": PhoneNumberValidator.mask(draft.reporter_handle),
                },
            )
            return SubmissionResult(
                outcome=SubmissionOutcome.NOTIFICATION_FAILED,
                reply_text=get_text("NOTIFICATION_FAILED", draft.language, division.name),
            )

        report = Report(
            public_id=public_id,
            reporter_handle=draft.reporter_handle,
            reporter_name=draft.reporter_name,
            report_type=draft.report_type,
            description=description,
            media_url=media_url,
            latitude=draft.latitude,
            longitude=draft.longitude,
            address=draft.address or self._fallback_address(draft),
            division_id=division.id,
            division_name=division.name,
            division_notified=bool(receipts),
            notification_receipts=receipts,
            submission_key=draft.submission_key,
        )
        self.db.add(report)
        try:
            await self.db.commit()
        except IntegrityError:
            # אותו submission_key נשמר במקביל
            await self.db.rollback()
            existing = await self._find_by_submission_key(draft.submission_key)
            if existing is None:
                raise
            return self._duplicate_result(existing, draft)

        notified = [receipt["officer_phone"] for receipt in receipts]
        logger.info(
            "Report submitted",
            extra_data={
                "report_id": report.id,
                "public_id": public_id,
                "division_id": division.id,
                "report_type": draft.report_type.value,
                "notified_count": len(notified),
            },
        )
        return SubmissionResult(
            outcome=SubmissionOutcome.SUBMITTED if receipts else SubmissionOutcome.PERSISTED_UNNOTIFIED,
            reply_text=get_text(
                "REPORT_SUBMITTED", draft.language, draft.report_type, division.name, media_url is not None
            ),
            report_id=report.id,
            public_id=public_id,
            notified_officers=notified,
        )

    async def _find_by_submission_key(self, submission_key: Optional[str]) -> Report | None:
        if not submission_key:
            return None
        result = await self.db.execute(select(Report).where(Report.submission_key == submission_key))
        return result.scalar_one_or_none()

    def _duplicate_result(self, report: Report, draft: ReportDraft) -> SubmissionResult:
        return SubmissionResult(
            outcome=SubmissionOutcome.DUPLICATE,
            reply_text=get_text(
                "REPORT_SUBMITTED",
                draft.language,
                report.report_type,
                report.division_name,
                report.media_url is not None,
            ),
            report_id=report.id,
            public_id=report.public_id,
            notified_officers=[r["officer_phone"] for r in (report.notification_receipts or [])],
        )

    @staticmethod
    def _fallback_address(draft: ReportDraft) -> Optional[str]:
        if draft.latitude is None or draft.longitude is None:
            return None
        return f"{draft.latitude}, {draft.longitude}"

    async def _store_media(self, draft: ReportDraft) -> Optional[str]:
        if draft.media_bytes:
            return await self.media_store.upload(
                draft.media_bytes, draft.media_content_type or "image/jpeg", MediaFolder.REPORTS
            )
        if draft.media_url:
            fetched = await self.provider.fetch_media(draft.media_url)
            return await self.media_store.upload(
                fetched.content,
                draft.media_content_type or fetched.content_type,
                MediaFolder.REPORTS,
            )
        return None

    async def _load_officers(self, division: Division) -> list[Officer]:
        fresh = await self.registry.find_by_id(division.id)
        source = fresh or division
        return self.registry.active_officers(source, limit=settings.MAX_OFFICERS_TO_NOTIFY)

    async def _notify_officers(self, officers: list[Officer], message: str) -> list[dict]:
        results = await asyncio.gather(*(self._notify_officer(officer, message) for officer in officers))
        return [receipt for receipt in results if receipt is not None]

    async def _notify_officer(self, officer: Officer, message: str) -> Optional[dict]:
        """מחזיר receipt בהצלחה, None בכשל (גם אחרי ניסיון בטלפון החלופי)"""
        phones = [officer.phone]
        if officer.alternate_phone and officer.alternate_phone != officer.phone:
            phones.append(officer.alternate_phone)

        for phone in phones:
            try:
                receipt = await self.provider.send_text(phone, message)
            except AppException as e:
                logger.warning(
                    "Officer notification failed",
                    extra_data={
                        "officer_id": officer.id,
                        "phone": PhoneNumberValidator.mask(phone),
                        "error": e.message,
                    },
                )
                continue
            return {
                "officer_phone": phone,
                "timestamp": receipt.sent_at.isoformat(),
                "message_id": receipt.message_id,
            }
        return None
