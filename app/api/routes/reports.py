"""
Report API Routes

דפי הצילום (capture.html / suggestion-capture.html / resolve.html)
מדברים עם ה-endpoints כאן:

- GET  /check-link-validity - לפני פתיחת המצלמה
- GET  /check-location - בדיקת תחום שיפוט לפני שליחה
- POST /report - multipart מדף הצילום; העיבוד ב-Celery
- POST /suggestion - הצעה מדף ההצעות
- GET  /reports/{public_id} - לדף הסגירה
- GET  /reports/status/pending, POST /reports/{public_id}/resolve - אדמין
"""
import base64
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_serializer
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.core.config import settings
from app.core.exceptions import InvalidCoordinatesError, ReportLinkError, ValidationException
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator, TextLimits, TextSanitizer
from app.db.database import get_db
from app.db.models.outbox_message import OutboxMessageType
from app.domain.services.geo_resolver import GeoResolver, ResolutionOutcome, parse_coordinate
from app.domain.services.localization import MENU_REPORT_TYPES, get_text
from app.domain.services.outbox_service import OutboxService
from app.domain.services.report_link_service import ReportLinkService
from app.domain.services.report_service import ReportService
from app.workers.tasks import process_report_submission

logger = get_logger(__name__)

router = APIRouter()


class ReportResponse(BaseModel):
    """Response schema for report data"""
    public_id: str
    report_type: str
    description: str | None
    media_url: str | None
    latitude: float | None
    longitude: float | None
    address: str | None
    status: str
    division_name: str | None
    division_notified: bool
    created_at: datetime | None
    resolution_note: str | None
    resolved_at: datetime | None
    resolution_media_url: str | None

    model_config = {"from_attributes": True}

    @field_serializer("report_type", "status")
    def serialize_enum(self, v) -> str:
        return str(getattr(v, "value", v))


class SubmitAcceptedResponse(BaseModel):
    success: bool = True
    message: str


class LocationCheckResponse(BaseModel):
    inside: bool
    division: str | None = None


class LinkValidityResponse(BaseModel):
    valid: bool
    reason: str | None = None
    report_type: str | None = None


async def _read_upload(upload: Optional[UploadFile]) -> tuple[Optional[bytes], Optional[str]]:
    if upload is None:
        return None, None
    data = await upload.read()
    if not data:
        return None, None
    if len(data) > settings.MAX_FILE_SIZE:
        raise ValidationException(
            "File too large",
            field="image",
            details={"limit": settings.MAX_FILE_SIZE},
        )
    return data, upload.content_type or "image/jpeg"


def _require_coordinates(latitude: Optional[str], longitude: Optional[str]) -> tuple[float, float]:
    lat = parse_coordinate(latitude)
    lng = parse_coordinate(longitude)
    if lat is None or lng is None:
        raise InvalidCoordinatesError(latitude, longitude)
    return lat, lng


@router.get(
    "/check-link-validity",
    response_model=LinkValidityResponse,
    summary="בדיקת קישור צילום חד-פעמי",
)
async def check_link_validity(
    link_id: Optional[str] = Query(None, alias="linkId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: AsyncSession = Depends(get_db),
):
    try:
        link = await ReportLinkService(db).validate_link(link_id, user_id)
    except ReportLinkError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"valid": False, "reason": e.reason, "report_type": None},
        )
    return LinkValidityResponse(valid=True, report_type=link.report_type)


@router.get(
    "/check-location",
    response_model=LocationCheckResponse,
    summary="בדיקה אם נקודה בתוך תחום השיפוט",
)
async def check_location(
    lat: Optional[str] = Query(None),
    lng: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> LocationCheckResponse:
    latitude, longitude = _require_coordinates(lat, lng)
    resolution = await GeoResolver(db).resolve(latitude, longitude)
    if resolution.outcome != ResolutionOutcome.FOUND:
        return LocationCheckResponse(inside=False)
    return LocationCheckResponse(inside=True, division=resolution.division.name)


@router.post(
    "/report",
    response_model=SubmitAcceptedResponse,
    summary="הגשת דיווח מדף הצילום",
    description=(
        "מקבל multipart, מסמן את הקישור כמנוצל ומחזיר מיד. שיוך המחלקה, "
        "ההעלאה וההתראות רצים ב-Celery; המשתמש מקבל הודעת WhatsApp אחת עם התוצאה."
    ),
)
async def submit_report(
    user_id: str = Form(..., alias="userId"),
    report_type: str = Form(..., alias="reportType"),
    latitude: Optional[str] = Form(None),
    longitude: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    link_id: Optional[str] = Form(None, alias="linkId"),
    language: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
) -> SubmitAcceptedResponse:
    if report_type not in MENU_REPORT_TYPES:
        raise ValidationException("Unknown report type", field="reportType")
    lat, lng = _require_coordinates(latitude, longitude)
    image_bytes, image_type = await _read_upload(image)

    links = ReportLinkService(db)
    if link_id:
        await links.validate_link(link_id, user_id)

    is_safe, pattern = TextSanitizer.check_for_injection(description or "")
    if not is_safe:
        raise ValidationException(f"Invalid description: {pattern}", field="description")

    payload = {
        "user_handle": user_id,
        "option": report_type,
        "description": TextSanitizer.sanitize(description or "", max_length=TextLimits.DESCRIPTION) or None,
        "latitude": lat,
        "longitude": lng,
        "address": TextSanitizer.sanitize(address or "", max_length=TextLimits.ADDRESS) or None,
        "language": language,
        "image_b64": base64.b64encode(image_bytes).decode("ascii") if image_bytes else None,
        "image_content_type": image_type,
        "submission_key": f"link:{link_id}" if link_id else None,
    }
    await links.consume_link(link_id, user_id)
    process_report_submission.delay(payload)

    logger.info(
        "Capture report accepted",
        extra_data={
            "user": PhoneNumberValidator.mask(user_id),
            "report_type": report_type,
            "has_image": image_bytes is not None,
        },
    )
    return SubmitAcceptedResponse(message="Report received and is being processed")


@router.post(
    "/suggestion",
    response_model=SubmitAcceptedResponse,
    summary="הגשת הצעה מדף ההצעות",
)
async def submit_suggestion(
    user_id: str = Form(..., alias="userId"),
    suggestion: str = Form(...),
    link_id: Optional[str] = Form(None, alias="linkId"),
    language: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db),
) -> SubmitAcceptedResponse:
    if not suggestion.strip():
        raise ValidationException("Suggestion text is required", field="suggestion")
    is_safe, pattern = TextSanitizer.check_for_injection(suggestion)
    if not is_safe:
        raise ValidationException(f"Invalid suggestion: {pattern}", field="suggestion")

    links = ReportLinkService(db)
    if link_id:
        await links.validate_link(link_id, user_id)

    reports = ReportService(db)
    language = language or await reports.reporter_language(user_id)
    await OutboxService(db).queue_text(
        user_id, OutboxMessageType.SUGGESTION_RESPONSE, get_text("SUGGESTION_RESPONSE", language)
    )
    await reports.record_suggestion(user_id, suggestion)
    await links.consume_link(link_id, user_id)
    return SubmitAcceptedResponse(message="Suggestion received")


@router.get(
    "/reports/status/pending",
    response_model=List[ReportResponse],
    summary="דיווחים פתוחים (אדמין)",
)
async def list_pending_reports(
    division_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
) -> List[ReportResponse]:
    reports = await ReportService(db).list_pending(division_id=division_id, limit=limit)
    return [ReportResponse.model_validate(r) for r in reports]


@router.get(
    "/reports/{public_id}",
    response_model=ReportResponse,
    summary="פרטי דיווח לדף הסגירה",
)
async def get_report(public_id: str, db: AsyncSession = Depends(get_db)) -> ReportResponse:
    report = await ReportService(db).get_by_public_id(public_id)
    return ReportResponse.model_validate(report)


@router.post(
    "/reports/{public_id}/resolve",
    response_model=ReportResponse,
    summary="עדכון סטטוס דיווח (אדמין)",
    description="In Progress / Resolved / Rejected. סטטוס סופי לא ניתן לשינוי (409).",
)
async def resolve_report(
    public_id: str,
    status: str = Form(...),
    resolution_note: Optional[str] = Form(None, alias="resolutionNote"),
    language: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
) -> ReportResponse:
    media, media_type = await _read_upload(image)
    report = await ReportService(db).update_status(
        public_id,
        status,
        resolution_note=resolution_note,
        resolution_media=media,
        resolution_media_type=media_type,
        language=language,
    )
    return ReportResponse.model_validate(report)
