"""
Team API Routes - טופס ההצטרפות (join-team.html)
"""
from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ValidationException
from app.core.logging import get_logger
from app.core.validation import (
    TextLimits,
    TextSanitizer,
    aadhaar_validator,
    email_validator,
    name_validator,
    phone_validator,
    sanitized_text_validator,
)
from app.db.database import get_db
from app.domain.services.team_application_service import TeamApplicationService

logger = get_logger(__name__)

router = APIRouter()


class JoinTeamForm(BaseModel):
    """Schema for the join-team form with validation"""
    full_name: str
    division: str
    motivation: str
    address: str
    phone: str
    email: str
    aadhaar_number: str

    @field_validator("full_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return name_validator(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        return phone_validator(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return email_validator(v)

    @field_validator("aadhaar_number")
    @classmethod
    def validate_aadhaar(cls, v: str) -> str:
        return aadhaar_validator(v)

    @field_validator("division", "address")
    @classmethod
    def validate_short_text(cls, v: str) -> str:
        v = sanitized_text_validator(v, max_length=TextLimits.JOIN_FIELD)
        if not v:
            raise ValueError("Field is required")
        return v

    @field_validator("motivation")
    @classmethod
    def validate_motivation(cls, v: str) -> str:
        v = sanitized_text_validator(v, max_length=TextLimits.JOIN_MOTIVATION)
        if not v:
            raise ValueError("Field is required")
        return v


class JoinTeamResponse(BaseModel):
    success: bool = True
    application_id: int


@router.post(
    "/join-team",
    response_model=JoinTeamResponse,
    status_code=201,
    summary="הגשת טופס הצטרפות ל-Traffic Buddy",
)
async def join_team(
    user_id: str = Form(..., alias="userId"),
    session_id: str = Form(..., alias="sessionId"),
    full_name: str = Form(..., alias="fullName"),
    division: str = Form(...),
    motivation: str = Form(...),
    address: str = Form(...),
    phone: str = Form(...),
    email: str = Form(...),
    aadhaar_number: str = Form(..., alias="aadhaarNumber"),
    aadhaar_document: UploadFile = File(..., alias="aadhaarDocument"),
    db: AsyncSession = Depends(get_db),
) -> JoinTeamResponse:
    try:
        form = JoinTeamForm(
            full_name=full_name,
            division=division,
            motivation=motivation,
            address=address,
            phone=phone,
            email=email,
            aadhaar_number=aadhaar_number,
        )
    except ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else None
        raise ValidationException(first["msg"], field=field) from e

    document = await aadhaar_document.read()
    if not document:
        raise ValidationException("Aadhaar document is required", field="aadhaarDocument")
    if len(document) > settings.MAX_FILE_SIZE:
        raise ValidationException(
            "File too large", field="aadhaarDocument", details={"limit": settings.MAX_FILE_SIZE}
        )

    application = await TeamApplicationService(db).submit_application(
        user_handle=TextSanitizer.sanitize(user_id, max_length=TextLimits.USER_HANDLE),
        session_id=session_id,
        full_name=form.full_name,
        division=form.division,
        motivation=form.motivation,
        address=form.address,
        phone=form.phone,
        email=form.email,
        aadhaar_number=form.aadhaar_number,
        document=document,
        document_content_type=aadhaar_document.content_type or "application/octet-stream",
    )
    return JoinTeamResponse(application_id=application.id)
