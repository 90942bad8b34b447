"""
Division API Routes - מחלקות וקצינים (אדמין)
"""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.core.validation import email_validator, name_validator, phone_validator
from app.db.database import get_db
from app.domain.services.division_registry import DivisionRegistry
from app.domain.services.officer_service import OfficerService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class OfficerResponse(BaseModel):
    id: int
    name: str
    phone: str
    alternate_phone: str | None
    email: str | None
    post: str | None
    is_active: bool
    status: str
    joined_at: datetime | None
    relieved_at: datetime | None

    model_config = {"from_attributes": True}


class DivisionResponse(BaseModel):
    id: int
    name: str
    code: str
    active_officer_id: int | None
    active_officers: List[OfficerResponse]


class OfficerAssign(BaseModel):
    """Schema for assigning a new active officer"""
    name: str
    phone: str
    alternate_phone: str | None = None
    email: str | None = None
    post: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return name_validator(v)

    @field_validator("phone", "alternate_phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        return phone_validator(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        return email_validator(v)


def _division_response(division) -> DivisionResponse:
    return DivisionResponse(
        id=division.id,
        name=division.name,
        code=division.code,
        active_officer_id=division.active_officer_id,
        active_officers=[
            OfficerResponse.model_validate(o) for o in DivisionRegistry.active_officers(division)
        ],
    )


@router.get("/", response_model=List[DivisionResponse], summary="כל המחלקות")
async def list_divisions(db: AsyncSession = Depends(get_db)) -> List[DivisionResponse]:
    divisions = await DivisionRegistry(db).find_all()
    return [_division_response(d) for d in divisions]


@router.get(
    "/{division_id}/officers",
    response_model=List[OfficerResponse],
    summary="היסטוריית קצינים במחלקה",
)
async def officer_roster(division_id: int, db: AsyncSession = Depends(get_db)) -> List[OfficerResponse]:
    officers = await OfficerService(db).roster(division_id)
    return [OfficerResponse.model_validate(o) for o in officers]


@router.post(
    "/{division_id}/officers",
    response_model=OfficerResponse,
    status_code=201,
    summary="שיבוץ קצין פעיל (משחרר את הקודם)",
)
async def assign_officer(
    division_id: int,
    data: OfficerAssign,
    db: AsyncSession = Depends(get_db),
) -> OfficerResponse:
    officer = await OfficerService(db).assign_officer(
        division_id,
        name=data.name,
        phone=data.phone,
        alternate_phone=data.alternate_phone,
        email=data.email,
        post=data.post,
    )
    return OfficerResponse.model_validate(officer)


@router.post(
    "/{division_id}/officers/relieve",
    response_model=OfficerResponse,
    summary="שחרור הקצין הפעיל",
)
async def relieve_officer(division_id: int, db: AsyncSession = Depends(get_db)) -> OfficerResponse:
    officer = await OfficerService(db).relieve_current_officer(division_id)
    return OfficerResponse.model_validate(officer)
