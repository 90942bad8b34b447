"""
Admin Debug Endpoints - ניטור ותחזוקה בלי גישה ישירה ל-DB.

1. סטטוס circuit breakers (Twilio / אחסון מדיה) וסגירה ידנית
2. הודעות outbox כושלות + retry ידני
3. מצב שיחה של משתמש ואיפוס כפוי (משתמשים תקועים)
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.core.circuit_breaker import (
    CircuitBreaker,
    get_media_storage_circuit_breaker,
    get_whatsapp_circuit_breaker,
)
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.database import get_db
from app.db.models.conversation_session import ConversationSession
from app.db.models.outbox_message import MessageStatus, OutboxMessage
from app.state_machine.manager import SessionManager
from app.state_machine.states import ConversationState

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])

_ADMIN_RESPONSES = {
    401: {"description": "חסר מפתח API"},
    403: {"description": "מפתח API שגוי"},
}


class CircuitBreakerStatusResponse(BaseModel):
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    failure_threshold: int
    retry_after_seconds: float = Field(description="שניות עד ניסיון חוזר (0 אם לא פתוח)")


class OutboxMessageResponse(BaseModel):
    id: int
    recipient_id: str
    message_type: str
    report_public_id: str | None = None
    status: str
    retry_count: int
    max_retries: int
    last_error: str | None
    next_retry_at: datetime | None
    created_at: datetime | None
    processed_at: datetime | None

    model_config = {"from_attributes": True}

    @field_validator("status", mode="before")
    @classmethod
    def enum_value(cls, v) -> str:
        return str(getattr(v, "value", v))


class OutboxRetryResponse(BaseModel):
    message_id: int
    previous_status: str
    new_status: str
    retry_count: int


class OutboxSummaryResponse(BaseModel):
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0
    total: int = 0


class SessionStateResponse(BaseModel):
    """מצב השיחה של משתמש"""
    user_handle: str
    user_name: str | None
    language: str
    current_state: str
    last_option: str | None
    has_draft: bool
    context_data: dict
    last_interaction: datetime | None
    updated_at: datetime | None


class ForceStateRequest(BaseModel):
    new_state: str
    clear_draft: bool = True

    @field_validator("new_state")
    @classmethod
    def validate_state(cls, v: str) -> str:
        try:
            return ConversationState(v.strip().upper()).value
        except ValueError:
            allowed = ", ".join(s.value for s in ConversationState)
            raise ValueError(f"Unknown state. Allowed: {allowed}")


def _session_response(session: ConversationSession) -> SessionStateResponse:
    return SessionStateResponse(
        user_handle=session.user_handle,
        user_name=session.user_name,
        language=session.language,
        current_state=session.current_state,
        last_option=session.last_option,
        has_draft=session.has_draft,
        context_data=session.context_data or {},
        last_interaction=session.last_interaction,
        updated_at=session.updated_at,
    )


async def _find_session(db: AsyncSession, user_handle: str) -> ConversationSession:
    result = await db.execute(
        select(ConversationSession).where(ConversationSession.user_handle == user_handle)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No conversation for {PhoneNumberValidator.mask(user_handle)}",
        )
    return session


# ─── 1. Circuit Breakers ────────────────────────────────────────────────────

@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="סטטוס circuit breakers",
    responses=_ADMIN_RESPONSES,
)
async def get_circuit_breaker_status() -> list[CircuitBreakerStatusResponse]:
    # רישום ה-breakers הידועים גם אם עוד לא נקראו בתהליך הזה
    get_whatsapp_circuit_breaker()
    get_media_storage_circuit_breaker()
    return [
        CircuitBreakerStatusResponse(service=name, **snapshot)
        for name, snapshot in sorted(CircuitBreaker.snapshot_all().items())
    ]


@router.post(
    "/circuit-breakers/{service}/reset",
    response_model=CircuitBreakerStatusResponse,
    summary="סגירה ידנית של circuit breaker",
    responses={**_ADMIN_RESPONSES, 404: {"description": "שירות לא מוכר"}},
)
async def reset_circuit_breaker(service: str) -> CircuitBreakerStatusResponse:
    breaker = CircuitBreaker.lookup(service)
    if breaker is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown service: {service}")
    breaker.reset()
    logger.warning("Circuit breaker reset by admin", extra_data={"service": service})
    return CircuitBreakerStatusResponse(service=service, **breaker.snapshot())


# ─── 2. Outbox ──────────────────────────────────────────────────────────────

@router.get(
    "/outbox/summary",
    response_model=OutboxSummaryResponse,
    summary="ספירת הודעות outbox לפי סטטוס",
    responses=_ADMIN_RESPONSES,
)
async def get_outbox_summary(db: AsyncSession = Depends(get_db)) -> OutboxSummaryResponse:
    result = await db.execute(
        select(OutboxMessage.status, func.count(OutboxMessage.id)).group_by(OutboxMessage.status)
    )
    counts = {str(getattr(row_status, "value", row_status)): count for row_status, count in result.all()}
    return OutboxSummaryResponse(**counts, total=sum(counts.values()))


@router.get(
    "/outbox/messages",
    response_model=list[OutboxMessageResponse],
    summary="הודעות outbox (ברירת מחדל: failed)",
    responses=_ADMIN_RESPONSES,
)
async def get_outbox_messages(
    db: AsyncSession = Depends(get_db),
    message_status: Optional[str] = Query(
        default="failed",
        description="pending, processing, sent, failed",
    ),
    report_id: Optional[str] = Query(default=None, description="public id של דיווח"),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[OutboxMessageResponse]:
    query = select(OutboxMessage).order_by(OutboxMessage.created_at.desc()).limit(limit)
    if report_id:
        query = query.where(OutboxMessage.report_public_id == report_id)

    if message_status:
        valid_statuses = {s.value for s in MessageStatus}
        if message_status not in valid_statuses:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid status. Allowed: {', '.join(sorted(valid_statuses))}",
            )
        query = query.where(OutboxMessage.status == MessageStatus(message_status))

    result = await db.execute(query)
    return [OutboxMessageResponse.model_validate(m) for m in result.scalars().all()]


@router.post(
    "/outbox/messages/{message_id}/retry",
    response_model=OutboxRetryResponse,
    summary="retry ידני להודעה כושלת",
    responses={
        **_ADMIN_RESPONSES,
        400: {"description": "ההודעה לא בסטטוס failed"},
        404: {"description": "הודעה לא נמצאה"},
    },
)
async def retry_outbox_message(message_id: int, db: AsyncSession = Depends(get_db)) -> OutboxRetryResponse:
    """מחזיר הודעה failed ל-pending; ה-beat הבא ישלח אותה"""
    result = await db.execute(select(OutboxMessage).where(OutboxMessage.id == message_id))
    message = result.scalar_one_or_none()
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Message {message_id} not found")

    previous_status = str(getattr(message.status, "value", message.status))
    if message.status != MessageStatus.FAILED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only failed messages can be retried (current: {previous_status})",
        )

    message.status = MessageStatus.PENDING
    message.next_retry_at = None
    await db.commit()

    logger.info("Manual outbox retry", extra_data={"message_id": message_id})
    return OutboxRetryResponse(
        message_id=message.id,
        previous_status=previous_status,
        new_status=MessageStatus.PENDING.value,
        retry_count=message.retry_count,
    )


# ─── 3. Conversation sessions ───────────────────────────────────────────────

@router.get(
    "/sessions/{user_handle}",
    response_model=SessionStateResponse,
    summary="מצב השיחה של משתמש",
    responses={**_ADMIN_RESPONSES, 404: {"description": "אין שיחה למשתמש"}},
)
async def get_session_state(user_handle: str, db: AsyncSession = Depends(get_db)) -> SessionStateResponse:
    return _session_response(await _find_session(db, user_handle))


@router.post(
    "/sessions/{user_handle}/force-state",
    response_model=SessionStateResponse,
    summary="איפוס כפוי של מצב השיחה (עוקף ולידציית מעברים)",
    responses={**_ADMIN_RESPONSES, 404: {"description": "אין שיחה למשתמש"}},
)
async def force_session_state(
    user_handle: str,
    body: ForceStateRequest,
    db: AsyncSession = Depends(get_db),
) -> SessionStateResponse:
    session = await _find_session(db, user_handle)
    old_state = session.current_state

    await SessionManager(db).force_state(
        user_handle, ConversationState(body.new_state), clear_draft=body.clear_draft
    )
    session = await _find_session(db, user_handle)

    logger.info(
        "Admin forced conversation state",
        extra_data={
            "user": PhoneNumberValidator.mask(user_handle),
            "old_state": old_state,
            "new_state": body.new_state,
            "draft_cleared": body.clear_draft,
        },
    )
    return _session_response(session)
