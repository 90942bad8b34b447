"""
Team Application Service - הצטרפות לצוות Traffic Buddy.

שני ערוצים:
1. טופס join-team.html -> POST /api/join-team -> submit_application
2. טקסט חופשי בצ'אט ("Name: ...") -> parse_join_request
"""
import random
import re
import string
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import AppException, ErrorCode
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator, ValidationPatterns
from app.db.database import utcnow
from app.db.models.conversation_session import ConversationSession
from app.db.models.outbox_message import OutboxMessageType
from app.db.models.team_application import TeamApplication
from app.domain.services.localization import get_text
from app.domain.services.media_store import MediaFolder, MediaStore, get_media_store
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)

JOIN_SESSION_PREFIX = "join_"
JOIN_SESSION_CONTEXT_KEY = "join_session_id"

# מפתח בטקסט -> שדה. אנגלית ומראטהי
JOIN_FIELD_ALIASES: dict[str, str] = {
    "name": "name",
    "full name": "name",
    "नाव": "name",
    "email": "email",
    "ईमेल": "email",
    "phone": "phone",
    "mobile": "phone",
    "फोन": "phone",
    "location": "location",
    "address": "location",
    "स्थान": "location",
}

_KEY_VALUE_LINE = re.compile(r"^\s*([^:=\-]{2,20}?)\s*[:=\-]\s*(.+?)\s*$")
_EMAIL_IN_TEXT = re.compile(r"[^@\s,;]+@[^@\s,;]+\.[^@\s,;]+")
_PHONE_IN_TEXT = re.compile(r"(?:\+91|91|0)?[6-9]\d{9}")


class JoinSessionError(AppException):
    """session id לא תקף להגשת טופס"""

    def __init__(self, reason: str, session_id: str, status_code: int = 400):
        super().__init__(
            message=f"Join session {reason}: {session_id}",
            error_code=ErrorCode.JOIN_SESSION_INVALID,
            status_code=status_code,
            details={"reason": reason, "session_id": session_id},
        )
        self.reason = reason


@dataclass
class JoinRequestFields:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None

    @property
    def is_join_request(self) -> bool:
        return self.name is not None

    def as_dict(self) -> dict[str, str]:
        return {k: v for k, v in self.__dict__.items() if v}


def parse_join_request(text: str | None) -> JoinRequestFields:
    """
    פענוח מתירני של "Name: ...\\nEmail: ...".

    - סדר השורות לא משנה, מפתחות לא תלויי רישיות
    - שדה חסר נשאר None ולא מפיל את שאר השדות
    - מייל/טלפון בלי מפתח מזוהים לפי תבנית
    """
    fields = JoinRequestFields()
    if not text:
        return fields

    for line in text.splitlines():
        match = _KEY_VALUE_LINE.match(line)
        if not match:
            continue
        key = JOIN_FIELD_ALIASES.get(match.group(1).strip().lower())
        value = match.group(2).strip()
        if key and value and getattr(fields, key) is None:
            setattr(fields, key, value)

    if fields.email is None:
        email_match = _EMAIL_IN_TEXT.search(text)
        if email_match:
            fields.email = email_match.group(0)
    if fields.phone is None:
        phone_match = _PHONE_IN_TEXT.search(text)
        if phone_match:
            fields.phone = phone_match.group(0)

    if fields.email and not ValidationPatterns.EMAIL.match(fields.email):
        fields.email = None
    if fields.phone:
        compact = re.sub(r"[\s\-]", "", fields.phone)
        fields.phone = PhoneNumberValidator.normalize(compact) if PhoneNumberValidator.validate(compact) else None
    return fields


def generate_join_session_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"{JOIN_SESSION_PREFIX}{int(time.time() * 1000)}_{suffix}"


class TeamApplicationService:
    def __init__(self, db: AsyncSession, media_store: MediaStore | None = None):
        self.db = db
        self._media_store = media_store
        self.outbox = OutboxService(db)

    @property
    def media_store(self) -> MediaStore:
        if self._media_store is None:
            self._media_store = get_media_store()
        return self._media_store

    async def _validate_session(self, user_handle: str, session_id: str) -> ConversationSession | None:
        if not session_id or not session_id.startswith(JOIN_SESSION_PREFIX):
            raise JoinSessionError("malformed", session_id or "")

        existing = await self.db.execute(
            select(TeamApplication.id).where(TeamApplication.session_id == session_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise JoinSessionError("already_used", session_id, status_code=409)

        result = await self.db.execute(
            select(ConversationSession).where(ConversationSession.user_handle == user_handle)
        )
        session = result.scalar_one_or_none()
        expected = (session.context_data or {}).get(JOIN_SESSION_CONTEXT_KEY) if session else None
        if expected and expected != session_id:
            raise JoinSessionError("mismatch", session_id, status_code=403)
        return session

    async def submit_application(
        self,
        user_handle: str,
        session_id: str,
        full_name: str,
        division: str,
        motivation: str,
        address: str,
        phone: str,
        email: str,
        aadhaar_number: str,
        document: bytes,
        document_content_type: str,
    ) -> TeamApplication:
        """שמירת בקשה מהטופס + הודעת JOIN_APPLICATION_RECEIVED דרך outbox"""
        session = await self._validate_session(user_handle, session_id)

        document_url = await self.media_store.upload(document, document_content_type, MediaFolder.DOCUMENTS)

        application = TeamApplication(
            user_handle=user_handle,
            session_id=session_id,
            full_name=full_name,
            division=division,
            motivation=motivation,
            address=address,
            phone=phone,
            email=email,
            aadhaar_number=aadhaar_number,
            aadhaar_document_url=document_url,
            session_expires=utcnow() + timedelta(hours=settings.JOIN_SESSION_TTL_HOURS),
        )
        self.db.add(application)
        await self.db.flush()

        language = session.language if session else "en"
        await self.outbox.queue_text(
            user_handle,
            OutboxMessageType.JOIN_APPLICATION_RECEIVED,
            get_text("JOIN_APPLICATION_RECEIVED", language, full_name, application.id),
        )
        if session is not None:
            context = dict(session.context_data or {})
            context.pop(JOIN_SESSION_CONTEXT_KEY, None)
            session.context_data = context
        await self.db.commit()

        logger.info(
            "Team application submitted",
            extra_data={"application_id": application.id, "user": PhoneNumberValidator.mask(user_handle)},
        )
        return application
