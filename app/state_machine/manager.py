"""
Session Manager - Handles state transitions, drafts and session expiry
"""
from datetime import datetime, timedelta
from typing import Optional, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.database import utcnow
from app.db.models.conversation_session import ConversationSession
from app.state_machine.states import ConversationState, CONVERSATION_TRANSITIONS

logger = get_logger(__name__)

# שדות סשן שמותר לעדכן יחד עם מעבר מצב
SESSION_FIELDS = frozenset({
    "last_option",
    "language",
    "user_name",
    "draft_description",
    "draft_media_url",
    "draft_media_content_type",
    "context_data",
})

DRAFT_FIELDS = ("draft_description", "draft_media_url", "draft_media_content_type")


class SessionManager:
    """Manages conversation sessions and state transitions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find(self, user_handle: str) -> ConversationSession | None:
        result = await self.db.execute(
            select(ConversationSession).where(ConversationSession.user_handle == user_handle)
        )
        return result.scalar_one_or_none()

    async def get_or_create_session(
        self,
        user_handle: str,
        now: Optional[datetime] = None,
    ) -> ConversationSession:
        """
        Get existing session or create new one.

        סשן שלא היה פעיל יותר מ-SESSION_TIMEOUT_SECONDS מאופס ל-LANGUAGE_SELECT
        (השפה והשם נשמרים, הטיוטה נמחקת) לפני שההודעה הנוכחית מעובדת.
        """
        now = now or utcnow()
        session = await self._find(user_handle)

        if session is None:
            try:
                async with self.db.begin_nested():
                    session = ConversationSession(
                        user_handle=user_handle,
                        current_state=ConversationState.LANGUAGE_SELECT.value,
                        language="en",
                        context_data={},
                        last_interaction=now,
                    )
                    self.db.add(session)
            except IntegrityError:
                # נוצר במקביל ע"י worker אחר
                logger.info(
                    "Session created concurrently, reloading",
                    extra_data={"user": PhoneNumberValidator.mask(user_handle)},
                )
                session = await self._find(user_handle)
                if session is None:
                    raise
                return session
            await self.db.commit()
            logger.info(
                "New conversation session",
                extra_data={"user": PhoneNumberValidator.mask(user_handle)},
            )
            return session

        if self.is_expired(session, now):
            logger.info(
                "Session expired, resetting to language selection",
                extra_data={
                    "user": PhoneNumberValidator.mask(user_handle),
                    "previous_state": session.current_state,
                },
            )
            session.current_state = ConversationState.LANGUAGE_SELECT.value
            session.last_option = None
            session.context_data = {}
            self._clear_draft(session)
            session.last_interaction = now
            await self.db.commit()

        return session

    @staticmethod
    def is_expired(session: ConversationSession, now: Optional[datetime] = None) -> bool:
        if session.last_interaction is None:
            return False
        now = now or utcnow()
        return now - session.last_interaction > timedelta(seconds=settings.SESSION_TIMEOUT_SECONDS)

    async def transition_to(
        self,
        user_handle: str,
        new_state: ConversationState,
        now: Optional[datetime] = None,
        **fields: Any,
    ) -> bool:
        """
        Transition to a new state if valid, updating session fields in the same commit.
        Returns True if transition was successful.
        """
        now = now or utcnow()
        session = await self.get_or_create_session(user_handle, now)
        current_state = session.current_state

        if not self._is_valid_transition(current_state, new_state):
            logger.warning(
                "Invalid state transition attempted",
                extra_data={
                    "user": PhoneNumberValidator.mask(user_handle),
                    "current_state": current_state,
                    "target_state": new_state.value,
                },
            )
            return False

        self._apply(session, new_state, fields, now)
        await self.db.commit()
        return True

    async def force_state(
        self,
        user_handle: str,
        new_state: ConversationState,
        clear_draft: bool = True,
        now: Optional[datetime] = None,
        **fields: Any,
    ) -> None:
        """Force state change without validation (reset / menu / admin)"""
        now = now or utcnow()
        session = await self.get_or_create_session(user_handle, now)
        if clear_draft:
            self._clear_draft(session)
        self._apply(session, new_state, fields, now)
        await self.db.commit()

    @staticmethod
    def _apply(
        session: ConversationSession, new_state: ConversationState, fields: dict, now: datetime
    ) -> None:
        unknown = set(fields) - SESSION_FIELDS
        if unknown:
            raise ValueError(f"Unknown session fields: {', '.join(sorted(unknown))}")
        session.current_state = new_state.value
        for name, value in fields.items():
            setattr(session, name, value)
        session.last_interaction = now

    @staticmethod
    def _clear_draft(session: ConversationSession) -> None:
        for name in DRAFT_FIELDS:
            setattr(session, name, None)

    def _is_valid_transition(self, current: str, target: ConversationState) -> bool:
        try:
            current_state = ConversationState(current)
        except ValueError:
            return False
        return target in CONVERSATION_TRANSITIONS.get(current_state, [])
