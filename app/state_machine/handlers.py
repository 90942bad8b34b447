"""
Conversation Engine - Process messages based on current state

כל הודעה נכנסת מייצרת בדיוק תשובה אחת ומעבר מצב אחד. שתי נקודות
ההגשה (הודעה עם מיקום ב-AWAITING_REPORT, ומיקום ב-AWAITING_LOCATION)
עוברות דרך complete_report.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ResolutionUnavailable
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator, TextLimits, TextSanitizer
from app.db.database import utcnow
from app.db.models.conversation_session import ConversationSession
from app.domain.services.geo_resolver import GeoResolver, ResolutionOutcome
from app.domain.services.localization import (
    JOIN_TEAM_OPTION,
    MENU_REPORT_TYPES,
    SUGGESTION_OPTION,
    build_capture_url,
    build_join_form_url,
    get_main_menu,
    get_text,
    report_type_for_option,
)
from app.domain.services.media_store import MediaStore
from app.domain.services.report_link_service import ReportLinkService
from app.domain.services.report_service import ReportService
from app.domain.services.submission_pipeline import (
    ReportDraft,
    SubmissionOutcome,
    SubmissionPipeline,
    SubmissionResult,
)
from app.domain.services.team_application_service import (
    JOIN_SESSION_CONTEXT_KEY,
    generate_join_session_id,
    parse_join_request,
)
from app.domain.services.whatsapp import BaseWhatsAppProvider
from app.state_machine.manager import SessionManager
from app.state_machine.states import (
    MENU_COMMAND_BLOCKED_STATES,
    ConversationState,
)

logger = get_logger(__name__)

LANGUAGE_OPTIONS = {"1": "en", "2": "mr"}
RESET_COMMAND = "reset"
MENU_COMMAND = "menu"


class MessageResponse:
    """Response to be sent to user"""

    def __init__(self, text: str):
        self.text = text


@dataclass
class InboundMessage:
    """הודעה נכנסת אחרי נרמול של ה-gateway"""

    user_handle: str
    body: str = ""
    message_id: Optional[str] = None
    media_url: Optional[str] = None
    media_content_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None

    @property
    def text(self) -> str:
        return (self.body or "").strip()

    @property
    def command(self) -> str:
        return self.text.lower()

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def has_content(self) -> bool:
        return bool(self.text or self.media_url)


class SideEffect(str, Enum):
    NONE = "none"
    LANGUAGE_SET = "language_set"
    NAME_STORED = "name_stored"
    MENU_SHOWN = "menu_shown"
    CAPTURE_LINK_SENT = "capture_link_sent"
    JOIN_LINK_SENT = "join_link_sent"
    DRAFT_STASHED = "draft_stashed"
    REPORT_SUBMITTED = "report_submitted"
    SUBMISSION_FAILED = "submission_failed"
    OUTSIDE_JURISDICTION = "outside_jurisdiction"
    LOCATION_INVALID = "location_invalid"
    RESOLUTION_FAILED = "resolution_failed"
    JOIN_REQUEST_STORED = "join_request_stored"


@dataclass
class EngineResult:
    response: MessageResponse
    state: ConversationState
    side_effect: SideEffect = SideEffect.NONE
    submission: Optional[SubmissionResult] = None


@dataclass
class _Step:
    """תוצאת handler לפני שמירת המעבר"""

    text: str
    next_state: ConversationState
    side_effect: SideEffect = SideEffect.NONE
    fields: dict[str, Any] = field(default_factory=dict)
    submission: Optional[SubmissionResult] = None


def _draft_fields(draft: ReportDraft) -> dict[str, Any]:
    return {
        "draft_description": draft.description,
        "draft_media_url": draft.media_url,
        "draft_media_content_type": draft.media_content_type,
    }


_CLEARED_DRAFT = {
    "draft_description": None,
    "draft_media_url": None,
    "draft_media_content_type": None,
}


class ConversationEngine:
    """Handles the citizen reporting conversation"""

    def __init__(
        self,
        db: AsyncSession,
        provider: BaseWhatsAppProvider | None = None,
        media_store: MediaStore | None = None,
        geo_resolver: GeoResolver | None = None,
        pipeline: SubmissionPipeline | None = None,
    ):
        self.db = db
        self.sessions = SessionManager(db)
        self.geo_resolver = geo_resolver or GeoResolver(db)
        self._provider = provider
        self._media_store = media_store
        self._pipeline = pipeline

    @property
    def pipeline(self) -> SubmissionPipeline:
        if self._pipeline is None:
            self._pipeline = SubmissionPipeline(
                self.db, provider=self._provider, media_store=self._media_store
            )
        return self._pipeline

    async def handle_message(
        self, message: InboundMessage, now: Optional[datetime] = None
    ) -> EngineResult:
        """
        Process incoming message and return response with new state.

        פקודות גלובליות ("reset", "menu") נבדקות לפני ה-handler של המצב.
        """
        now = now or utcnow()
        session = await self.sessions.get_or_create_session(message.user_handle, now)
        current_state = ConversationState(session.current_state)
        language = session.language or "en"

        if message.command == RESET_COMMAND:
            await self.sessions.force_state(
                message.user_handle,
                ConversationState.LANGUAGE_SELECT,
                now=now,
                last_option=None,
                context_data={},
            )
            return EngineResult(
                MessageResponse(get_text("LANGUAGE_PROMPT", language)),
                ConversationState.LANGUAGE_SELECT,
            )

        if message.command == MENU_COMMAND and current_state not in MENU_COMMAND_BLOCKED_STATES:
            await self.sessions.force_state(
                message.user_handle, ConversationState.MENU, now=now, last_option=None
            )
            return EngineResult(
                MessageResponse(get_main_menu(language)),
                ConversationState.MENU,
                SideEffect.MENU_SHOWN,
            )

        handler = self._get_handler(current_state)
        step = await handler(session, message)
        await self._commit_step(message.user_handle, current_state, step, now)

        logger.info(
            "Conversation step",
            extra_data={
                "user": PhoneNumberValidator.mask(message.user_handle),
                "from_state": current_state.value,
                "to_state": step.next_state.value,
                "side_effect": step.side_effect.value,
            },
        )
        return EngineResult(
            MessageResponse(step.text), step.next_state, step.side_effect, step.submission
        )

    async def _commit_step(
        self, user_handle: str, current_state: ConversationState, step: _Step, now: datetime
    ) -> None:
        fields = dict(step.fields)
        if step.next_state == ConversationState.MENU:
            for name, value in _CLEARED_DRAFT.items():
                fields.setdefault(name, value)

        success = await self.sessions.transition_to(user_handle, step.next_state, now=now, **fields)
        if not success:
            logger.warning(
                "Forcing transition",
                extra_data={"from_state": current_state.value, "to_state": step.next_state.value},
            )
            await self.sessions.force_state(
                user_handle, step.next_state, clear_draft=False, now=now, **fields
            )

    def _get_handler(self, state: ConversationState):
        """Get handler function for state"""
        handlers = {
            ConversationState.LANGUAGE_SELECT: self._handle_language_select,
            ConversationState.NAME_COLLECTION: self._handle_name_collection,
            ConversationState.MENU: self._handle_menu,
            ConversationState.AWAITING_REPORT: self._handle_awaiting_report,
            ConversationState.AWAITING_SUGGESTION: self._handle_awaiting_report,
            ConversationState.AWAITING_LOCATION: self._handle_awaiting_location,
            ConversationState.JOIN_TEAM_LINK_SENT: self._handle_join_link_sent,
        }
        return handlers.get(state, self._handle_menu)

    # ==================== Registration ====================

    async def _handle_language_select(self, session: ConversationSession, message: InboundMessage) -> _Step:
        language = LANGUAGE_OPTIONS.get(message.command)
        if language is None:
            return _Step(get_text("LANGUAGE_PROMPT", session.language), ConversationState.LANGUAGE_SELECT)
        return _Step(
            get_text("NAME_REQUEST", language),
            ConversationState.NAME_COLLECTION,
            SideEffect.LANGUAGE_SET,
            fields={"language": language},
        )

    async def _handle_name_collection(self, session: ConversationSession, message: InboundMessage) -> _Step:
        name = TextSanitizer.sanitize(message.text, max_length=TextLimits.NAME)
        if not name:
            return _Step(get_text("NAME_REQUEST", session.language), ConversationState.NAME_COLLECTION)
        text = f"{get_text('NAME_CONFIRMATION', session.language, name)}\n\n{get_main_menu(session.language)}"
        return _Step(text, ConversationState.MENU, SideEffect.NAME_STORED, fields={"user_name": name})

    # ==================== Main Menu ====================

    async def _handle_menu(self, session: ConversationSession, message: InboundMessage) -> _Step:
        option = message.command
        language = session.language

        if option in MENU_REPORT_TYPES:
            link = await ReportLinkService(self.db).create_link(
                session.user_handle, report_type_for_option(option).value
            )
            url = build_capture_url(session.user_handle, option, link.link_id)
            next_state = (
                ConversationState.AWAITING_SUGGESTION
                if option == SUGGESTION_OPTION
                else ConversationState.AWAITING_REPORT
            )
            return _Step(
                get_text("CAMERA_INSTRUCTIONS", language, url),
                next_state,
                SideEffect.CAPTURE_LINK_SENT,
                fields={"last_option": option},
            )

        if option == JOIN_TEAM_OPTION:
            join_session_id = generate_join_session_id()
            context = dict(session.context_data or {})
            context[JOIN_SESSION_CONTEXT_KEY] = join_session_id
            url = build_join_form_url(session.user_handle, join_session_id)
            return _Step(
                get_text("JOIN_FORM_LINK", language, url),
                ConversationState.JOIN_TEAM_LINK_SENT,
                SideEffect.JOIN_LINK_SENT,
                fields={"last_option": option, "context_data": context},
            )

        return _Step(get_main_menu(language), ConversationState.MENU, SideEffect.MENU_SHOWN)

    # ==================== Report collection ====================

    @staticmethod
    def _build_draft(
        session: ConversationSession,
        message: InboundMessage,
        *,
        stashed: bool = False,
    ) -> ReportDraft:
        """
        טיוטה אחת לשתי נקודות ההגשה. המיקום תמיד מההודעה הנוכחית;
        תיאור ומדיה מההודעה, או מהטיוטה השמורה בסשן כש-stashed.
        """
        if stashed:
            description = session.draft_description
            media_url = session.draft_media_url
            media_content_type = session.draft_media_content_type
        else:
            description = TextSanitizer.sanitize(message.text, max_length=TextLimits.DESCRIPTION) or None
            media_url = message.media_url
            media_content_type = message.media_content_type
        return ReportDraft(
            reporter_handle=session.user_handle,
            reporter_name=session.user_name,
            report_type=report_type_for_option(session.last_option),
            description=description,
            media_url=media_url,
            media_content_type=media_content_type,
            latitude=message.latitude,
            longitude=message.longitude,
            address=message.address,
            language=session.language,
            submission_key=f"wa:{message.message_id}" if message.message_id else None,
        )

    async def _handle_awaiting_report(self, session: ConversationSession, message: InboundMessage) -> _Step:
        current_state = ConversationState(session.current_state)
        if not message.has_content and not message.has_location:
            return _Step(get_text("REPORT_DETAILS_PROMPT", session.language), current_state)

        draft = self._build_draft(session, message)
        if message.has_location:
            return await self.complete_report(session, draft)

        return _Step(
            get_text("LOCATION_REQUEST", session.language),
            ConversationState.AWAITING_LOCATION,
            SideEffect.DRAFT_STASHED,
            fields=_draft_fields(draft),
        )

    async def _handle_awaiting_location(self, session: ConversationSession, message: InboundMessage) -> _Step:
        if not message.has_location:
            return _Step(get_text("LOCATION_MISSING_HINT", session.language), ConversationState.AWAITING_LOCATION)

        draft = self._build_draft(session, message, stashed=True)
        return await self.complete_report(session, draft)

    async def complete_report(self, session: ConversationSession, draft: ReportDraft) -> _Step:
        """
        שיוך למחלקה ואז צינור ההגשה.

        OUTSIDE -> הודעת תחום שיפוט וחזרה לתפריט, בלי צינור
        INVALID -> רמז מיקום, הטיוטה נשמרת ב-AWAITING_LOCATION
        ResolutionUnavailable -> הודעת שגיאה, הטיוטה נשמרת ב-AWAITING_LOCATION
        """
        language = draft.language
        user = PhoneNumberValidator.mask(draft.reporter_handle)
        try:
            resolution = await self.geo_resolver.resolve(draft.latitude, draft.longitude)
            if resolution.outcome == ResolutionOutcome.OUTSIDE:
                logger.info("Report location outside jurisdiction", extra_data={"user": user})
                return _Step(
                    get_text("LOCATION_OUTSIDE_JURISDICTION", language),
                    ConversationState.MENU,
                    SideEffect.OUTSIDE_JURISDICTION,
                )
            if resolution.outcome == ResolutionOutcome.INVALID:
                return _Step(
                    get_text("LOCATION_MISSING_HINT", language),
                    ConversationState.AWAITING_LOCATION,
                    SideEffect.LOCATION_INVALID,
                    fields=_draft_fields(draft),
                )
            result = await self.pipeline.submit(draft, resolution.division)
        except ResolutionUnavailable as e:
            logger.error(
                "Division resolution unavailable, draft kept",
                extra_data={"user": user, "error": e.message, "details": e.details},
            )
            return _Step(
                get_text("REPORT_ERROR", language),
                ConversationState.AWAITING_LOCATION,
                SideEffect.RESOLUTION_FAILED,
                fields=_draft_fields(draft),
            )

        succeeded = result.outcome in (
            SubmissionOutcome.SUBMITTED,
            SubmissionOutcome.PERSISTED_UNNOTIFIED,
            SubmissionOutcome.DUPLICATE,
        )
        return _Step(
            result.reply_text,
            ConversationState.MENU,
            SideEffect.REPORT_SUBMITTED if succeeded else SideEffect.SUBMISSION_FAILED,
            submission=result,
        )

    # ==================== Join team ====================

    async def _handle_join_link_sent(self, session: ConversationSession, message: InboundMessage) -> _Step:
        fields = parse_join_request(message.text)
        if not fields.is_join_request:
            return _Step(get_main_menu(session.language), ConversationState.MENU, SideEffect.MENU_SHOWN)

        await ReportService(self.db).record_join_request(
            session.user_handle,
            fields.as_dict(),
            message.text,
            reporter_name=session.user_name,
        )
        return _Step(
            get_text("JOIN_RESPONSE", session.language),
            ConversationState.MENU,
            SideEffect.JOIN_REQUEST_STORED,
        )
