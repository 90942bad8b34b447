"""
WhatsApp Webhook Handler - Twilio Channel Adapter

Twilio שולח form-encoded POST לכל הודעה נכנסת. ההודעה מנורמלת
ל-InboundMessage, מעובדת תחת מנעול של המשתמש, והתשובה נשלחת דרך
Twilio REST ב-BackgroundTasks. גוף התשובה ל-Twilio הוא TwiML ריק.
"""
from datetime import timedelta
from typing import Mapping, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.webhook_auth import verify_twilio_signature
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.database import get_db, utcnow
from app.db.models.webhook_event import WebhookEvent, WebhookEventStatus
from app.domain.services.geo_resolver import parse_coordinate
from app.domain.services.localization import get_text
from app.domain.services.whatsapp import get_whatsapp_provider
from app.state_machine.handlers import ConversationEngine, InboundMessage
from app.state_machine.locks import get_user_lock_registry

logger = get_logger(__name__)

router = APIRouter()

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'

# ──────────────────────────────────────────────
#  idempotency לפי MessageSid, מבוסס DB.
#  INSERT מוצלח = ההודעה שלנו לעיבוד. completed חוסם כפילויות,
#  processing ישן או failed מאפשרים retry.
# ──────────────────────────────────────────────
_STALE_PROCESSING = timedelta(seconds=120)


async def _try_acquire_message(db: AsyncSession, message_id: Optional[str], user_handle: str) -> bool:
    """
    ניסיון לרכוש הודעה לעיבוד (idempotency check).
    מחזיר True אם ההודעה חדשה ואפשר לעבד, False אם כפולה.
    """
    if not message_id:
        return True

    try:
        async with db.begin_nested():
            db.add(WebhookEvent(
                message_id=message_id,
                user_handle=user_handle,
                status=WebhookEventStatus.PROCESSING,
                created_at=utcnow(),
            ))
        # commit מיידי - הרשומה נשמרת גם אם העיבוד נכשל
        await db.commit()
        return True
    except IntegrityError:
        pass

    result = await db.execute(
        select(WebhookEvent.status, WebhookEvent.created_at).where(WebhookEvent.message_id == message_id)
    )
    row = result.one_or_none()
    if not row:
        return False

    if row.status == WebhookEventStatus.COMPLETED:
        logger.info("Skipping completed duplicate message", extra_data={"message_id": message_id})
        return False

    # retry אטומי: failed, או processing שתקוע
    update_result = await db.execute(
        update(WebhookEvent)
        .where(
            WebhookEvent.message_id == message_id,
            WebhookEvent.retryable(_STALE_PROCESSING),
        )
        .values(status=WebhookEventStatus.PROCESSING, created_at=utcnow())
    )
    if update_result.rowcount > 0:
        await db.commit()
        logger.warning("Retrying stale or failed message", extra_data={"message_id": message_id})
        return True

    logger.info("Skipping in-progress message", extra_data={"message_id": message_id})
    return False


async def _set_message_status(db: AsyncSession, message_id: Optional[str], status: str) -> None:
    if not message_id:
        return
    values = {"status": status}
    if status == WebhookEventStatus.COMPLETED:
        values["processed_at"] = utcnow()
    await db.execute(
        update(WebhookEvent).where(WebhookEvent.message_id == message_id).values(**values)
    )
    await db.commit()


def parse_twilio_form(form: Mapping[str, str]) -> Optional[InboundMessage]:
    """שדות Twilio -> InboundMessage. None אם אין שולח"""
    user_handle = (form.get("From") or "").strip()
    if not user_handle:
        return None

    media_url = None
    media_content_type = None
    try:
        num_media = int(form.get("NumMedia") or 0)
    except ValueError:
        num_media = 0
    if num_media > 0:
        media_url = form.get("MediaUrl0") or None
        media_content_type = form.get("MediaContentType0") or None

    return InboundMessage(
        user_handle=user_handle,
        body=form.get("Body") or "",
        message_id=form.get("MessageSid") or None,
        media_url=media_url,
        media_content_type=media_content_type,
        latitude=parse_coordinate(form.get("Latitude")),
        longitude=parse_coordinate(form.get("Longitude")),
        address=form.get("Address") or None,
    )


async def send_whatsapp_message(user_handle: str, text: str) -> None:
    """
    שליחת תשובה דרך ספק WhatsApp.
    fire-and-forget: שגיאות נרשמות בלוג ולא נזרקות חזרה.
    """
    provider = get_whatsapp_provider()
    try:
        await provider.send_text(user_handle, text)
    except Exception as exc:
        logger.error(
            "WhatsApp reply failed",
            extra_data={"phone": PhoneNumberValidator.mask(user_handle), "error": str(exc)},
            exc_info=True,
        )


def _twiml() -> Response:
    return Response(content=EMPTY_TWIML, media_type="application/xml")


@router.post(
    "/webhook",
    summary="Webhook - WhatsApp (Twilio)",
    description=(
        "נקודת כניסה להודעות WhatsApp מ-Twilio (form-encoded). "
        "מעבד את ההודעה ב-state machine ומחזיר TwiML ריק; התשובה נשלחת ב-REST."
    ),
    response_class=Response,
    responses={200: {"content": {"application/xml": {}}}},
)
async def whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_twilio_signature),
):
    form = await request.form()
    message = parse_twilio_form({key: str(value) for key, value in form.items()})
    if message is None:
        logger.warning("Twilio webhook without From, ignoring")
        return _twiml()

    logger.debug(
        "WhatsApp message received",
        extra_data={
            "from": PhoneNumberValidator.mask(message.user_handle),
            "message_id": message.message_id,
            "text_preview": message.text[:50],
            "has_media": message.media_url is not None,
            "has_location": message.has_location,
        },
    )

    # מנעול למשתמש לכל מחזור ההודעה: קריאת סשן -> מעבר -> כתיבה
    async with get_user_lock_registry().hold(message.user_handle):
        if not await _try_acquire_message(db, message.message_id, message.user_handle):
            return _twiml()

        try:
            result = await ConversationEngine(db).handle_message(message)
        except Exception:
            logger.error(
                "Message processing failed",
                extra_data={
                    "from": PhoneNumberValidator.mask(message.user_handle),
                    "message_id": message.message_id,
                },
                exc_info=True,
            )
            await db.rollback()
            await _set_message_status(db, message.message_id, WebhookEventStatus.FAILED)
            background_tasks.add_task(send_whatsapp_message, message.user_handle, get_text("REPORT_ERROR"))
            return _twiml()

        await _set_message_status(db, message.message_id, WebhookEventStatus.COMPLETED)

    background_tasks.add_task(send_whatsapp_message, message.user_handle, result.response.text)
    return _twiml()
