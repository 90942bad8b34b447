"""
Celery Tasks

- process_report_submission: עיבוד דיווח מדף הצילום (שיוך, העלאה, התראות)
- process_outbox_messages / send_message: צד ה-worker של ה-Transactional Outbox
- cleanup_*: ניקוי תקופתי של טבלאות עזר
"""
from __future__ import annotations

import asyncio
import base64
import binascii
from contextlib import contextmanager
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, select

from app.core.exceptions import ResolutionUnavailable
from app.core.logging import correlation_scope, get_logger
from app.core.validation import PhoneNumberValidator
from app.db.database import get_task_session, utcnow
from app.db.models.conversation_session import ConversationSession
from app.db.models.outbox_message import MessageStatus, OutboxMessage, OutboxMessageType
from app.db.models.webhook_event import WebhookEvent, WebhookEventStatus
from app.domain.services.geo_resolver import GeoResolver, ResolutionOutcome
from app.domain.services.localization import get_text, normalize_language, report_type_for_option
from app.domain.services.outbox_service import OutboxService
from app.domain.services.report_link_service import ReportLinkService
from app.domain.services.submission_pipeline import ReportDraft, SubmissionPipeline
from app.domain.services.whatsapp import get_whatsapp_provider
from app.workers.celery_app import celery_app

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    event loop חדש לכל task, עם ניקוי מלא בסוף.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # ה-Redis singleton קשור ל-loop הזה; סגירה לפני שה-loop נסגר
            from app.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning("Failed to close Redis at task end", extra_data={"error": str(e)})
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro, correlation_id: str | None = None):
    """הרצת coroutine מתוך task סינכרוני, עם correlation id משלו"""
    with correlation_scope(correlation_id):
        with get_event_loop() as loop:
            return loop.run_until_complete(coro)


# ==================== Report submission ====================

def _decode_image(payload: dict) -> bytes | None:
    raw = payload.get("image_b64")
    if not raw:
        return None
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Invalid image payload, submitting without media")
        return None


async def _session_profile(db, user_handle: str) -> tuple[str | None, str | None]:
    """(שם, שפה) מהשיחה של המדווח, אם קיימת"""
    result = await db.execute(
        select(ConversationSession).where(ConversationSession.user_handle == user_handle)
    )
    session = result.scalar_one_or_none()
    if session is None:
        return None, None
    return session.user_name, session.language


async def _submit_report(payload: dict) -> dict[str, Any]:
    user_handle = payload["user_handle"]
    masked = PhoneNumberValidator.mask(user_handle)

    async with get_task_session() as db:
        reporter_name, session_language = await _session_profile(db, user_handle)
        language = normalize_language(payload.get("language") or session_language)
        outbox = OutboxService(db)

        draft = ReportDraft(
            reporter_handle=user_handle,
            reporter_name=reporter_name,
            report_type=report_type_for_option(payload.get("option")),
            description=payload.get("description"),
            media_bytes=_decode_image(payload),
            media_content_type=payload.get("image_content_type"),
            latitude=payload.get("latitude"),
            longitude=payload.get("longitude"),
            address=payload.get("address"),
            language=language,
            submission_key=payload.get("submission_key"),
        )

        # התוצאה נקבעת בתוך ה-try, ההודעה למדווח נכתבת פעם אחת אחריו
        extra: dict[str, Any] = {}
        try:
            resolution = await GeoResolver(db).resolve(draft.latitude, draft.longitude)
            if resolution.outcome == ResolutionOutcome.OUTSIDE:
                message_type = OutboxMessageType.REPORT_OUTSIDE
                text = get_text("LOCATION_OUTSIDE_JURISDICTION", language)
                outcome = {"outcome": "outside_jurisdiction"}
            elif resolution.outcome == ResolutionOutcome.INVALID:
                message_type = OutboxMessageType.REPORT_LOCATION_INVALID
                text = get_text("LOCATION_MISSING_HINT", language)
                outcome = {"outcome": "invalid_location"}
            else:
                result = await SubmissionPipeline(db).submit(draft, resolution.division)
                message_type = OutboxMessageType.REPORT_RESULT
                text = result.reply_text
                extra = {"report_public_id": result.public_id, "outcome": result.outcome.value}
                outcome = {"outcome": result.outcome.value, "public_id": result.public_id}
        except ResolutionUnavailable as e:
            logger.error(
                "Capture report failed, division resolution unavailable",
                extra_data={"user": masked, "error": e.message, "details": e.details},
            )
            await db.rollback()
            message_type = OutboxMessageType.REPORT_ERROR
            text = get_text("REPORT_ERROR", language)
            outcome = {"outcome": "resolution_unavailable"}
        except Exception as e:
            logger.error(
                "Capture report processing failed",
                extra_data={"user": masked, "error": str(e)},
                exc_info=True,
            )
            await db.rollback()
            message_type = OutboxMessageType.REPORT_ERROR
            text = get_text("REPORT_ERROR", language)
            outcome = {"outcome": "error"}

        message = await outbox.queue_text(user_handle, message_type, text, **extra)
        await db.commit()
        _dispatch_outbox_message(message.id)
        return outcome


def _dispatch_outbox_message(message_id: int) -> None:
    """שליחה מיידית; אם ה-broker לא זמין השורה כבר שמורה ו-beat ישלח אותה"""
    try:
        send_message.delay(message_id)
    except Exception as e:
        logger.warning(
            "Immediate outbox dispatch failed, left for beat",
            extra_data={"message_id": message_id, "error": str(e)},
        )


@celery_app.task(name="app.workers.tasks.process_report_submission")
def process_report_submission(payload: dict) -> dict:
    """
    דיווח מדף הצילום. המדווח מקבל הודעה אחת בלבד עם התוצאה
    (נשלח / מחוץ לתחום / שגיאה), דרך ה-outbox.
    """
    return run_async(_submit_report(payload))


# ==================== Outbox ====================

async def _send_whatsapp_message(recipient: str, content: dict) -> bool:
    provider = get_whatsapp_provider()
    try:
        media_url = content.get("media_url")
        if media_url:
            await provider.send_media(recipient, media_url, caption=content.get("message_text"))
        else:
            await provider.send_text(recipient, content.get("message_text", ""))
        return True
    except Exception as exc:
        logger.error(
            "WhatsApp send error",
            extra_data={"recipient": PhoneNumberValidator.mask(recipient), "error": str(exc)},
            exc_info=True,
        )
        return False


async def _process_single_message(message_id: int) -> tuple[bool, str]:
    async with get_task_session() as db:
        outbox_service = OutboxService(db)
        message = await outbox_service.mark_as_processing(message_id)
        if message is None:
            return False, "Message not claimable"

        try:
            success = await _send_whatsapp_message(message.recipient_id, message.message_content or {})
        except Exception as e:
            await outbox_service.mark_as_failed(message_id, str(e))
            return False, str(e)

        if success:
            await outbox_service.mark_as_sent(message_id)
            return True, "Message sent successfully"
        await outbox_service.mark_as_failed(message_id, "Send failed")
        return False, "Send failed"


@celery_app.task(name="app.workers.tasks.process_outbox_messages")
def process_outbox_messages():
    """
    שליחת הודעות ממתינות מה-outbox. רץ תקופתית מ-beat.
    """

    async def _process():
        async with get_task_session() as db:
            messages = await OutboxService(db).get_pending_messages(limit=50)
            message_ids = [m.id for m in messages]

        results = []
        for message_id in message_ids:
            success, result = await _process_single_message(message_id)
            results.append({"message_id": message_id, "success": success, "result": result})
        return results

    return run_async(_process())


@celery_app.task(name="app.workers.tasks.send_message")
def send_message(message_id: int):
    """שליחה מיידית של הודעה אחת (בלי לחכות ל-beat)"""

    async def _send():
        success, result = await _process_single_message(message_id)
        return {"success": success, "result": result}

    return run_async(_send())


# ==================== Cleanup ====================

@celery_app.task(name="app.workers.tasks.cleanup_old_messages")
def cleanup_old_messages(days: int = 30):
    """מחיקת הודעות outbox שנשלחו לפני יותר מ-days ימים"""

    async def _cleanup():
        async with get_task_session() as db:
            cutoff = utcnow() - timedelta(days=days)
            result = await db.execute(
                delete(OutboxMessage).where(
                    OutboxMessage.status == MessageStatus.SENT,
                    OutboxMessage.processed_at < cutoff,
                )
            )
            await db.commit()
            return {"deleted": result.rowcount or 0}

    return run_async(_cleanup())


@celery_app.task(name="app.workers.tasks.cleanup_old_webhook_events")
def cleanup_old_webhook_events(days: int = 7):
    """ניקוי רשומות idempotency של ה-webhook"""

    async def _cleanup():
        async with get_task_session() as db:
            cutoff = utcnow() - timedelta(days=days)
            result = await db.execute(
                delete(WebhookEvent).where(
                    WebhookEvent.status == WebhookEventStatus.COMPLETED,
                    WebhookEvent.created_at < cutoff,
                )
            )
            deleted = result.rowcount or 0
            await db.commit()
            logger.info(
                "Cleaned up old webhook events",
                extra_data={"deleted": deleted, "cutoff_days": days},
            )
            return {"deleted": deleted}

    return run_async(_cleanup())


@celery_app.task(name="app.workers.tasks.cleanup_expired_report_links")
def cleanup_expired_report_links():
    async def _cleanup():
        async with get_task_session() as db:
            deleted = await ReportLinkService(db).purge_expired()
            logger.info("Purged expired report links", extra_data={"deleted": deleted})
            return {"deleted": deleted}

    return run_async(_cleanup())
