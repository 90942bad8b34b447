"""
Outbox Service - Transactional Outbox Pattern for Async Messaging

הודעות למשתמשים שלא נשלחות בתוך מחזור ה-webhook (עדכוני סטטוס,
שגיאות עיבוד ברקע, אישור הצטרפות) נכתבות לטבלת outbox באותה
טרנזקציה, ו-Celery beat שולח אותן עם retry ו-backoff.
"""
from __future__ import annotations

from datetime import timedelta
from typing import List

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.database import utcnow
from app.db.models.outbox_message import MessageStatus, OutboxMessage


def _calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """base_seconds * 2**retry_count, חסום ב-max_backoff_seconds"""
    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0
    # retry_count לא חסום ב-DB
    exponent = min(max(retry_count, 0), 31)
    return min(base_seconds << exponent, max_backoff_seconds)


class OutboxService:
    """
    Service for managing outbox messages.

    במקום שליחה סינכרונית - הודעה נשמרת ב-outbox ונשלחת ע"י worker.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def queue_message(
        self,
        recipient_id: str,
        message_type: str,
        message_content: dict,
    ) -> OutboxMessage:
        """Queue a single message for delivery (ללא commit)"""
        message = OutboxMessage(
            recipient_id=recipient_id,
            message_type=message_type,
            message_content=message_content,
            report_public_id=message_content.get("report_public_id"),
            status=MessageStatus.PENDING,
        )
        self.db.add(message)
        return message

    async def queue_text(self, recipient_id: str, message_type: str, text: str, **extra) -> OutboxMessage:
        content = {"message_text": text}
        content.update(extra)
        return await self.queue_message(recipient_id, message_type, content)

    async def get_pending_messages(self, limit: int = 100) -> List[OutboxMessage]:
        """הודעות ממתינות שהגיע זמן ה-retry שלהן"""
        now = utcnow()
        result = await self.db.execute(
            select(OutboxMessage)
            .where(
                OutboxMessage.status == MessageStatus.PENDING,
                or_(OutboxMessage.next_retry_at.is_(None), OutboxMessage.next_retry_at <= now),
            )
            .order_by(OutboxMessage.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get(self, message_id: int) -> OutboxMessage | None:
        result = await self.db.execute(select(OutboxMessage).where(OutboxMessage.id == message_id))
        return result.scalar_one_or_none()

    async def mark_as_processing(self, message_id: int) -> OutboxMessage | None:
        """תפיסת הודעה לשליחה. None אם היא כבר לא PENDING (worker אחר לקח אותה)"""
        message = await self._get(message_id)
        if message is None or message.status != MessageStatus.PENDING:
            return None
        message.status = MessageStatus.PROCESSING
        await self.db.commit()
        return message

    async def mark_as_sent(self, message_id: int) -> None:
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.SENT
            message.processed_at = utcnow()
            await self.db.commit()

    async def mark_as_failed(self, message_id: int, error: str) -> None:
        """Mark message as failed; חוזר ל-PENDING עם backoff עד max_retries"""
        message = await self._get(message_id)
        if message:
            message.retry_count = (message.retry_count or 0) + 1
            message.last_error = error[:1000]

            if message.retry_count >= message.max_retries:
                message.status = MessageStatus.FAILED
            else:
                message.status = MessageStatus.PENDING
                backoff_seconds = _calculate_backoff_seconds(
                    message.retry_count,
                    base_seconds=settings.OUTBOX_RETRY_BASE_SECONDS,
                    max_backoff_seconds=settings.OUTBOX_MAX_BACKOFF_SECONDS,
                )
                message.next_retry_at = utcnow() + timedelta(seconds=backoff_seconds)

            await self.db.commit()
