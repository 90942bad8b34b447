"""
רישום הודעות נכנסות לפי MessageSid של Twilio.

Twilio שולח שוב כשה-webhook לא עונה 200 בזמן. רק completed חוסם
עיבוד חוזר; failed או processing שנתקע מעבר ל-stale_after חוזרים לעיבוד.
"""
from datetime import datetime, timedelta

from sqlalchemy import Column, DateTime, Index, String, and_, or_

from app.db.database import Base, utcnow


class WebhookEventStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    message_id = Column(String(200), primary_key=True)  # MessageSid
    user_handle = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default=WebhookEventStatus.PROCESSING)
    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_webhook_events_status_created", "status", "created_at"),
    )

    @classmethod
    def retryable(cls, stale_after: timedelta, now: datetime | None = None):
        """תנאי WHERE להודעות שמותר לקחת שוב לעיבוד"""
        threshold = (now or utcnow()) - stale_after
        return or_(
            cls.status == WebhookEventStatus.FAILED,
            and_(cls.status == WebhookEventStatus.PROCESSING, cls.created_at < threshold),
        )
