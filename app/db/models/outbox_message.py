"""
הודעות WhatsApp שנשלחות מחוץ למחזור ה-webhook.

תוצאת עיבוד דיווח מדף הצילום, עדכוני סטטוס מהקצין ואישור הצטרפות
נכתבים כאן באותה טרנזקציה של השינוי, ו-beat שולח אותם דרך Twilio.
"""
import enum

from sqlalchemy import JSON, Column, DateTime, Enum as SQLEnum, Integer, String

from app.db.database import Base, utcnow


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class OutboxMessageType:
    REPORT_RESULT = "report_result"
    REPORT_OUTSIDE = "report_outside"
    REPORT_LOCATION_INVALID = "report_location_invalid"
    REPORT_ERROR = "report_error"
    STATUS_UPDATE = "status_update"
    SUGGESTION_RESPONSE = "suggestion_response"
    JOIN_APPLICATION_RECEIVED = "join_application_received"


class OutboxMessage(Base):
    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(String(50), nullable=False)  # whatsapp:+91...
    message_type = Column(String(50), nullable=False)
    message_content = Column(JSON, nullable=False)  # {"message_text": ..., "media_url": ...}
    # הדיווח שההודעה עוסקת בו, לאיתור מ-admin debug
    report_public_id = Column(String(32), nullable=True, index=True)

    status = Column(SQLEnum(MessageStatus), default=MessageStatus.PENDING, index=True)
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, default=3)
    next_retry_at = Column(DateTime, nullable=True)
    last_error = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
