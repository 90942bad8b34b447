"""
Conversation Session Model - State Machine Tracking

שורה אחת לכל משתמש WhatsApp. נוצרת בהודעה הראשונה, מתעדכנת במקום
ולא נמחקת לעולם. פג תוקף אחרי SESSION_TIMEOUT_SECONDS ללא פעילות.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text

from app.db.database import Base, utcnow


class ConversationSession(Base):
    """Per-user state machine tracking for the reporting conversation"""

    __tablename__ = "conversation_sessions"

    id = Column(Integer, primary_key=True, index=True)
    # "whatsapp:+9198XXXXXXXX" כפי שמגיע מה-gateway
    user_handle = Column(String(50), unique=True, nullable=False, index=True)

    # State machine
    current_state = Column(String(50), nullable=False, default="LANGUAGE_SELECT")
    last_option = Column(String(10), nullable=True)  # בחירת תפריט 1-8 אחרונה
    language = Column(String(5), nullable=False, default="en")
    user_name = Column(String(100), nullable=True)

    # טיוטת דיווח שממתינה למיקום
    draft_description = Column(Text, nullable=True)
    draft_media_url = Column(String(1000), nullable=True)
    draft_media_content_type = Column(String(100), nullable=True)

    # נתוני זרימה נוספים (join session id וכו')
    context_data = Column(JSON, default=dict)

    # Timestamps
    last_interaction = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def has_draft(self) -> bool:
        return bool(self.draft_description or self.draft_media_url)
