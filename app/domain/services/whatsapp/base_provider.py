"""
ממשק בסיסי לספק WhatsApp: Dependency Inversion.

שכבת הלוגיקה (מנוע השיחה, צינור הדיווחים, עדכוני סטטוס) תלויה רק
בממשק ולא במימוש ספציפי. בבדיקות מזריקים מימוש מדומה.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.db.database import utcnow


@dataclass
class DeliveryReceipt:
    """אישור שליחה מה-gateway"""

    to: str
    message_id: Optional[str] = None
    sent_at: datetime = field(default_factory=utcnow)


@dataclass
class FetchedMedia:
    content: bytes
    content_type: str


class BaseWhatsAppProvider(ABC):
    """
    ממשק אחיד לשליחת הודעות WhatsApp.

    כל מימוש אחראי על:
    - שליחת HTTP
    - retry + circuit breaker
    - נרמול טלפון לפורמט הנדרש ע"י הספק
    """

    @abstractmethod
    async def send_text(self, to: str, text: str) -> DeliveryReceipt:
        """
        שליחת הודעת טקסט.

        Args:
            to: מספר טלפון או handle בפורמט whatsapp:+91...
            text: טקסט ההודעה (markdown של WhatsApp).

        Raises:
            WhatsAppError: בכשלון שליחה.
            CircuitBreakerOpenError: כשה-gateway מסומן כלא זמין.
        """

    @abstractmethod
    async def send_media(
        self,
        to: str,
        media_url: str,
        caption: Optional[str] = None,
    ) -> DeliveryReceipt:
        """שליחת תמונה לפי URL ציבורי (תמונת סגירה לאזרח)."""

    @abstractmethod
    async def fetch_media(self, media_url: str) -> FetchedMedia:
        """
        הורדת מדיה נכנסת (MediaUrl0) מה-gateway.

        Raises:
            MediaStorageError: כשההורדה נכשלה.
        """

    @abstractmethod
    def normalize_phone(self, phone: str) -> str:
        """נרמול מספר לפורמט היעד של הספק."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """שם הספק לשימוש בלוגים ודיאגנוסטיקה."""
