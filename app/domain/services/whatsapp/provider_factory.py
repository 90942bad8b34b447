"""
Provider Factory: יצירת ספק WhatsApp לפי הגדרות.

ספק יחיד (singleton) לכל התהליך. בבדיקות מחליפים אותו ב-set_provider
או מאפסים עם reset_providers.
"""
from __future__ import annotations

import threading

from app.core.circuit_breaker import get_whatsapp_circuit_breaker
from app.core.logging import get_logger
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider

logger = get_logger(__name__)

_provider: BaseWhatsAppProvider | None = None
_lock = threading.Lock()


def _create_provider() -> BaseWhatsAppProvider:
    from app.domain.services.whatsapp.twilio_provider import TwilioWhatsAppProvider

    return TwilioWhatsAppProvider(circuit_breaker=get_whatsapp_circuit_breaker())


def get_whatsapp_provider() -> BaseWhatsAppProvider:
    """ספק WhatsApp לשליחת תשובות, התראות לקצינים ועדכוני סטטוס."""
    global _provider
    if _provider is None:
        with _lock:
            if _provider is None:
                _provider = _create_provider()
                logger.info(
                    "ספק WhatsApp אותחל",
                    extra_data={"provider": _provider.provider_name},
                )
    return _provider


def set_provider(provider: BaseWhatsAppProvider) -> None:
    """הזרקת ספק - לבדיקות ולהרצה מקומית"""
    global _provider
    with _lock:
        _provider = provider


def reset_providers() -> None:
    """איפוס ספקים, לשימוש בבדיקות בלבד."""
    global _provider
    with _lock:
        _provider = None
