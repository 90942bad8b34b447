"""
WhatsApp Provider Abstraction Layer

שכבת הפשטה לשליחת הודעות WhatsApp (Twilio).
"""
from app.domain.services.whatsapp.base_provider import (
    BaseWhatsAppProvider,
    DeliveryReceipt,
    FetchedMedia,
)
from app.domain.services.whatsapp.provider_factory import (
    get_whatsapp_provider,
    reset_providers,
    set_provider,
)

__all__ = [
    "BaseWhatsAppProvider",
    "DeliveryReceipt",
    "FetchedMedia",
    "get_whatsapp_provider",
    "reset_providers",
    "set_provider",
]
