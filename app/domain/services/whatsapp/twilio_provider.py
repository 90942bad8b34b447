"""
Twilio Provider: מימוש BaseWhatsAppProvider מעל Twilio Messages API.

POST /Accounts/{sid}/Messages.json עם From/To/Body (form-encoded, basic auth),
כולל retry עם exponential backoff על קודים זמניים ו-circuit breaker.
"""
from __future__ import annotations

import asyncio
from typing import Optional

import httpx

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import MediaStorageError, WhatsAppError
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator, to_whatsapp_address
from app.domain.services.whatsapp.base_provider import (
    BaseWhatsAppProvider,
    DeliveryReceipt,
    FetchedMedia,
)

logger = get_logger(__name__)


class TwilioWhatsAppProvider(BaseWhatsAppProvider):
    """
    ספק WhatsApp מעל Twilio.

    - שליחה: Messages.json (201 Created בהצלחה)
    - הורדת מדיה נכנסת: GET ל-MediaUrl עם אותו basic auth
    """

    def __init__(self, circuit_breaker: CircuitBreaker) -> None:
        self._circuit_breaker = circuit_breaker
        self._account_sid = settings.TWILIO_ACCOUNT_SID
        self._auth = (settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        self._from = to_whatsapp_address(settings.TWILIO_WHATSAPP_FROM) if settings.TWILIO_WHATSAPP_FROM else ""
        self._messages_url = (
            f"{settings.TWILIO_API_BASE_URL}/Accounts/{settings.TWILIO_ACCOUNT_SID}/Messages.json"
        )
        self._max_retries = settings.WHATSAPP_MAX_RETRIES
        self._transient_status_codes = {
            int(code.strip())
            for code in settings.WHATSAPP_TRANSIENT_STATUS_CODES.split(",")
            if code.strip()
        }

    @property
    def provider_name(self) -> str:
        return "twilio"

    def normalize_phone(self, phone: str) -> str:
        """'9876543210' / '+91 98765 43210' / 'whatsapp:+91...' -> 'whatsapp:+919876543210'"""
        return to_whatsapp_address(phone)

    async def _post_with_retry(self, payload: dict, operation_name: str) -> httpx.Response:
        """שליחת בקשה ל-Twilio עם retry ו-exponential backoff.

        זורק WhatsAppError אם כל הניסיונות נכשלו.
        """
        phone_masked = PhoneNumberValidator.mask(payload.get("To", ""))

        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, auth=self._auth) as client:
            for attempt in range(self._max_retries):
                try:
                    response = await client.post(self._messages_url, data=payload)
                    if response.status_code in (200, 201):
                        return response

                    if (
                        response.status_code in self._transient_status_codes
                        and attempt < self._max_retries - 1
                    ):
                        backoff = 2 ** attempt
                        logger.warning(
                            f"שגיאה זמנית ב-{operation_name}, מנסה שוב",
                            extra_data={
                                "phone": phone_masked,
                                "status_code": response.status_code,
                                "attempt": attempt + 1,
                                "max_retries": self._max_retries,
                                "backoff_seconds": backoff,
                            },
                        )
                        await asyncio.sleep(backoff)
                        continue

                    raise WhatsAppError.from_response(
                        "messages",
                        response,
                        message=f"Twilio Messages returned status {response.status_code}",
                    )
                except httpx.TimeoutException:
                    if attempt < self._max_retries - 1:
                        backoff = 2 ** attempt
                        logger.warning(
                            f"{operation_name} timeout, מנסה שוב",
                            extra_data={"phone": phone_masked, "attempt": attempt + 1, "backoff_seconds": backoff},
                        )
                        await asyncio.sleep(backoff)
                        continue
                    raise WhatsAppError(
                        message="Twilio Messages timeout after retries",
                        details={"timeout": True, "attempts": self._max_retries},
                    )
                except httpx.RequestError as exc:
                    if attempt < self._max_retries - 1:
                        backoff = 2 ** attempt
                        logger.warning(
                            f"שגיאת רשת ב-{operation_name}, מנסה שוב",
                            extra_data={
                                "phone": phone_masked,
                                "error": str(exc),
                                "attempt": attempt + 1,
                                "backoff_seconds": backoff,
                            },
                        )
                        await asyncio.sleep(backoff)
                        continue
                    raise WhatsAppError(
                        message=f"Twilio Messages network error: {exc}",
                        details={"network_error": True, "attempts": self._max_retries},
                    )

        # לא אמור להגיע לכאן - max_retries >= 1
        raise WhatsAppError(message="Twilio Messages: no attempts made")

    async def _send(self, payload: dict, operation_name: str) -> DeliveryReceipt:
        async def _call() -> httpx.Response:
            return await self._post_with_retry(payload, operation_name)

        response = await self._circuit_breaker.execute(_call)
        try:
            message_id = response.json().get("sid")
        except ValueError:
            message_id = None
        return DeliveryReceipt(to=payload["To"], message_id=message_id)

    async def send_text(self, to: str, text: str) -> DeliveryReceipt:
        """שליחת טקסט דרך Twilio עם retry ו-circuit breaker."""
        payload = {"From": self._from, "To": self.normalize_phone(to), "Body": text}
        return await self._send(payload, "שליחת WhatsApp")

    async def send_media(
        self,
        to: str,
        media_url: str,
        caption: Optional[str] = None,
    ) -> DeliveryReceipt:
        if not media_url:
            raise WhatsAppError(message="media_url is required for send_media")
        payload = {
            "From": self._from,
            "To": self.normalize_phone(to),
            "MediaUrl": media_url,
            "Body": caption or "",
        }
        return await self._send(payload, "שליחת מדיה WhatsApp")

    async def fetch_media(self, media_url: str) -> FetchedMedia:
        """הורדת MediaUrl0 - Twilio מחזיר redirect ל-CDN, לכן follow_redirects"""
        try:
            async with httpx.AsyncClient(
                timeout=settings.MEDIA_TIMEOUT_SECONDS,
                auth=self._auth,
                follow_redirects=True,
            ) as client:
                response = await client.get(media_url)
        except httpx.TimeoutException as exc:
            raise MediaStorageError(
                "media download timed out",
                details={"timeout_seconds": settings.MEDIA_TIMEOUT_SECONDS},
            ) from exc
        except httpx.RequestError as exc:
            raise MediaStorageError(f"media download failed: {exc}") from exc

        if response.status_code != 200:
            raise MediaStorageError(
                f"media download returned status {response.status_code}",
                details={"status_code": response.status_code},
            )
        content_type = response.headers.get("content-type", "application/octet-stream").split(";")[0]
        return FetchedMedia(content=response.content, content_type=content_type)
