"""
בדיקות לשכבת ההפשטה של ספק WhatsApp.

מכסה:
- BaseWhatsAppProvider - ממשק אבסטרקטי
- TwilioWhatsAppProvider - שליחת טקסט, מדיה, retry, circuit breaker, הורדת מדיה
- Provider Factory - singleton והזרקה
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from httpx import Response

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.core.exceptions import CircuitBreakerOpenError, MediaStorageError, WhatsAppError
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from app.domain.services.whatsapp.provider_factory import (
    get_whatsapp_provider,
    reset_providers,
    set_provider,
)
from app.domain.services.whatsapp.twilio_provider import TwilioWhatsAppProvider


def _response(status_code: int, json_body: dict | None = None) -> MagicMock:
    response = MagicMock(spec=Response)
    response.status_code = status_code
    response.json.return_value = json_body or {}
    response.text = ""
    return response


def _mock_client(mock_client_cls, **methods) -> AsyncMock:
    mock_instance = AsyncMock()
    for name, value in methods.items():
        setattr(mock_instance, name, value)
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = mock_instance
    return mock_instance


# ============================================================================
# BaseWhatsAppProvider - ממשק אבסטרקטי לא ניתן ליצירה ישירה
# ============================================================================


class TestBaseProviderInterface:
    @pytest.mark.unit
    def test_cannot_instantiate_abstract_provider(self) -> None:
        with pytest.raises(TypeError):
            BaseWhatsAppProvider()  # type: ignore[abstract]

    @pytest.mark.unit
    def test_concrete_provider_must_implement_all_methods(self) -> None:
        """ספק חסר fetch_media - TypeError."""

        class IncompleteProvider(BaseWhatsAppProvider):
            async def send_text(self, to, text):
                return None

        with pytest.raises(TypeError):
            IncompleteProvider()  # type: ignore[abstract]


# ============================================================================
# TwilioWhatsAppProvider
# ============================================================================


class TestTwilioSend:
    def _make_provider(self, failure_threshold: int = 5) -> TwilioWhatsAppProvider:
        cb = CircuitBreaker("test_twilio", CircuitBreakerConfig(failure_threshold=failure_threshold))
        return TwilioWhatsAppProvider(circuit_breaker=cb)

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("9876543210", "whatsapp:+919876543210"),
        ("+91 98765 43210", "whatsapp:+919876543210"),
        ("whatsapp:+919876543210", "whatsapp:+919876543210"),
        ("+14155238886", "whatsapp:+14155238886"),
    ])
    def test_normalize_phone(self, raw, expected) -> None:
        assert self._make_provider().normalize_phone(raw) == expected

    @pytest.mark.asyncio
    async def test_send_text_success(self) -> None:
        provider = self._make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(
                mock_client, post=AsyncMock(return_value=_response(201, {"sid": "SMabc"}))
            )

            receipt = await provider.send_text(to="+918180094312", text="New report")

            instance.post.assert_called_once()
            url = instance.post.call_args[0][0]
            assert url.endswith("/Accounts/ACtest/Messages.json")
            payload = instance.post.call_args[1]["data"]
            assert payload == {
                "From": "whatsapp:+14155238886",
                "To": "whatsapp:+918180094312",
                "Body": "New report",
            }
            assert mock_client.call_args[1]["auth"] == ("ACtest", "test-auth-token")

        assert receipt.message_id == "SMabc"
        assert receipt.to == "whatsapp:+918180094312"

    @pytest.mark.asyncio
    async def test_send_media_payload(self) -> None:
        provider = self._make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client, post=AsyncMock(return_value=_response(201, {"sid": "MMabc"})))

            await provider.send_media("whatsapp:+919876543210", "https://media.test/a.jpg", caption="Resolved")

            payload = instance.post.call_args[1]["data"]
            assert payload["MediaUrl"] == "https://media.test/a.jpg"
            assert payload["Body"] == "Resolved"

    @pytest.mark.asyncio
    async def test_send_media_requires_url(self) -> None:
        with pytest.raises(WhatsAppError):
            await self._make_provider().send_media("+919876543210", "")

    @pytest.mark.asyncio
    async def test_transient_status_is_retried(self) -> None:
        provider = self._make_provider()

        with patch("httpx.AsyncClient") as mock_client, \
             patch("app.domain.services.whatsapp.twilio_provider.asyncio.sleep", new=AsyncMock()) as sleep:
            instance = _mock_client(
                mock_client,
                post=AsyncMock(side_effect=[_response(503), _response(429), _response(201, {"sid": "SM1"})]),
            )

            receipt = await provider.send_text("+919876543210", "hi")

        assert receipt.message_id == "SM1"
        assert instance.post.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self) -> None:
        provider = self._make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client, post=AsyncMock(return_value=_response(400)))

            with pytest.raises(WhatsAppError):
                await provider.send_text("+919876543210", "hi")

        assert instance.post.call_count == 1

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_retries(self) -> None:
        provider = self._make_provider()

        with patch("httpx.AsyncClient") as mock_client, \
             patch("app.domain.services.whatsapp.twilio_provider.asyncio.sleep", new=AsyncMock()):
            instance = _mock_client(mock_client, post=AsyncMock(side_effect=httpx.ReadTimeout("slow")))

            with pytest.raises(WhatsAppError) as exc_info:
                await provider.send_text("+919876543210", "hi")

        assert instance.post.call_count == 3
        assert exc_info.value.details["timeout"] is True

    @pytest.mark.asyncio
    async def test_open_circuit_blocks_sending(self) -> None:
        provider = self._make_provider(failure_threshold=1)

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client, post=AsyncMock(return_value=_response(400)))

            with pytest.raises(WhatsAppError):
                await provider.send_text("+919876543210", "first")
            with pytest.raises(CircuitBreakerOpenError):
                await provider.send_text("+919876543210", "second")

        assert instance.post.call_count == 1


class TestTwilioFetchMedia:
    @pytest.mark.asyncio
    async def test_fetch_follows_redirect_with_auth(self) -> None:
        provider = TwilioWhatsAppProvider(circuit_breaker=CircuitBreaker("test_media", CircuitBreakerConfig()))
        response = _response(200)
        response.content = b"\xff\xd8jpeg"
        response.headers = {"content-type": "image/jpeg; charset=binary"}

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, get=AsyncMock(return_value=response))

            media = await provider.fetch_media("https://api.twilio.com/media/ME1")

            kwargs = mock_client.call_args[1]
            assert kwargs["follow_redirects"] is True
            assert kwargs["auth"] == ("ACtest", "test-auth-token")

        assert media.content == b"\xff\xd8jpeg"
        assert media.content_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_fetch_failure(self) -> None:
        provider = TwilioWhatsAppProvider(circuit_breaker=CircuitBreaker("test_media", CircuitBreakerConfig()))

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, get=AsyncMock(return_value=_response(404)))
            with pytest.raises(MediaStorageError):
                await provider.fetch_media("https://api.twilio.com/media/ME404")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, get=AsyncMock(side_effect=httpx.ConnectError("down")))
            with pytest.raises(MediaStorageError):
                await provider.fetch_media("https://api.twilio.com/media/ME1")


# ============================================================================
# Provider Factory
# ============================================================================


class TestProviderFactory:
    @pytest.mark.unit
    def test_default_provider_is_twilio_singleton(self) -> None:
        reset_providers()
        first = get_whatsapp_provider()
        second = get_whatsapp_provider()

        assert isinstance(first, TwilioWhatsAppProvider)
        assert first is second
        assert first.provider_name == "twilio"

    @pytest.mark.unit
    def test_set_provider_overrides(self, mock_provider) -> None:
        set_provider(mock_provider)
        assert get_whatsapp_provider() is mock_provider
