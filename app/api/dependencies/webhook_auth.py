"""
אימות חתימת webhook נכנס מ-Twilio.

Twilio חותם כל בקשה בכותרת ``X-Twilio-Signature``:
base64(HMAC-SHA1(auth_token, url + concat(sorted(key + value))))

שימוש:
    @router.post("/webhook")
    async def whatsapp_webhook(
        ...,
        _: None = Depends(verify_twilio_signature),
    ):
        ...
"""
import base64
import hashlib
import hmac
from typing import Mapping

from fastapi import Header, HTTPException, Request, status

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def _public_url(request: Request) -> str:
    """ה-URL ש-Twilio קרא אליו. מאחורי proxy זה SERVER_URL ולא ה-host הפנימי"""
    if settings.SERVER_URL:
        url = f"{settings.SERVER_URL}{request.url.path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"
        return url
    return str(request.url)


async def verify_twilio_signature(
    request: Request,
    x_twilio_signature: str | None = Header(None),
) -> None:
    """
    אימות ``X-Twilio-Signature``.

    - ``TWILIO_VALIDATE_SIGNATURE`` כבוי: מדלג.
    - כותרת חסרה או חתימה שגויה: 403 Forbidden.
    """
    if not settings.TWILIO_VALIDATE_SIGNATURE:
        return

    if not x_twilio_signature:
        logger.warning("Twilio webhook request without X-Twilio-Signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing webhook signature")

    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    expected = compute_twilio_signature(settings.TWILIO_AUTH_TOKEN, _public_url(request), params)

    if not hmac.compare_digest(x_twilio_signature, expected):
        logger.warning("Twilio webhook request with invalid signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook signature")
