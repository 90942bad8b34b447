"""
שירות בדיקת בריאות - DB, Redis, Celery broker, הגדרות Twilio ואחסון.

- liveness (/health): התהליך חי, בלי תלויות
- readiness (/health/ready): כל התלויות; 503 אם אחת לא תקינה
"""
import asyncio
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from app.core.circuit_breaker import get_whatsapp_circuit_breaker
from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis
from app.db.database import AsyncSessionLocal
from app.domain.services.media_store import MediaStore

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# הודעות שגיאה בלי פרטי תשתית
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_CELERY = "error: celery_unavailable"
_ERROR_TWILIO_NOT_CONFIGURED = "error: twilio_not_configured"
_ERROR_TWILIO_CIRCUIT_OPEN = "error: twilio_circuit_open"
_WARN_STORAGE_NOT_CONFIGURED = "not_configured"

_CHECK_TIMEOUT_SECONDS = 5.0


async def _check_db() -> str:
    try:
        async with AsyncSessionLocal() as session:
            await asyncio.wait_for(session.execute(text("SELECT 1")), _CHECK_TIMEOUT_SECONDS)
        return _CHECK_OK
    except Exception as e:
        logger.warning("DB health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    try:
        client = await asyncio.wait_for(get_redis(), _CHECK_TIMEOUT_SECONDS)
        await asyncio.wait_for(client.ping(), _CHECK_TIMEOUT_SECONDS)
        return _CHECK_OK
    except Exception as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def _check_celery() -> str:
    """ping ל-broker של Celery (Redis)"""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await asyncio.wait_for(client.ping(), _CHECK_TIMEOUT_SECONDS)
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


def _check_twilio() -> str:
    """בלי קריאת רשת: פרטי חשבון קיימים וה-circuit breaker לא פתוח"""
    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_WHATSAPP_FROM):
        return _ERROR_TWILIO_NOT_CONFIGURED
    if get_whatsapp_circuit_breaker().is_open:
        return _ERROR_TWILIO_CIRCUIT_OPEN
    return _CHECK_OK


async def check_readiness() -> dict[str, Any]:
    """
    בדיקת מוכנות מקיפה.

    status: "healthy" אם כל התלויות "ok", אחרת "degraded".
    storage לא מוריד את הסטטוס - דיווחים בלי תמונה עדיין עובדים.
    """
    db_status, redis_status, celery_status = await asyncio.gather(
        _check_db(), _check_redis(), _check_celery()
    )
    checks = {
        "db": db_status,
        "redis": redis_status,
        "celery": celery_status,
        "twilio": _check_twilio(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {
        "status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED,
        **checks,
        "storage": _CHECK_OK if MediaStore.is_configured() else _WARN_STORAGE_NOT_CONFIGURED,
    }
