"""
מפתח API לאדמין - ניהול דיווחים, מחלקות וקצינים, debug.

    router = APIRouter(dependencies=[Depends(require_admin_api_key)])
"""
import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

ADMIN_API_KEY_HEADER = "X-Admin-API-Key"

_api_key_header = APIKeyHeader(name=ADMIN_API_KEY_HEADER, auto_error=False)


async def require_admin_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    401 כשהמפתח חסר, 403 כשהוא שגוי.
    ADMIN_API_KEY ריק בסביבה = אין גישת אדמין בכלל (403).
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("Admin endpoint rejected, ADMIN_API_KEY not configured")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access is disabled",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {ADMIN_API_KEY_HEADER} header",
        )

    if not hmac.compare_digest(api_key.encode(), settings.ADMIN_API_KEY.encode()):
        logger.warning("Admin endpoint rejected, wrong API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key",
        )
