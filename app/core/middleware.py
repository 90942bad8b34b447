"""
FastAPI Middleware

- Correlation ID לכל בקשה (X-Correlation-ID, או ה-idempotency token של Twilio)
- לוג בקשות עם מיסוך טלפונים ב-path וב-query
- Security headers
- Rate limiting לפי IP על ה-webhook ועל טפסי הדפים הציבוריים
- המרת AppException לתשובת JSON אחידה
"""
import re
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Sequence

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.exceptions import AppException, ErrorCode
from app.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

# מספרי טלפון ב-URL path וב-query (userId=whatsapp:+91...)
_PHONE_IN_PATH_RE = re.compile(r"(\+?\d{3})\d{4,7}(\d{3})")

# Twilio שולח אותו token גם ב-retry של אותו webhook
TWILIO_IDEMPOTENCY_HEADER = "I-Twilio-Idempotency-Token"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get("X-Correlation-ID") or request.headers.get(TWILIO_IDEMPOTENCY_HEADER)
        correlation_id = set_correlation_id(incoming)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


def _mask_pii(value: str) -> str:
    """מיסוך ספרות אמצעיות של מספר טלפון ב-****"""
    return _PHONE_IN_PATH_RE.sub(r"\1****\2", value)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and responses (with PII masking)"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        safe_path = _mask_pii(request.url.path)

        logger.info(
            f"Request started: {request.method} {safe_path}",
            extra_data={
                "method": request.method,
                "path": safe_path,
                "query_params": {key: _mask_pii(value) for key, value in request.query_params.items()},
                "client_host": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {safe_path}",
                extra_data={
                    "method": request.method,
                    "path": safe_path,
                    "duration_seconds": round(time.perf_counter() - start_time, 4),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        log_level = "info" if response.status_code < 400 else "warning"
        getattr(logger, log_level)(
            f"Request completed: {request.method} {safe_path}",
            extra_data={
                "method": request.method,
                "path": safe_path,
                "status_code": response.status_code,
                "duration_seconds": round(time.perf_counter() - start_time, 4),
            },
        )
        return response


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": _mask_pii(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": get_correlation_id()},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": _mask_pii(request.url.path),
        },
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "details": {},
            }
        },
        headers={"X-Correlation-ID": get_correlation_id()},
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    כותרות אבטחה לכל תשובה.

    nosniff תמיד. HSTS ו-CSP upgrade-insecure-requests רק מחוץ ל-DEBUG,
    כי בפיתוח מקומי עובדים ב-HTTP.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        if not self._debug:
            response.headers["Content-Security-Policy"] = "upgrade-insecure-requests"
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


@dataclass(frozen=True)
class RateLimitRule:
    """מגבלה לכל IP על בקשות ל-prefixes (ולנתיבים שמתחתיהם)"""

    name: str
    prefixes: tuple[str, ...]
    max_requests: int
    window_seconds: int
    methods: frozenset[str] = frozenset({"POST"})

    def matches(self, method: str, path: str) -> bool:
        if method not in self.methods:
            return False
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self.prefixes)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding window לפי (כלל, IP).

    חריגה מחזירה 429 עם Retry-After. Twilio מנסה שוב בעצמו, ודפי
    הצילום מציגים למשתמש הודעת נסה שוב.
    """

    def __init__(self, app: FastAPI, *, rules: Sequence[RateLimitRule]) -> None:
        super().__init__(app)
        self._rules = tuple(rules)
        self._requests: dict[tuple[str, str], list[float]] = defaultdict(list)

    def _cleanup_window(self, key: tuple[str, str], window_seconds: int, now: float) -> None:
        cutoff = now - window_seconds
        recent = [ts for ts in self._requests.get(key, []) if ts >= cutoff]
        if recent:
            self._requests[key] = recent
        else:
            self._requests.pop(key, None)

    def _match(self, request: Request) -> RateLimitRule | None:
        for rule in self._rules:
            if rule.matches(request.method, request.url.path):
                return rule
        return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rule = self._match(request)
        if rule is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        key = (rule.name, client_ip)
        now = time.time()
        self._cleanup_window(key, rule.window_seconds, now)

        if len(self._requests.get(key, [])) >= rule.max_requests:
            logger.warning(
                "Rate limit exceeded",
                extra_data={
                    "rule": rule.name,
                    "client_ip": client_ip,
                    "path": _mask_pii(request.url.path),
                    "limit": rule.max_requests,
                    "window_seconds": rule.window_seconds,
                },
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": {
                        "code": ErrorCode.RATE_LIMITED.value,
                        "message": "Too many requests. Please try again later.",
                        "details": {},
                    }
                },
                headers={
                    "Retry-After": str(rule.window_seconds),
                    "X-Correlation-ID": get_correlation_id(),
                },
            )

        self._requests[key].append(now)
        return await call_next(request)


def default_rate_limit_rules() -> list[RateLimitRule]:
    from app.core.config import settings

    return [
        RateLimitRule(
            name="webhook",
            prefixes=("/api/whatsapp/webhook",),
            max_requests=settings.WEBHOOK_RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.WEBHOOK_RATE_LIMIT_WINDOW_SECONDS,
        ),
        RateLimitRule(
            name="public_forms",
            prefixes=("/api/report", "/api/suggestion", "/api/join-team"),
            max_requests=settings.FORM_RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.FORM_RATE_LIMIT_WINDOW_SECONDS,
        ),
    ]


def setup_middleware(app: FastAPI) -> None:
    from app.core.config import settings

    # ב-Starlette ה-middleware האחרון שנוסף עוטף את כל השאר.
    # סדר עיבוד בקשה: SecurityHeaders -> CorrelationId -> RequestLogging -> RateLimit -> app
    app.add_middleware(RateLimitMiddleware, rules=default_rate_limit_rules())
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
