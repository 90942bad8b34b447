"""
Structured Logging

JSON לכל שורת לוג, עם correlation id. ה-id עוקב אחרי הודעת WhatsApp
נכנסת אחת (או task אחד של Celery) לאורך קריאת הסשן, שיוך המחלקה,
ה-pipeline של ההגשה והתשובות היוצאות.
"""
import json
import logging
import re
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

# מספר נייד הודי מלא שדלף ללוג: +91 ועשר ספרות -> ארבע האחרונות מוסתרות,
# באותו פורמט של PhoneNumberValidator.mask
_FULL_INDIAN_MOBILE_RE = re.compile(r"(\+91[6-9]\d{5})\d{4}(?!\d)")


def redact_phone_numbers(value: Any) -> Any:
    if isinstance(value, str):
        return _FULL_INDIAN_MOBILE_RE.sub(r"\1****", value)
    if isinstance(value, dict):
        return {k: redact_phone_numbers(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_phone_numbers(v) for v in value]
    return value


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_phone_numbers(record.getMessage()),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_entry["extra"] = redact_phone_numbers(record.extra_data)

        # Devanagari (שמות מחלקות, תיאורים במראטהית) נשאר קריא
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """Logger שמקבל extra_data={...} בכל רמה"""

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False, stacklevel=1,
             extra_data: dict[str, Any] | None = None):
        if extra_data:
            extra = dict(extra or {})
            extra["extra_data"] = extra_data
        super()._log(level, msg, args, exc_info=exc_info, extra=extra,
                     stack_info=stack_info, stacklevel=stacklevel + 1)


logging.setLoggerClass(StructuredLogger)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "traffic-buddy"
) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting for production
        app_name: Application name for log identification
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | {app_name} | %(levelname)-8s | %(name)s | [%(correlation_id)s] | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationIdFilter())

    root_logger.addHandler(handler)

    # ספריות צד שלישי רועשות
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


class CorrelationIdFilter(logging.Filter):
    """Filter that adds correlation_id to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return str(uuid.uuid4())[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current context"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Get current correlation ID, generating and persisting one if not set"""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    קובע correlation id לבלוק קוד ומחזיר את הקודם ביציאה.

    משמש ב-Celery tasks, שם אין middleware שמאפס את ה-ContextVar
    בין משימות שרצות באותו worker.
    """
    token = correlation_id_var.set(correlation_id or generate_correlation_id())
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance"""
    return logging.getLogger(name)  # type: ignore


def _log_outcome(logger: StructuredLogger, operation_name: str, started: float, error: Exception | None) -> None:
    duration = round(time.perf_counter() - started, 4)
    if error is None:
        logger.info(
            f"Completed {operation_name}",
            extra_data={
                "operation": operation_name,
                "status": "completed",
                "duration_seconds": duration
            }
        )
        return
    logger.error(
        f"Failed {operation_name}: {error}",
        extra_data={
            "operation": operation_name,
            "status": "failed",
            "duration_seconds": duration,
            "error": str(error)
        },
        exc_info=True
    )


def log_async_operation(operation_name: str):
    """Decorator for logging async operations with timing"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.perf_counter()
            logger.debug(
                f"Starting {operation_name}",
                extra_data={"operation": operation_name, "status": "started"}
            )
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log_outcome(logger, operation_name, started, e)
                raise
            _log_outcome(logger, operation_name, started, None)
            return result

        return wrapper
    return decorator


def log_sync_operation(operation_name: str):
    """Decorator for logging sync operations with timing (דחיסת תמונות, העלאה ל-S3)"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.perf_counter()
            logger.debug(
                f"Starting {operation_name}",
                extra_data={"operation": operation_name, "status": "started"}
            )
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_outcome(logger, operation_name, started, e)
                raise
            _log_outcome(logger, operation_name, started, None)
            return result

        return wrapper
    return decorator
