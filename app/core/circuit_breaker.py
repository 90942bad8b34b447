"""
Circuit breaker לשירותים חיצוניים: Twilio ואחסון המדיה (R2).

כש-Twilio למטה אין טעם שכל הודעה נכנסת ו-task של outbox ימתינו ל-timeout
מלא. אחרי failure_threshold כשלונות רצופים ה-breaker נפתח ומחזיר
CircuitBreakerOpenError מיד, ואחרי timeout_seconds מעביר מספר קריאות
ניסיון (half-open) לפני שהוא נסגר שוב.
"""
import asyncio
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ParamSpec, TypeVar

from app.core.config import settings
from app.core.exceptions import CircuitBreakerOpenError
from app.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def _always(_: Exception) -> bool:
    return True


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2       # הצלחות ב-half-open עד סגירה
    timeout_seconds: float = 30.0    # open -> half_open
    half_open_max_calls: int = 3
    # אילו חריגות נספרות ככשל של השירות עצמו
    is_failure: Callable[[Exception], bool] = field(default=_always)


class CircuitBreaker:
    """Breaker יחיד לכל שירות, משותף בין בקשות HTTP ו-tasks באותו תהליך."""

    _instances: dict[str, "CircuitBreaker"] = {}
    _instances_lock = threading.Lock()

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._opened_at = 0.0
        # threading.Lock ולא asyncio.Lock - Celery מריץ כל task ב-event loop משלו
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls, service_name: str, config: CircuitBreakerConfig | None = None) -> "CircuitBreaker":
        with cls._instances_lock:
            if service_name not in cls._instances:
                cls._instances[service_name] = cls(service_name, config)
            return cls._instances[service_name]

    @classmethod
    def lookup(cls, service_name: str) -> "CircuitBreaker | None":
        with cls._instances_lock:
            return cls._instances.get(service_name)

    @classmethod
    def reset_all(cls) -> None:
        with cls._instances_lock:
            cls._instances.clear()

    @classmethod
    def snapshot_all(cls) -> dict[str, dict[str, Any]]:
        with cls._instances_lock:
            instances = list(cls._instances.values())
        return {cb.service_name: cb.snapshot() for cb in instances}

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.config.failure_threshold,
                "retry_after_seconds": round(self._retry_after_locked(), 1),
            }

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state == CircuitState.HALF_OPEN

    def _retry_after_locked(self) -> float:
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    def get_retry_after(self) -> float:
        with self._lock:
            return self._retry_after_locked()

    def _transition_to(self, new_state: CircuitState) -> None:
        """נקרא רק כשה-lock מוחזק"""
        old_state = self._state
        self._state = new_state
        self._success_count = 0
        self._half_open_calls = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker '{self.service_name}' {old_state.value} -> {new_state.value}",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value,
                "failure_count": self._failure_count,
            },
        )

    def reset(self) -> None:
        """סגירה ידנית (admin) - למשל אחרי שהוחלף TWILIO_AUTH_TOKEN"""
        with self._lock:
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0

    async def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._failure_count += 1
            logger.warning(
                f"Circuit breaker '{self.service_name}' recorded failure",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._failure_count,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None,
                },
            )
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def can_execute(self) -> bool:
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                if self._retry_after_locked() > 0:
                    return False
                self._transition_to(CircuitState.HALF_OPEN)
            if self._half_open_calls < self.config.half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    async def execute(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        """
        הרצת func דרך ה-breaker.

        Raises:
            CircuitBreakerOpenError: ה-breaker פתוח, func לא נקראה
        """
        if not await self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
        except Exception as e:
            if self.config.is_failure(e):
                await self.record_failure(e)
            else:
                # השירות ענה - השגיאה של הבקשה עצמה
                await self.record_success()
            raise

        await self.record_success()
        return result


def is_gateway_failure(error: Exception) -> bool:
    """
    4xx מ-Twilio (מספר לא תקין, נמען מחוץ לחלון 24 השעות) הם בעיה של
    ההודעה ולא של ה-gateway. 429 כן נספר - Twilio מגביל אותנו.
    """
    details = getattr(error, "details", None) or {}
    status_code = details.get("status_code")
    if isinstance(status_code, int) and 400 <= status_code < 500 and status_code != 429:
        return False
    return True


def get_whatsapp_circuit_breaker() -> CircuitBreaker:
    """Circuit breaker לשליחת הודעות דרך Twilio"""
    return CircuitBreaker.get_instance(
        "whatsapp",
        CircuitBreakerConfig(
            failure_threshold=settings.WHATSAPP_CIRCUIT_FAILURE_THRESHOLD,
            success_threshold=2,
            timeout_seconds=settings.WHATSAPP_CIRCUIT_TIMEOUT_SECONDS,
            is_failure=is_gateway_failure,
        ),
    )


def get_media_storage_circuit_breaker() -> CircuitBreaker:
    """Circuit breaker להעלאות ל-R2/S3"""
    return CircuitBreaker.get_instance(
        "media_storage",
        CircuitBreakerConfig(
            failure_threshold=3,
            success_threshold=1,
            timeout_seconds=60.0,
        ),
    )
