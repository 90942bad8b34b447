"""
היררכיית חריגות של האפליקציה.

כל AppException נתפסת ב-middleware והופכת ל:
    {"error": {"code": "ERR_2001", "message": ..., "details": {...}}}
עם status_code של החריגה.
"""
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    # כלליות (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    RATE_LIMITED = "ERR_1006"

    # דיווחים וקישורי צילום (2xxx)
    REPORT_NOT_FOUND = "ERR_2001"
    REPORT_ALREADY_CLOSED = "ERR_2003"
    REPORT_LINK_INVALID = "ERR_2004"

    # מחלקות וקצינים (3xxx)
    DIVISION_NOT_FOUND = "ERR_3001"
    NO_ACTIVE_OFFICER = "ERR_3003"

    # הצטרפות לצוות (4xxx)
    JOIN_SESSION_INVALID = "ERR_4001"

    # שירותים חיצוניים (5xxx)
    WHATSAPP_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    MEDIA_STORAGE_ERROR = "ERR_5005"

    # מיקום (7xxx)
    INVALID_COORDINATES = "ERR_7001"
    RESOLUTION_UNAVAILABLE = "ERR_7002"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationException(AppException):
    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, 400, details)
        if field:
            self.details["field"] = field


class InvalidCoordinatesError(ValidationException):
    """lat/lng חסרים או לא מספריים"""

    def __init__(self, latitude: Any, longitude: Any):
        super().__init__(
            "Valid latitude and longitude are required",
            details={"latitude": latitude, "longitude": longitude},
        )
        self.error_code = ErrorCode.INVALID_COORDINATES


class NotFoundException(AppException):
    def __init__(self, resource: str, identifier: Any, error_code: ErrorCode = ErrorCode.NOT_FOUND):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)},
        )


# ─── דיווחים ────────────────────────────────────────────────────────────────

class ReportNotFoundError(NotFoundException):
    def __init__(self, report_id: str):
        super().__init__("Report", report_id, ErrorCode.REPORT_NOT_FOUND)
        self.details["report_id"] = report_id


class ReportClosedError(AppException):
    """Resolved/Rejected הם סופיים - שינוי נוסף מחזיר 409"""

    def __init__(self, report_id: str, current_status: str):
        super().__init__(
            message=f"Report {report_id} is already '{current_status}' and cannot be changed",
            error_code=ErrorCode.REPORT_ALREADY_CLOSED,
            status_code=409,
            details={"report_id": report_id, "current_status": current_status},
        )


class ReportLinkError(AppException):
    """קישור צילום שלא קיים (404), נוצל או פג תוקף (403)"""

    def __init__(self, reason: str, link_id: str, status_code: int):
        super().__init__(
            message=f"Report link {reason}",
            error_code=ErrorCode.REPORT_LINK_INVALID,
            status_code=status_code,
            details={"reason": reason, "link_id": link_id},
        )
        self.reason = reason


class ResolutionUnavailable(AppException):
    """
    מאגר המחלקות לא זמין ולכן אי אפשר לקבוע מחלקה לנקודה.

    שונה מ"מחוץ לתחום": המשתמש מקבל הודעת שגיאה והטיוטה נשמרת
    לניסיון חוזר.
    """

    def __init__(self, message: str = "Division registry unavailable", details: dict[str, Any] | None = None):
        super().__init__(message, ErrorCode.RESOLUTION_UNAVAILABLE, 503, details)


# ─── שירותים חיצוניים ───────────────────────────────────────────────────────

class ExternalServiceException(AppException):
    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, error_code, 503, details)
        self.details["service"] = service_name


class WhatsAppError(ExternalServiceException):
    """Twilio נכשל (HTTP לא 2xx, timeout או שגיאת רשת)"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("whatsapp", f"WhatsApp API error: {message}", ErrorCode.WHATSAPP_ERROR, details)

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500,
    ) -> "WhatsAppError":
        """
        Args:
            operation: messages / media
            response: httpx.Response
            max_response_chars: Twilio מחזיר JSON ארוך עם more_info - נחתך ל-log
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class MediaStorageError(ExternalServiceException):
    """הורדת מדיה מ-Twilio או העלאה ל-R2 נכשלה"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__("media_store", f"Media storage error: {message}", ErrorCode.MEDIA_STORAGE_ERROR, details)


class CircuitBreakerOpenError(ExternalServiceException):
    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name,
            f"{service_name} is temporarily unavailable (circuit breaker open)",
            details={"retry_after_seconds": retry_after_seconds},
        )
