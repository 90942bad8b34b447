"""
ולידציה של קלט משתמשים.

- מספרי נייד הודיים וכתובות whatsapp:+91...
- שם / e-mail / Aadhaar לטופס ההצטרפות
- ניקוי טקסט חופשי (תיאור דיווח, כתובת, הערת סגירה) לפני שמירה
"""
import re
import unicodedata

WHATSAPP_PREFIX = "whatsapp:"


class TextLimits:
    """אורך מקסימלי לשדות טקסט חופשי, אחיד בין WhatsApp לדפי הצילום"""

    NAME = 100
    DESCRIPTION = 4000
    ADDRESS = 500
    RESOLUTION_NOTE = 2000
    JOIN_FIELD = 500
    JOIN_MOTIVATION = 2000
    USER_HANDLE = 50


class ValidationPatterns:
    # 10 ספרות שמתחילות ב-6-9, עם או בלי +91 / 91 / 0
    PHONE_INDIA = re.compile(r"^(?:\+91|91|0)?[6-9]\d{9}$")
    # E.164 - מספר ה-sandbox של Twilio (+1...) ומתנדבים מחו"ל
    PHONE_INTERNATIONAL = re.compile(r"^\+[1-9]\d{6,14}$")

    # אנגלית ודוונגרי (מראטהי/הינדי)
    NAME = re.compile(r"^[ऀ-ॿa-zA-Z\s\-\'\.]{2,100}$")
    EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    # 12 ספרות, מותר רווח בין קבוצות של 4
    AADHAAR = re.compile(r"^\d{4}\s?\d{4}\s?\d{4}$")

    SQL_INJECTION_PATTERNS = [
        re.compile(r"--\s*$|/\*|\*/", re.IGNORECASE),
        re.compile(r"['\"]\s*(OR|AND)\s+['\"]?\w*['\"]?\s*=", re.IGNORECASE),
        re.compile(r"\b(OR|AND)\s+(\d+\s*=\s*\d+|'[^']*'\s*=\s*'[^']*'|\"[^\"]*\"\s*=\s*\"[^\"]*\")", re.IGNORECASE),
        re.compile(r";\s*(SELECT|INSERT|UPDATE|DELETE|DROP|ALTER|CREATE|TRUNCATE)\b", re.IGNORECASE),
        re.compile(r"\bUNION\s+(ALL\s+)?SELECT\b", re.IGNORECASE),
    ]

    XSS_PATTERNS = [
        re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"\bon\w+=", re.IGNORECASE),
        re.compile(r"<iframe", re.IGNORECASE),
    ]


def strip_whatsapp_prefix(handle: str) -> str:
    """'whatsapp:+9198...' -> '+9198...'"""
    if handle and handle.lower().startswith(WHATSAPP_PREFIX):
        return handle[len(WHATSAPP_PREFIX):]
    return handle or ""


class PhoneNumberValidator:
    @staticmethod
    def validate(phone: str, allow_international: bool = True) -> bool:
        if not phone:
            return False
        cleaned = re.sub(r"[\s\-()]", "", strip_whatsapp_prefix(phone))
        if ValidationPatterns.PHONE_INDIA.match(cleaned):
            return True
        return bool(allow_international and ValidationPatterns.PHONE_INTERNATIONAL.match(cleaned))

    @staticmethod
    def normalize(phone: str) -> str:
        """E.164. מספר מקומי (10 ספרות, או 11 עם 0 מוביל) מקבל +91"""
        cleaned = re.sub(r"[^\d+]", "", strip_whatsapp_prefix(phone))
        if cleaned.startswith("+"):
            return cleaned
        if len(cleaned) == 11 and cleaned.startswith("0"):
            return "+91" + cleaned[1:]
        if len(cleaned) == 10:
            return "+91" + cleaned
        return "+" + cleaned

    @staticmethod
    def mask(phone: str) -> str:
        """ללוגים: whatsapp:+919876543210 -> whatsapp:+91987654****"""
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


def to_whatsapp_address(phone: str) -> str:
    """כתובת יעד בפורמט ש-Twilio מצפה לו: whatsapp:+<E.164>"""
    return f"{WHATSAPP_PREFIX}{PhoneNumberValidator.normalize(phone)}"


class TextSanitizer:
    @staticmethod
    def sanitize(text: str, max_length: int = 1000) -> str:
        """
        ניקוי לשמירה (לא HTML escape, זה בזמן תצוגה).

        NFC קודם: אותה מילה במראטהי מגיעה ממקלדות שונות בצורות
        קומפוזיציה שונות. ZWJ/ZWNJ נשמרים, הם חלק מהכתיב.
        """
        if not text:
            return ""
        sanitized = unicodedata.normalize("NFC", text.strip())
        sanitized = TextSanitizer.remove_control_characters(sanitized)
        sanitized = re.sub(r" +", " ", sanitized)
        return sanitized[:max_length]

    @staticmethod
    def check_for_injection(text: str) -> tuple[bool, str | None]:
        """(is_safe, detected_pattern)"""
        if not text:
            return True, None
        for pattern in ValidationPatterns.SQL_INJECTION_PATTERNS:
            if pattern.search(text):
                return False, "SQL injection pattern detected"
        for pattern in ValidationPatterns.XSS_PATTERNS:
            if pattern.search(text):
                return False, "XSS pattern detected"
        return True, None

    @staticmethod
    def remove_control_characters(text: str) -> str:
        """מסיר תווי בקרה (Cc) חוץ משורה חדשה וטאב"""
        if not text:
            return ""
        return "".join(
            char for char in text
            if char in "\n\r\t" or unicodedata.category(char) != "Cc"
        )


class NameValidator:
    MIN_LENGTH = 2
    MAX_LENGTH = TextLimits.NAME

    @staticmethod
    def validate(name: str) -> tuple[bool, str | None]:
        if not name:
            return False, "Name is required"
        name = name.strip()
        if len(name) < NameValidator.MIN_LENGTH:
            return False, f"Name too short (minimum {NameValidator.MIN_LENGTH} characters)"
        if len(name) > NameValidator.MAX_LENGTH:
            return False, f"Name too long (maximum {NameValidator.MAX_LENGTH} characters)"
        if not ValidationPatterns.NAME.match(name):
            return False, "Name contains invalid characters"
        return True, None


# Pydantic field validators

def phone_validator(v: str | None) -> str | None:
    if v is None:
        return None
    if not PhoneNumberValidator.validate(v):
        raise ValueError("Invalid phone number format")
    return PhoneNumberValidator.normalize(v)


def email_validator(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip().lower()
    if not ValidationPatterns.EMAIL.match(v):
        raise ValueError("Invalid email address")
    return v


def aadhaar_validator(v: str) -> str:
    """12 ספרות, נשמר ללא רווחים"""
    v = (v or "").strip()
    if not ValidationPatterns.AADHAAR.match(v):
        raise ValueError("Aadhaar number must contain exactly 12 digits")
    return v.replace(" ", "")


def name_validator(v: str | None) -> str | None:
    if v is None:
        return None
    is_valid, error = NameValidator.validate(v)
    if not is_valid:
        raise ValueError(error)
    return TextSanitizer.sanitize(v.strip(), max_length=NameValidator.MAX_LENGTH)


def sanitized_text_validator(v: str | None, max_length: int = 1000) -> str | None:
    if v is None:
        return None
    is_safe, pattern = TextSanitizer.check_for_injection(v)
    if not is_safe:
        raise ValueError(f"Invalid input: {pattern}")
    return TextSanitizer.sanitize(v, max_length)
