"""
Report Model - דיווח תנועה של אזרח

דיווח נשמר רק אחרי שלפחות קצין אחד קיבל התראה (או כשמדיניות
PERSIST_UNNOTIFIED_REPORTS דלוקה). אחרי סטטוס סופי (Resolved/Rejected)
הדיווח לא משתנה, פרט להוספת קבלות התראה.
"""
import enum
import uuid

from sqlalchemy import (
    Column, Integer, String, DateTime, Float, Boolean, ForeignKey, JSON, Text, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from app.db.database import Base, utcnow


class ReportType(str, enum.Enum):
    TRAFFIC_VIOLATION = "Traffic Violation"
    TRAFFIC_CONGESTION = "Traffic Congestion"
    ACCIDENT = "Accident"
    ROAD_DAMAGE = "Road Damage"
    ILLEGAL_PARKING = "Illegal Parking"
    TRAFFIC_SIGNAL_ISSUE = "Traffic Signal Issue"
    SUGGESTION = "Suggestion"
    JOIN_REQUEST = "Join Request"
    GENERAL_REPORT = "General Report"


class ReportStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (ReportStatus.RESOLVED, ReportStatus.REJECTED)


def generate_public_id() -> str:
    """מזהה חיצוני לקישורי סגירה - לא חושף את ה-id הרץ"""
    return uuid.uuid4().hex


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Report(Base):
    """Traffic report record"""

    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(32), unique=True, nullable=False, default=generate_public_id, index=True)

    # Reporter
    reporter_handle = Column(String(50), nullable=False, index=True)
    reporter_name = Column(String(100), nullable=True)

    report_type = Column(
        SQLEnum(ReportType, name="report_type", values_callable=_enum_values),
        nullable=False,
    )
    description = Column(Text, nullable=True)
    media_url = Column(String(1000), nullable=True)

    # Location
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    address = Column(String(500), nullable=True)

    status = Column(
        SQLEnum(ReportStatus, name="report_status", values_callable=_enum_values),
        default=ReportStatus.PENDING,
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime, default=utcnow, index=True)

    # Resolution - רק במעבר לסטטוס סופי
    resolution_note = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolution_media_url = Column(String(1000), nullable=True)

    # Routing
    division_id = Column(Integer, ForeignKey("divisions.id"), nullable=True)
    division_name = Column(String(200), nullable=True)  # denormalized
    division_notified = Column(Boolean, default=False, nullable=False)
    # [{"officer_phone": "+91...", "timestamp": "2026-01-01T10:00:00"}]
    notification_receipts = Column(JSON, default=list)

    # מפתח idempotency - נגזר ממזהה ההודעה ב-gateway
    submission_key = Column(String(200), unique=True, nullable=True)

    # בקשות הצטרפות בצ'אט (Join Request)
    contact_name = Column(String(150), nullable=True)
    contact_email = Column(String(200), nullable=True)
    contact_phone = Column(String(20), nullable=True)

    division = relationship("Division")
