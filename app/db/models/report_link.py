"""
Report Link Model - קישור צילום חד-פעמי

נוצר כשהמשתמש בוחר סוג דיווח בתפריט. דף הצילום בודק את הקישור
ושולח את הדיווח; אחרי שליחה הקישור מסומן כמנוצל.
"""
import secrets

from sqlalchemy import Column, String, DateTime, Boolean

from app.db.database import Base, utcnow


def generate_link_id() -> str:
    return secrets.token_urlsafe(12)


class ReportLink(Base):
    """קישור לדף הצילום"""

    __tablename__ = "report_links"

    link_id = Column(String(32), primary_key=True, default=generate_link_id)
    user_handle = Column(String(50), nullable=False, index=True)
    report_type = Column(String(50), nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    used_at = Column(DateTime, nullable=True)
