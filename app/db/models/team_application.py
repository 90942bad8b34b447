"""
Team Application Model - בקשת הצטרפות ל-Traffic Buddy

נשלחת מטופס ההצטרפות (join-team.html) עם session id שהונפק בצ'אט.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text

from app.db.database import Base, utcnow


class TeamApplication(Base):
    """בקשת הצטרפות מלאה"""

    __tablename__ = "team_applications"

    id = Column(Integer, primary_key=True, index=True)
    user_handle = Column(String(50), nullable=False, index=True)
    session_id = Column(String(100), unique=True, nullable=False)

    full_name = Column(String(150), nullable=False)
    division = Column(String(200), nullable=False)  # המחלקה המבוקשת (טקסט חופשי מהטופס)
    motivation = Column(Text, nullable=False)
    address = Column(String(500), nullable=False)
    phone = Column(String(20), nullable=False)
    email = Column(String(200), nullable=False)
    aadhaar_number = Column(String(12), nullable=False)
    aadhaar_document_url = Column(String(1000), nullable=False)

    status = Column(String(20), default="pending", nullable=False)
    created_at = Column(DateTime, default=utcnow)
    session_expires = Column(DateTime, nullable=False)
