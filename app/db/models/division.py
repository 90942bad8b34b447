"""
Division Model - מחלקת תנועה גאוגרפית

לכל מחלקה פוליגון GeoJSON (טבעת חיצונית בלבד) ורשימת קצינים שרק
מתווספת אליה. הקצין הפעיל מסומן במפורש ב-active_officer_id; קצין
שהוחלף נשאר ברשימה עם status=relieved.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, JSON
from sqlalchemy.orm import relationship

from app.db.database import Base, utcnow


class OfficerStatus(str, enum.Enum):
    ACTIVE = "active"
    RELIEVED = "relieved"


class Division(Base):
    """מחלקה - בעלת שטח שיפוט"""

    __tablename__ = "divisions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    code = Column(String(20), unique=True, nullable=False, index=True)

    # {"type": "Polygon", "coordinates": [[[lng, lat], ...]]}
    boundary = Column(JSON, nullable=True)

    # ללא FK - נמנע ממעגל divisions <-> officers; נשמר בעקביות ע"י OfficerService
    active_officer_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # סדר הרשימה = סדר ההוספה
    officers = relationship(
        "Officer",
        back_populates="division",
        order_by="Officer.id",
        lazy="selectin",
    )

    @property
    def outer_ring(self) -> list | None:
        """הטבעת החיצונית של הפוליגון, או None אם הגבול חסר/לא תקין"""
        boundary = self.boundary
        if not isinstance(boundary, dict):
            return None
        coordinates = boundary.get("coordinates")
        if not isinstance(coordinates, list) or not coordinates:
            return None
        ring = coordinates[0]
        return ring if isinstance(ring, list) else None


class Officer(Base):
    """קצין במחלקה - רשומה לא נמחקת"""

    __tablename__ = "officers"

    id = Column(Integer, primary_key=True, index=True)
    division_id = Column(Integer, ForeignKey("divisions.id"), nullable=False, index=True)

    name = Column(String(150), nullable=False)
    phone = Column(String(20), nullable=False)
    alternate_phone = Column(String(20), nullable=True)
    email = Column(String(200), nullable=True)
    post = Column(String(100), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    status = Column(String(20), default=OfficerStatus.ACTIVE.value, nullable=False)
    joined_at = Column(DateTime, default=utcnow)
    relieved_at = Column(DateTime, nullable=True)

    division = relationship("Division", back_populates="officers")
