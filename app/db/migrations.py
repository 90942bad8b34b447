"""
מיגרציות DB - מקור אמת יחיד לסכמה.

נקרא מה-startup (main.py) ומסקריפט ה-seed. כל הפעולות idempotent
(בטוח להריץ מספר פעמים).
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from app.core.logging import get_logger
from app.db.database import Base

logger = get_logger(__name__)


async def create_tables(conn: AsyncConnection) -> None:
    """יצירת כל הטבלאות שעדיין לא קיימות"""
    # import לרישום כל המודלים ב-metadata
    import app.db.models  # noqa: F401

    await conn.run_sync(Base.metadata.create_all)


async def add_single_active_officer_index(conn: AsyncConnection) -> None:
    """
    לכל היותר קצין פעיל אחד למחלקה - אכיפה גם ברמת ה-DB.

    partial unique index קיים רק ב-PostgreSQL. ב-SQLite (בדיקות) האכיפה
    נשארת ב-OfficerService.
    """
    if conn.dialect.name != "postgresql":
        return
    await conn.execute(text("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_officers_one_active_per_division
        ON officers(division_id) WHERE is_active;
    """))


async def add_reports_lookup_indexes(conn: AsyncConnection) -> None:
    """אינדקסים לשאילתות ניהול - דיווחים ממתינים לפי מחלקה"""
    await conn.execute(text("""
        CREATE INDEX IF NOT EXISTS idx_reports_division_status
        ON reports(division_id, status);
    """))


async def run_all_migrations(conn: AsyncConnection) -> None:
    await create_tables(conn)
    await add_single_active_officer_index(conn)
    await add_reports_lookup_indexes(conn)
    logger.info("Migrations completed", extra_data={"dialect": conn.dialect.name})
