"""
חיבור ל-DB וניהול sessions.

שני מסלולים:
- engine ברמת המודול עבור FastAPI (get_db)
- engine חד-פעמי לכל task ב-Celery (get_task_session), כי כל task
  רץ ב-event loop משלו ו-asyncpg לא מוכן לשתף חיבורים בין loops
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings


def _engine_options(url: str, *, pooled: bool) -> dict:
    options: dict = {"echo": settings.DB_ECHO, "pool_pre_ping": True}
    # SQLite (בדיקות, הרצה מקומית) לא מקבל פרמטרים של QueuePool
    if pooled and not url.startswith("sqlite"):
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
    return options


def build_engine(url: str | None = None, *, pooled: bool = True) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    return create_async_engine(url, **_engine_options(url, pooled=pooled))


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: handlers קוראים שדות של דיווח אחרי commit
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
AsyncSessionLocal = build_sessionmaker(engine)

Base = declarative_base()


def utcnow() -> datetime:
    """UTC naive - כל עמודות ה-DateTime בסכמה נשמרות ב-UTC ללא tzinfo"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency"""
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def get_task_session() -> AsyncIterator[AsyncSession]:
    """Session ל-task של Celery על engine שנוצר ונסגר בתוך ה-loop הנוכחי"""
    task_engine = build_engine()
    try:
        async with build_sessionmaker(task_engine)() as session:
            yield session
    finally:
        await task_engine.dispose()
