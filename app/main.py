"""
Traffic Buddy - Main FastAPI Application
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.core.middleware import setup_exception_handlers, setup_middleware
from app.db.database import engine

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {
        "name": "Reports",
        "description": "דפי הצילום וההצעות, פרטי דיווח ועדכון סטטוס ע\"י המשטרה.",
    },
    {"name": "Team", "description": "טופס ההצטרפות לצוות המתנדבים."},
    {"name": "Divisions", "description": "מחלקות תנועה וקצינים פעילים (אדמין)."},
    {"name": "Webhooks", "description": "Webhook של Twilio WhatsApp."},
    {
        "name": "Admin Debug",
        "description": "circuit breakers, הודעות outbox כושלות ומצב שיחה של משתמשים.",
    },
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    from app.db.migrations import run_all_migrations

    # create_all + אינדקסים; idempotent
    async with engine.begin() as conn:
        await run_all_migrations(conn)
    logger.info("Database schema ready")

    yield

    logger.info("Shutting down application")
    from app.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "בוט WhatsApp לדיווחי תנועה לאזרחים: שיחה מונחית, שיוך גאוגרפי "
        "למחלקת תנועה והתראה לקצינים הפעילים."
    ),
    openapi_tags=_OPENAPI_TAGS,
    lifespan=lifespan,
)

setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

# Safe dev default to support local capture pages without opening CORS in production.
if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID", "X-Admin-API-Key"],
    )

app.include_router(api_router, prefix="/api")


@app.get(
    "/health",
    summary="בדיקת חיוּת (Liveness Probe)",
    description="התהליך חי ומגיב. לא בודק תלויות חיצוניות.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="בדיקת מוכנות (Readiness Probe)",
    description=(
        "DB, Redis, Celery broker והגדרות Twilio. "
        "200 עם status=healthy אם הכל תקין, אחרת 503 עם status=degraded."
    ),
    responses={
        200: {
            "description": "כל התלויות תקינות",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "db": "ok",
                        "redis": "ok",
                        "celery": "ok",
                        "twilio": "ok",
                        "storage": "ok",
                    }
                }
            },
        },
        503: {"description": "לפחות תלות אחת לא זמינה"},
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    from app.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
