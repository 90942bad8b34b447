"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, SQLite in memory)
- Mock WhatsApp provider and media store
- Divisions and officers (DIGHI ALANDI + a synthetic square division)
"""
import os

# לפני ייבוא app - בלי אזהרות Twilio ובלי אימות חתימה כברירת מחדל
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-auth-token")
os.environ.setdefault("TWILIO_WHATSAPP_FROM", "+14155238886")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("SERVER_URL", "https://buddy.test")
# ה-middleware נבנה בייבוא - מגבלה גבוהה לכל הסוויטה
os.environ.setdefault("WEBHOOK_RATE_LIMIT_MAX_REQUESTS", "100000")
os.environ.setdefault("FORM_RATE_LIMIT_MAX_REQUESTS", "100000")

from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db.database import Base, get_db
from app.db.models.division import Division, Officer
from app.db.seed import DIGHI_ALANDI
from app.domain.services.geo_resolver import MemoryGeoCache
from app.domain.services.whatsapp import DeliveryReceipt, FetchedMedia, reset_providers, set_provider
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_HEADERS = {"X-Admin-API-Key": "test-admin-key"}

# נקודה בתוך DIGHI ALANDI
DIGHI_POINT = (18.65, 73.90)
# נקודה בתוך מחלקת הבדיקה (lng 73.70-73.80, lat 18.55-18.70)
TEST_WEST_POINT = (18.60, 73.75)
# בתוך תיבת אזור השירות אבל מחוץ לכל פוליגון
UNCOVERED_POINT = (18.46, 74.04)
# מחוץ לפונה
MUMBAI_POINT = (19.07, 72.87)

TEST_WEST = {
    "name": "TEST WEST",
    "code": "TWST",
    "boundary": {
        "type": "Polygon",
        "coordinates": [[
            [73.70, 18.55], [73.80, 18.55], [73.80, 18.70], [73.70, 18.70], [73.70, 18.55],
        ]],
    },
}


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    import app.db.models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import ASGITransport, AsyncClient

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Mock External Services
# ============================================================================

class FakeWhatsAppProvider:
    """ספק בזיכרון - רושם כל הודעה, ומספרים ב-failing_numbers נכשלים"""

    provider_name = "fake"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.media_sent: list[tuple[str, str, str | None]] = []
        self.failing_numbers: set[str] = set()
        self.fetch_media = AsyncMock(return_value=FetchedMedia(content=b"\xff\xd8jpeg", content_type="image/jpeg"))

    def normalize_phone(self, phone: str) -> str:
        return phone

    async def send_text(self, to: str, text: str) -> DeliveryReceipt:
        from app.core.exceptions import WhatsAppError

        if to in self.failing_numbers:
            raise WhatsAppError(message=f"delivery to {to} failed")
        self.sent.append((to, text))
        return DeliveryReceipt(to=to, message_id=f"SM{len(self.sent):04d}")

    async def send_media(self, to: str, media_url: str, caption: str | None = None) -> DeliveryReceipt:
        self.media_sent.append((to, media_url, caption))
        return DeliveryReceipt(to=to, message_id=f"MM{len(self.media_sent):04d}")

    def texts_to(self, to: str) -> list[str]:
        return [text for recipient, text in self.sent if recipient == to]


@pytest.fixture(autouse=True)
def mock_provider():
    """מחליף את ספק ה-WhatsApp בכל הבדיקות"""
    provider = FakeWhatsAppProvider()
    set_provider(provider)
    yield provider
    reset_providers()


class FakeMediaStore:
    def __init__(self) -> None:
        self.uploads: list[tuple[int, str, str]] = []
        self.fail = False

    async def upload(self, data: bytes, content_type: str, folder: str = "traffic_buddy") -> str:
        from app.core.exceptions import MediaStorageError

        if self.fail:
            raise MediaStorageError("upload failed")
        self.uploads.append((len(data), content_type, folder))
        return f"https://media.test/{folder}/{len(self.uploads)}.jpg"


@pytest.fixture(autouse=True)
def media_store():
    store = FakeMediaStore()
    with patch("app.domain.services.submission_pipeline.get_media_store", return_value=store), \
         patch("app.domain.services.report_service.get_media_store", return_value=store), \
         patch("app.domain.services.team_application_service.get_media_store", return_value=store):
        yield store


@pytest.fixture(autouse=True)
def geo_cache():
    """מטמון גאוגרפי נקי לכל בדיקה"""
    cache = MemoryGeoCache()
    with patch("app.domain.services.geo_resolver.get_geo_cache", return_value=cache):
        yield cache


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


# ============================================================================
# Divisions & Officers
# ============================================================================

@pytest.fixture
def division_factory(db_session: AsyncSession):
    """Factory for divisions with optional officers (הראשון פעיל אם active=True)"""
    async def _create(data: dict, officers: list[dict] | None = None) -> Division:
        division = Division(name=data["name"], code=data["code"], boundary=data["boundary"])
        db_session.add(division)
        await db_session.flush()
        for officer_data in officers or []:
            officer_data = dict(officer_data)
            officer_data.setdefault("is_active", True)
            officer_data.setdefault("status", "active" if officer_data["is_active"] else "relieved")
            officer = Officer(division_id=division.id, **officer_data)
            db_session.add(officer)
            await db_session.flush()
            if officer.is_active and division.active_officer_id is None:
                division.active_officer_id = officer.id
        await db_session.commit()
        await db_session.refresh(division)
        return division

    return _create


@pytest.fixture
async def dighi_division(division_factory) -> Division:
    return await division_factory(
        DIGHI_ALANDI,
        officers=[{"name": "PI NANDURKAR", "phone": "+918180094312", "post": "Police Inspector"}],
    )


@pytest.fixture
async def test_west_division(division_factory) -> Division:
    return await division_factory(
        TEST_WEST,
        officers=[{"name": "PSI KALE", "phone": "+919800000001"}],
    )
