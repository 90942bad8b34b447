"""
Geo Resolver - מיפוי נקודה (lat, lng) למחלקה האחראית.

סדר ההחלטה:
1. קואורדינטות לא תקינות -> INVALID (לא "מחוץ לתחום")
2. מטמון לפי מפתח של 6 ספרות אחרי הנקודה
3. תיבה תוחמת של אזור השירות -> OUTSIDE
4. ray casting מול כל מחלקה לפי סדר ה-registry, הראשונה מנצחת
5. אין התאמה -> OUTSIDE

כשל במאגר המחלקות זורק ResolutionUnavailable ולא מתפרש כ"מחוץ לתחום".
"""
import json
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ResolutionUnavailable
from app.core.logging import get_logger
from app.core.redis_client import get_redis
from app.db.models.division import Division
from app.domain.services.division_registry import DivisionRegistry

logger = get_logger(__name__)


class ResolutionOutcome(str, Enum):
    FOUND = "found"
    OUTSIDE = "outside"
    INVALID = "invalid"


@dataclass
class Resolution:
    outcome: ResolutionOutcome
    division: Division | None = None
    from_cache: bool = False

    @property
    def found(self) -> bool:
        return self.outcome == ResolutionOutcome.FOUND


def parse_coordinate(value: Any) -> float | None:
    """מספר סופי או None. מקבל מחרוזות כמו שמגיעות מ-Twilio ומטפסים"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def point_in_polygon(x: float, y: float, ring: list) -> bool:
    """
    Ray casting מול טבעת [x, y] (x=lng, y=lat).

    קצה נספר רק כש-(yi > y) != (yj > y), לכן קצוות אופקיים לא נחצים
    לעולם. בריבוע מקביל לצירים הפינה המינימלית נחשבת בפנים ושלוש
    האחרות בחוץ.
    """
    inside = False
    n = len(ring)
    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def is_valid_ring(ring: Any) -> bool:
    """לפחות 3 קודקודים, כל אחד עם שני מספרים סופיים"""
    if not isinstance(ring, list) or len(ring) < 3:
        return False
    for vertex in ring:
        if not isinstance(vertex, (list, tuple)) or len(vertex) < 2:
            return False
        for value in vertex[:2]:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                return False
    return True


def is_within_service_area(lat: float, lng: float) -> bool:
    return (
        settings.SERVICE_AREA_MIN_LAT <= lat <= settings.SERVICE_AREA_MAX_LAT
        and settings.SERVICE_AREA_MIN_LNG <= lng <= settings.SERVICE_AREA_MAX_LNG
    )


def cache_key(lat: float, lng: float) -> str:
    return f"{lat:.6f},{lng:.6f}"


# ---------------------------------------------------------------------------
# מטמון
# ---------------------------------------------------------------------------

class GeoCache(ABC):
    """מטמון נגזר בלבד - אף פעם לא מקור אמת"""

    @abstractmethod
    async def get(self, key: str) -> dict | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        ...


class MemoryGeoCache(GeoCache):
    """
    מפה בזיכרון התהליך עם TTL (שעון מונוטוני). last-writer-wins.

    רשומות שפג תוקפן נמחקות בסריקה על set, לכל היותר פעם ב-sweep_interval
    שניות.
    """

    def __init__(self, clock=time.monotonic, sweep_interval: float = 3600.0):
        self._entries: dict[str, tuple[float, dict]] = {}
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    async def get(self, key: str) -> dict | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        self._entries[key] = (now + ttl_seconds, value)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self._sweep_interval
        if expired:
            logger.debug("Geo cache swept", extra_data={"expired": len(expired), "remaining": len(self._entries)})

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisGeoCache(GeoCache):
    """מטמון משותף בין workers. כשל Redis = החטאה (לא שגיאה)"""

    KEY_PREFIX = "geo:division:"

    async def get(self, key: str) -> dict | None:
        try:
            client = await get_redis()
            raw = await client.get(self.KEY_PREFIX + key)
        except (RedisError, OSError) as e:
            logger.warning("Geo cache read failed", extra_data={"error": str(e)})
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    async def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        try:
            client = await get_redis()
            await client.setex(self.KEY_PREFIX + key, ttl_seconds, json.dumps(value))
        except (RedisError, OSError) as e:
            logger.warning("Geo cache write failed", extra_data={"error": str(e)})


_memory_cache = MemoryGeoCache()


def get_geo_cache() -> GeoCache:
    if settings.GEO_CACHE_BACKEND == "redis":
        return RedisGeoCache()
    return _memory_cache


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class GeoResolver:
    """מיפוי נקודה למחלקה"""

    def __init__(
        self,
        db: AsyncSession,
        cache: GeoCache | None = None,
        registry: DivisionRegistry | None = None,
    ):
        self.db = db
        self.cache = cache if cache is not None else get_geo_cache()
        self.registry = registry or DivisionRegistry(db)

    async def resolve_division(self, lat: Any, lng: Any) -> Division | None:
        """החוזה הדק: מחלקה או None (גם לקלט לא תקין)"""
        resolution = await self.resolve(lat, lng)
        return resolution.division

    async def resolve(self, lat: Any, lng: Any) -> Resolution:
        latitude = parse_coordinate(lat)
        longitude = parse_coordinate(lng)
        if latitude is None or longitude is None:
            return Resolution(ResolutionOutcome.INVALID)

        key = cache_key(latitude, longitude)
        ttl = settings.GEO_CACHE_TTL_SECONDS

        cached = await self.cache.get(key)
        if cached is not None:
            if cached.get("outside"):
                return Resolution(ResolutionOutcome.OUTSIDE, from_cache=True)
            division_id = cached.get("division_id")
            if division_id is not None:
                division = await self._load_division(division_id)
                if division is not None:
                    return Resolution(ResolutionOutcome.FOUND, division, from_cache=True)
                logger.info(
                    "Cached division no longer exists, recomputing",
                    extra_data={"key": key, "division_id": division_id},
                )

        if not is_within_service_area(latitude, longitude):
            await self.cache.set(key, {"outside": True}, ttl)
            return Resolution(ResolutionOutcome.OUTSIDE)

        division = await self._match_division(latitude, longitude)
        if division is None:
            await self.cache.set(key, {"outside": True}, ttl)
            return Resolution(ResolutionOutcome.OUTSIDE)

        await self.cache.set(key, {"division_id": division.id, "name": division.name}, ttl)
        return Resolution(ResolutionOutcome.FOUND, division)

    async def _load_division(self, division_id: int) -> Division | None:
        try:
            return await self.registry.find_by_id(division_id)
        except SQLAlchemyError as e:
            raise ResolutionUnavailable(details={"error": str(e)}) from e

    async def _match_division(self, lat: float, lng: float) -> Division | None:
        try:
            divisions = await self.registry.find_all()
        except SQLAlchemyError as e:
            raise ResolutionUnavailable(details={"error": str(e)}) from e

        for division in divisions:
            ring = division.outer_ring
            if not is_valid_ring(ring):
                logger.warning(
                    "Skipping division with malformed boundary",
                    extra_data={"division_id": division.id, "code": division.code},
                )
                continue
            if point_in_polygon(lng, lat, ring):
                return division
        return None
