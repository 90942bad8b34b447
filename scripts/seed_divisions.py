#!/usr/bin/env python3
"""
יצירת הסכמה וזריעת מחלקות התנועה (DIGHI ALANDI וכו').

הרצה (מתוך תיקיית הפרויקט):
    python scripts/seed_divisions.py

idempotent - מחלקה שכבר קיימת לפי code לא נדרסת.
"""
import argparse
import asyncio
import sys
from pathlib import Path

# הוספת תיקיית הפרויקט ל-path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.core.logging import get_logger, setup_logging  # noqa: E402
from app.db.database import AsyncSessionLocal, engine  # noqa: E402
from app.db.migrations import run_all_migrations  # noqa: E402
from app.db.seed import seed_divisions  # noqa: E402

logger = get_logger(__name__)


async def _run(skip_migrations: bool) -> int:
    if not skip_migrations:
        async with engine.begin() as conn:
            await run_all_migrations(conn)

    async with AsyncSessionLocal() as db:
        created = await seed_divisions(db)

    await engine.dispose()
    return created


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed traffic divisions")
    parser.add_argument(
        "--skip-migrations",
        action="store_true",
        help="לא להריץ create_all/אינדקסים לפני הזריעה",
    )
    args = parser.parse_args()

    setup_logging(level="INFO", json_format=False, app_name="seed")
    created = asyncio.run(_run(args.skip_migrations))
    logger.info("Seeding finished", extra_data={"created": created})
    print(f"Divisions created: {created}")


if __name__ == "__main__":
    main()
