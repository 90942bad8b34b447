"""
נתוני התחלה - מחלקות תנועה של פונה.

כל פוליגון הוא טבעת GeoJSON סגורה בסדר [lng, lat].
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models.division import Division, Officer

logger = get_logger(__name__)


DIGHI_ALANDI = {
    "name": "DIGHI ALANDI",
    "code": "DIGA",
    "boundary": {
        "type": "Polygon",
        "coordinates": [[
            [73.8556601, 18.6805209], [73.8553479, 18.6290241], [73.8435033, 18.57322],
            [73.8501904, 18.5741585], [73.8541463, 18.5820067], [73.8627294, 18.5837965],
            [73.8769773, 18.5715928], [73.881191, 18.5755842], [73.8854825, 18.5838826],
            [73.8966405, 18.5946212], [73.9261788, 18.5968977], [73.926596, 18.6020731],
            [73.9328736, 18.6034055], [73.9383668, 18.6099944], [73.9436727, 18.6131249],
            [73.9518036, 18.6235021], [73.9546746, 18.6299222], [73.9605905, 18.6368306],
            [73.942477, 18.733191], [73.939902, 18.72929], [73.937842, 18.725388],
            [73.93355, 18.720673], [73.929431, 18.719372], [73.922187, 18.7181826],
            [73.916213, 18.717584], [73.906943, 18.714983], [73.900248, 18.713844],
            [73.892836, 18.7115783], [73.886515, 18.709942], [73.87982, 18.703276],
            [73.8760137, 18.6968894], [73.8750159, 18.6950754], [73.8733208, 18.6920875],
            [73.8726234, 18.6905986], [73.8720065, 18.6882865], [73.871493, 18.686442],
            [73.866686, 18.684491], [73.8635425, 18.680052], [73.859101, 18.6794279],
            [73.8557536, 18.6815419], [73.8556601, 18.6805209],
        ]],
    },
    "officer": {
        "name": "PI NANDURKAR",
        "phone": "+918180094312",
        "post": "Police Inspector",
    },
}

DIVISIONS = [DIGHI_ALANDI]


async def seed_divisions(db: AsyncSession) -> int:
    """
    יצירת מחלקות שחסרות לפי code. מחלקה קיימת לא נדרסת.

    Returns:
        מספר המחלקות שנוצרו
    """
    created = 0
    for data in DIVISIONS:
        result = await db.execute(select(Division).where(Division.code == data["code"]))
        if result.scalar_one_or_none() is not None:
            continue

        division = Division(name=data["name"], code=data["code"], boundary=data["boundary"])
        db.add(division)
        await db.flush()

        officer_data = data.get("officer")
        if officer_data:
            officer = Officer(division_id=division.id, **officer_data)
            db.add(officer)
            await db.flush()
            division.active_officer_id = officer.id

        created += 1
        logger.info("Division seeded", extra_data={"code": data["code"], "division_id": division.id})

    await db.commit()
    return created
