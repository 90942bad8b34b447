"""
Fixtures ו-helpers לבדיקות תרחיש מקצה לקצה.

מספק:
- בונה טופס Twilio ופונקציית שליחה ל-webhook
- worker מדומה: process_report_submission נלכד ומורץ ידנית על ה-session של הבדיקה
- מסירת outbox ידנית (מה שה-beat עושה בפרודקשן)
- פונקציות אימות DB (סטטוס דיווח, outbox)
"""
import itertools
import re
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.outbox_message import MessageStatus, OutboxMessage
from app.db.models.report import Report
from app.workers import tasks

WEBHOOK_URL = "/api/whatsapp/webhook"

_sids = itertools.count(1)


# ============================================================================
# Twilio
# ============================================================================


def build_twilio_form(
    phone: str,
    body: str = "",
    *,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    media_url: Optional[str] = None,
) -> dict:
    """payload של Twilio (form-encoded) עם MessageSid ייחודי"""
    form = {
        "From": phone,
        "To": "whatsapp:+14155238886",
        "Body": body,
        "MessageSid": f"SMscenario{next(_sids):05d}",
        "NumMedia": "1" if media_url else "0",
    }
    if media_url:
        form["MediaUrl0"] = media_url
        form["MediaContentType0"] = "image/jpeg"
    if latitude is not None and longitude is not None:
        form["Latitude"] = str(latitude)
        form["Longitude"] = str(longitude)
    return form


async def send_wa(client, phone: str, body: str = "", **kwargs) -> None:
    response = await client.post(WEBHOOK_URL, data=build_twilio_form(phone, body, **kwargs))
    assert response.status_code == 200


def extract_query_param(text: str, name: str) -> str:
    """ערך פרמטר מתוך קישור שנשלח בהודעה"""
    match = re.search(rf"[?&]{name}=([^&\s]+)", text)
    assert match, f"{name} not found in message"
    return match.group(1)


# ============================================================================
# Worker
# ============================================================================


@pytest.fixture
def worker(db_session: AsyncSession):
    """
    Celery בלי broker.

    submissions: payloads ש-POST /api/report שלח ל-process_report_submission.
    ה-task עצמו רץ דרך run_submission על ה-session של הבדיקה.
    """
    submissions: list[dict] = []
    task = MagicMock()
    task.delay.side_effect = submissions.append

    with patch("app.api.routes.reports.process_report_submission", task), \
         patch("app.workers.tasks.get_task_session") as session_ctx, \
         patch.object(tasks.send_message, "delay"):
        session_ctx.return_value.__aenter__ = AsyncMock(return_value=db_session)
        session_ctx.return_value.__aexit__ = AsyncMock(return_value=None)

        class _Worker:
            queued = submissions

            @staticmethod
            async def run_submissions() -> list[dict]:
                results = [await tasks._submit_report(payload) for payload in submissions]
                submissions.clear()
                return results

            @staticmethod
            async def deliver_outbox() -> int:
                """שולח את כל ההודעות הממתינות, כמו process_outbox_messages"""
                result = await db_session.execute(
                    select(OutboxMessage.id)
                    .where(OutboxMessage.status == MessageStatus.PENDING)
                    .order_by(OutboxMessage.id)
                )
                sent = 0
                for message_id in result.scalars().all():
                    success, _ = await tasks._process_single_message(message_id)
                    sent += int(success)
                return sent

        yield _Worker()


# ============================================================================
# Assertions
# ============================================================================


async def assert_report_status(db_session: AsyncSession, public_id: str, expected: str) -> Report:
    result = await db_session.execute(
        select(Report).where(Report.public_id == public_id).execution_options(populate_existing=True)
    )
    report = result.scalar_one()
    assert report.status.value == expected, f"expected {expected}, got {report.status.value}"
    return report


async def assert_outbox_count(
    db_session: AsyncSession,
    recipient_id: str,
    expected: int,
    message_type: Optional[str] = None,
) -> None:
    query = select(func.count(OutboxMessage.id)).where(OutboxMessage.recipient_id == recipient_id)
    if message_type:
        query = query.where(OutboxMessage.message_type == message_type)
    count = (await db_session.execute(query)).scalar()
    assert count == expected, f"expected {expected} outbox messages, got {count}"
