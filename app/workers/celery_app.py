"""
Celery - worker לעיבוד דיווחים ו-beat לשליחת outbox וניקוי.

    celery -A app.workers.celery_app worker --loglevel=info
    celery -A app.workers.celery_app beat --loglevel=info
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "traffic_buddy",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # crontab של הניקוי לפי שעון הודו, אחסון ב-UTC
    timezone="Asia/Kolkata",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    # תמונה מקודדת ב-base64 בתוך ה-payload - לא לשמור תוצאות כבדות
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_annotations={
        # העלאה ל-R2 + התראות לקצינים, כל אחת עם timeout משלה
        "app.workers.tasks.process_report_submission": {
            "soft_time_limit": settings.CELERY_TASK_TIME_LIMIT - 30,
        },
    },
)

celery_app.conf.beat_schedule = {
    "process-outbox": {
        "task": "app.workers.tasks.process_outbox_messages",
        "schedule": float(settings.OUTBOX_POLL_INTERVAL_SECONDS),
    },
    "cleanup-expired-report-links": {
        "task": "app.workers.tasks.cleanup_expired_report_links",
        "schedule": crontab(minute=15),
    },
    "cleanup-sent-outbox-messages": {
        "task": "app.workers.tasks.cleanup_old_messages",
        "schedule": crontab(hour=3, minute=0),
    },
    "cleanup-webhook-events": {
        "task": "app.workers.tasks.cleanup_old_webhook_events",
        "schedule": crontab(hour=3, minute=30),
    },
}
