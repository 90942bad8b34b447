"""
Database Models
"""
from app.db.models.conversation_session import ConversationSession
from app.db.models.division import Division, Officer, OfficerStatus
from app.db.models.report import Report, ReportStatus, ReportType
from app.db.models.report_link import ReportLink
from app.db.models.team_application import TeamApplication
from app.db.models.outbox_message import OutboxMessage
from app.db.models.webhook_event import WebhookEvent

__all__ = [
    "ConversationSession",
    "Division",
    "Officer",
    "OfficerStatus",
    "Report",
    "ReportStatus",
    "ReportType",
    "ReportLink",
    "TeamApplication",
    "OutboxMessage",
    "WebhookEvent",
]
