"""
Domain Services
"""
from app.domain.services.division_registry import DivisionRegistry
from app.domain.services.geo_resolver import GeoResolver
from app.domain.services.officer_service import OfficerService
from app.domain.services.outbox_service import OutboxService
from app.domain.services.report_link_service import ReportLinkService
from app.domain.services.report_service import ReportService
from app.domain.services.submission_pipeline import SubmissionPipeline
from app.domain.services.team_application_service import TeamApplicationService

__all__ = [
    "DivisionRegistry",
    "GeoResolver",
    "OfficerService",
    "OutboxService",
    "ReportLinkService",
    "ReportService",
    "SubmissionPipeline",
    "TeamApplicationService",
]
