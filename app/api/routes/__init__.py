"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.admin_debug import router as admin_debug_router
from app.api.routes.divisions import router as divisions_router
from app.api.routes.reports import router as reports_router
from app.api.routes.team import router as team_router
from app.api.webhooks.whatsapp import router as whatsapp_router

router = APIRouter()

# דפי הצילום, ההצעות והסגירה
router.include_router(reports_router, tags=["Reports"])
router.include_router(team_router, tags=["Team"])
router.include_router(divisions_router, prefix="/divisions", tags=["Divisions"])
router.include_router(whatsapp_router, prefix="/whatsapp", tags=["Webhooks"])
router.include_router(admin_debug_router, prefix="/admin/debug", tags=["Admin Debug"])
