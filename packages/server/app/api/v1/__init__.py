"""
API v1 Router

Contractor-scoped endpoints are prefixed with /contractors/{spectrum_id}.
"""

from fastapi import APIRouter
from . import admin, contractors, notifications, push

router = APIRouter()

router.include_router(contractors.router, prefix="/contractors", tags=["Contractors"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(push.router, prefix="/push", tags=["Push"])
router.include_router(admin.router, prefix="/admin", tags=["Admin"])


@router.get("/", tags=["API"])
async def api_root():
    """API root - returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/contractors",
            "/contractors/{spectrum_id}/roles",
            "/contractors/{spectrum_id}/webhooks",
            "/contractors/{spectrum_id}/audit-logs",
            "/notifications",
            "/push/subscriptions",
            "/push/preferences",
            "/admin/alerts",
            "/admin/audit-logs",
        ],
    }
