"""
Site admin endpoints.

POST   /api/v1/admin/alerts              - Create an alert and notify its target audience
GET    /api/v1/admin/alerts              - Paginated alerts (target_type, active filters)
GET    /api/v1/admin/alerts/{alert_id}   - One alert
PATCH  /api/v1/admin/alerts/{alert_id}   - Edit an alert (no re-notification)
DELETE /api/v1/admin/alerts/{alert_id}   - Delete an alert
GET    /api/v1/admin/audit-logs          - Audit trail across every contractor
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import require_site_admin
from app.core.database import get_session
from app.models.user import User
from app.services import alerts as alert_service
from app.services import audit as audit_service
from app.services.dispatcher import NotificationDispatcher
from contractor_hub_shared.schemas.audit import AuditLogPage, AuditLogQuery
from contractor_hub_shared.schemas.notifications import (
    AdminAlertCreateRequest,
    AdminAlertPage,
    AdminAlertResponse,
    AdminAlertUpdateRequest,
    AlertTargetType,
)

log = structlog.get_logger()

router = APIRouter()


def get_dispatcher(session: AsyncSession = Depends(get_session)) -> NotificationDispatcher:
    return NotificationDispatcher(session)


@router.post("/alerts", response_model=AdminAlertResponse, status_code=201)
async def create_alert(
    body: AdminAlertCreateRequest,
    admin: User = Depends(require_site_admin),
    session: AsyncSession = Depends(get_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    alert = await alert_service.create_admin_alert(session, body, admin.id)
    await dispatcher.admin_alert(alert)
    return AdminAlertResponse.model_validate(alert)


@router.get("/alerts", response_model=AdminAlertPage)
async def list_alerts(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    target_type: Optional[AlertTargetType] = None,
    active: Optional[bool] = None,
    admin: User = Depends(require_site_admin),
    session: AsyncSession = Depends(get_session),
):
    return await alert_service.list_admin_alerts(
        session, page=page, page_size=page_size, target_type=target_type, active=active
    )


@router.get("/alerts/{alert_id}", response_model=AdminAlertResponse)
async def get_alert(
    alert_id: uuid.UUID,
    admin: User = Depends(require_site_admin),
    session: AsyncSession = Depends(get_session),
):
    return AdminAlertResponse.model_validate(await alert_service.get_admin_alert(session, alert_id))


@router.patch("/alerts/{alert_id}", response_model=AdminAlertResponse)
async def update_alert(
    alert_id: uuid.UUID,
    body: AdminAlertUpdateRequest,
    admin: User = Depends(require_site_admin),
    session: AsyncSession = Depends(get_session),
):
    alert = await alert_service.update_admin_alert(session, alert_id, body)
    return AdminAlertResponse.model_validate(alert)


@router.delete("/alerts/{alert_id}", status_code=204)
async def delete_alert(
    alert_id: uuid.UUID,
    admin: User = Depends(require_site_admin),
    session: AsyncSession = Depends(get_session),
):
    await alert_service.delete_admin_alert(session, alert_id)


@router.get("/audit-logs", response_model=AuditLogPage)
async def audit_logs(
    page: int = Query(1),
    page_size: int = Query(20),
    action: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
    subject_type: Optional[str] = None,
    subject_id: Optional[str] = None,
    contractor_id: Optional[uuid.UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    admin: User = Depends(require_site_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        query = AuditLogQuery(
            page=page,
            page_size=page_size,
            action=action,
            actor_id=actor_id,
            subject_type=subject_type,
            subject_id=subject_id,
            contractor_id=contractor_id,
            start_date=start_date,
            end_date=end_date,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=exc.errors(include_url=False, include_context=False, include_input=False),
        )
    return await audit_service.list_audit_logs(session, query)
