"""
Notification API endpoints (the authenticated user's own notifications).

GET    /api/v1/notifications                     - Paginated list + unread count
GET    /api/v1/notifications/unread-count        - Unread count
PATCH  /api/v1/notifications                     - Mark all as read
PATCH  /api/v1/notifications/{notification_id}   - Mark one as read
DELETE /api/v1/notifications                     - Delete some (notification_ids) or all
DELETE /api/v1/notifications/{notification_id}   - Delete one
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.database import get_session
from app.models.user import User
from app.services import notifications as notification_service
from contractor_hub_shared.schemas.notifications import (
    NotificationBulkDeleteRequest,
    NotificationBulkDeleteResponse,
    NotificationPage,
    NotificationReadRequest,
    UnreadCountResponse,
)

router = APIRouter()


@router.get("", response_model=NotificationPage)
async def list_notifications(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    action: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    unread_only: bool = False,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await notification_service.list_notifications(
        session,
        user.id,
        page=page,
        page_size=page_size,
        action=action,
        entity_id=entity_id,
        unread_only=unread_only,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    action: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    count = await notification_service.unread_count(session, user.id, action, entity_id)
    return UnreadCountResponse(unread_count=count)


@router.patch("")
async def mark_all_read(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    updated = await notification_service.mark_all_read(session, user.id)
    return {"updated": updated}


@router.patch("/{notification_id}")
async def mark_read(
    notification_id: uuid.UUID,
    body: NotificationReadRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Only ``{"read": true}`` is accepted; read is terminal."""
    notification = await notification_service.mark_read(session, user.id, notification_id)
    return {"id": str(notification.id), "read": notification.read}


@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await notification_service.delete_notification(session, user.id, notification_id)


@router.delete("", response_model=NotificationBulkDeleteResponse)
async def delete_notifications(
    body: Optional[NotificationBulkDeleteRequest] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    ids = body.notification_ids if body else None
    deleted = await notification_service.delete_notifications(session, user.id, ids)
    return NotificationBulkDeleteResponse(deleted=deleted)
