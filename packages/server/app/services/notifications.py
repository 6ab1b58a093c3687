"""
Notification model service.

Three tiers:
- NotificationObject: one row per (entity, action); recurrence refreshes the timestamp
- NotificationChange: one row per actor occurrence (append-only)
- Notification: one row per recipient, never two unread rows for the same object

Writers call them in the order object -> change -> notify.
"""

from __future__ import annotations

import math
import uuid
from typing import Iterable, Optional

import structlog
from fastapi import HTTPException
from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.base import utcnow
from app.models.notification import (
    Notification,
    NotificationActionType,
    NotificationChange,
    NotificationObject,
)
from contractor_hub_shared.schemas.common import Pagination
from contractor_hub_shared.schemas.notifications import (
    NOTIFICATION_ACTIONS,
    NotificationItem,
    NotificationPage,
)

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Action types
# ---------------------------------------------------------------------------

async def ensure_action_types(session: AsyncSession) -> int:
    """Insert any missing action types. Returns how many were added."""
    result = await session.execute(select(NotificationActionType.action))
    existing = set(result.scalars().all())
    added = 0
    for action, entity in NOTIFICATION_ACTIONS.items():
        if action not in existing:
            session.add(NotificationActionType(action=action, entity=entity))
            added += 1
    if added:
        await session.flush()
    return added


async def get_action_type(session: AsyncSession, name: str) -> NotificationActionType:
    result = await session.execute(
        select(NotificationActionType).where(NotificationActionType.action == name)
    )
    action_type = result.scalar_one_or_none()
    if not action_type:
        raise HTTPException(status_code=404, detail=f"Unknown notification action: {name}")
    return action_type


# ---------------------------------------------------------------------------
# Write side
# ---------------------------------------------------------------------------

async def get_or_create_notification_object(
    session: AsyncSession, entity_id: uuid.UUID, action_name: str
) -> tuple[NotificationObject, bool]:
    """Coalescing lookup. Returns (object, is_new)."""
    action_type = await get_action_type(session, action_name)
    result = await session.execute(
        select(NotificationObject).where(
            NotificationObject.entity_id == entity_id,
            NotificationObject.action_type_id == action_type.id,
        )
    )
    existing = result.scalar_one_or_none()
    if existing:
        existing.timestamp = utcnow()
        session.add(existing)
        await session.flush()
        return existing, False

    obj = NotificationObject(action_type_id=action_type.id, entity_id=entity_id)
    session.add(obj)
    await session.flush()
    log.debug("notification.object_created", object_id=str(obj.id), action=action_name)
    return obj, True


async def record_change(
    session: AsyncSession, notification_object_id: uuid.UUID, actor_id: uuid.UUID
) -> NotificationChange:
    change = NotificationChange(notification_object_id=notification_object_id, actor_id=actor_id)
    session.add(change)
    await session.flush()
    return change


async def notify(
    session: AsyncSession,
    notification_object_id: uuid.UUID,
    recipient_ids: Iterable[uuid.UUID],
) -> list[uuid.UUID]:
    """Create a row per recipient unless one is already unread. Returns the newly notified."""
    recipients = list(dict.fromkeys(recipient_ids))
    if not recipients:
        return []

    result = await session.execute(
        select(Notification.notifier_id).where(
            Notification.notification_object_id == notification_object_id,
            Notification.notifier_id.in_(recipients),
            Notification.read.is_(False),
        )
    )
    already_unread = set(result.scalars().all())

    created = []
    for user_id in recipients:
        if user_id in already_unread:
            continue
        session.add(Notification(notification_object_id=notification_object_id, notifier_id=user_id))
        created.append(user_id)
    if created:
        await session.flush()

    log.info(
        "notification.created",
        object_id=str(notification_object_id),
        created=len(created),
        skipped=len(already_unread),
    )
    return created


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def _filters(
    user_id: uuid.UUID,
    action: Optional[str],
    entity_id: Optional[uuid.UUID],
    unread_only: bool,
) -> list:
    conditions = [Notification.notifier_id == user_id]
    if action:
        conditions.append(NotificationActionType.action == action)
    if entity_id:
        conditions.append(NotificationObject.entity_id == entity_id)
    if unread_only:
        conditions.append(Notification.read.is_(False))
    return conditions


def _joined(stmt):
    return stmt.join(
        NotificationObject, Notification.notification_object_id == NotificationObject.id
    ).join(NotificationActionType, NotificationObject.action_type_id == NotificationActionType.id)


async def unread_count(
    session: AsyncSession,
    user_id: uuid.UUID,
    action: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
) -> int:
    stmt = _joined(select(func.count(Notification.id)).select_from(Notification)).where(
        *_filters(user_id, action, entity_id, unread_only=True)
    )
    return (await session.execute(stmt)).scalar_one()


async def list_notifications(
    session: AsyncSession,
    user_id: uuid.UUID,
    page: int = 1,
    page_size: int = 20,
    action: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    unread_only: bool = False,
) -> NotificationPage:
    """Newest-first page of the user's notifications with actors attached."""
    conditions = _filters(user_id, action, entity_id, unread_only)

    total = (
        await session.execute(
            _joined(select(func.count(Notification.id)).select_from(Notification)).where(*conditions)
        )
    ).scalar_one()

    result = await session.execute(
        _joined(select(Notification, NotificationObject, NotificationActionType))
        .where(*conditions)
        .order_by(NotificationObject.timestamp.desc(), Notification.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = result.all()

    actors: dict[uuid.UUID, list[uuid.UUID]] = {}
    object_ids = {obj.id for _, obj, _ in rows}
    if object_ids:
        changes = await session.execute(
            select(NotificationChange)
            .where(NotificationChange.notification_object_id.in_(object_ids))
            .order_by(NotificationChange.created_at)
        )
        for change in changes.scalars().all():
            ids = actors.setdefault(change.notification_object_id, [])
            if change.actor_id not in ids:
                ids.append(change.actor_id)

    items = [
        NotificationItem(
            id=notification.id,
            notification_object_id=obj.id,
            action=action_type.action,
            entity_type=action_type.entity,
            entity_id=obj.entity_id,
            timestamp=obj.timestamp,
            read=notification.read,
            actors=actors.get(obj.id, []),
        )
        for notification, obj, action_type in rows
    ]
    return NotificationPage(
        data=items,
        pagination=Pagination(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if page_size else 0,
        ),
        unread_count=await unread_count(session, user_id, action, entity_id),
    )


async def _get_owned(
    session: AsyncSession, user_id: uuid.UUID, notification_id: uuid.UUID
) -> Notification:
    notification = await session.get(Notification, notification_id)
    if not notification or notification.notifier_id != user_id:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


async def mark_read(
    session: AsyncSession, user_id: uuid.UUID, notification_id: uuid.UUID
) -> Notification:
    """Unread -> read. Already-read rows are left as they are."""
    notification = await _get_owned(session, user_id, notification_id)
    if not notification.read:
        notification.read = True
        session.add(notification)
        await session.flush()
    return notification


async def mark_all_read(session: AsyncSession, user_id: uuid.UUID) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.notifier_id == user_id, Notification.read.is_(False))
        .values(read=True)
    )
    log.info("notification.marked_all_read", user_id=str(user_id), count=result.rowcount)
    return result.rowcount


async def delete_notification(
    session: AsyncSession, user_id: uuid.UUID, notification_id: uuid.UUID
) -> None:
    notification = await _get_owned(session, user_id, notification_id)
    await session.delete(notification)
    await session.flush()


async def delete_notifications(
    session: AsyncSession,
    user_id: uuid.UUID,
    notification_ids: Optional[Iterable[uuid.UUID]] = None,
) -> int:
    """Delete the user's notifications: the given ids, or all of them when none are given.

    Ids that are missing or belong to someone else are skipped. Returns how
    many rows went away.
    """
    stmt = delete(Notification).where(Notification.notifier_id == user_id)
    ids = list(dict.fromkeys(notification_ids or []))
    if ids:
        stmt = stmt.where(Notification.id.in_(ids))
    result = await session.execute(stmt)
    log.info(
        "notification.bulk_deleted",
        user_id=str(user_id),
        requested=len(ids) or None,
        count=result.rowcount,
    )
    return result.rowcount
