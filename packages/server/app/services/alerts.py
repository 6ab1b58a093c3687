"""Admin alerts: storage, management and recipient resolution by target type."""

from __future__ import annotations

import math
import uuid
from typing import Optional

import structlog
from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.admin_alert import AdminAlert
from app.models.contractor import Contractor
from app.models.contractor_member import ContractorMember
from app.models.contractor_role import ContractorMemberRole
from app.models.user import User
from app.services import permissions
from contractor_hub_shared.schemas.common import Pagination, SiteRole
from contractor_hub_shared.schemas.notifications import (
    AdminAlertCreateRequest,
    AdminAlertPage,
    AdminAlertResponse,
    AdminAlertUpdateRequest,
    AlertTargetType,
)

log = structlog.get_logger()


def _any_membership():
    """Users holding a role or a legacy membership row in any contractor."""
    role_holders = select(ContractorMemberRole.user_id)
    legacy = select(ContractorMember.user_id)
    return or_(User.id.in_(role_holders), User.id.in_(legacy))


async def users_for_alert_target(
    session: AsyncSession,
    target_type: AlertTargetType | str,
    target_contractor_id: Optional[uuid.UUID] = None,
) -> list[uuid.UUID]:
    """Recipient ids for an alert target. Banned users are never included."""
    try:
        target = AlertTargetType(target_type)
    except ValueError:
        return []

    stmt = select(User.id).where(User.banned.is_(False))
    if target is AlertTargetType.ALL_USERS:
        pass
    elif target is AlertTargetType.ORG_MEMBERS:
        stmt = stmt.where(_any_membership())
    elif target is AlertTargetType.ORG_OWNERS:
        owners = select(ContractorMemberRole.user_id).join(
            Contractor, Contractor.owner_role_id == ContractorMemberRole.role_id
        )
        stmt = stmt.where(User.id.in_(owners))
    elif target is AlertTargetType.ADMINS_ONLY:
        stmt = stmt.where(User.role == SiteRole.ADMIN.value)
    elif target is AlertTargetType.SPECIFIC_ORG:
        if target_contractor_id is None:
            return []
        member_ids = await permissions.contractor_member_ids(session, target_contractor_id)
        stmt = stmt.where(User.id.in_(member_ids))

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def _check_target(
    session: AsyncSession, target_type: AlertTargetType, target_contractor_id: Optional[uuid.UUID]
) -> None:
    if target_type is not AlertTargetType.SPECIFIC_ORG:
        return
    if target_contractor_id is None:
        raise HTTPException(status_code=422, detail="target_contractor_id is required for specific_org")
    if await session.get(Contractor, target_contractor_id) is None:
        raise HTTPException(status_code=404, detail="Contractor not found")


async def create_admin_alert(
    session: AsyncSession, req: AdminAlertCreateRequest, created_by: uuid.UUID
) -> AdminAlert:
    await _check_target(session, req.target_type, req.target_contractor_id)

    alert = AdminAlert(
        title=req.title,
        content=req.content,
        link=req.link,
        target_type=req.target_type.value,
        target_contractor_id=req.target_contractor_id,
        created_by=created_by,
    )
    session.add(alert)
    await session.flush()
    log.info("admin_alert.created", alert_id=str(alert.id), target=alert.target_type)
    return alert


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------

async def list_admin_alerts(
    session: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    target_type: Optional[AlertTargetType] = None,
    active: Optional[bool] = None,
) -> AdminAlertPage:
    """Newest-first page of alerts, optionally filtered by target type and active flag."""
    conditions = []
    if target_type is not None:
        conditions.append(AdminAlert.target_type == target_type.value)
    if active is not None:
        conditions.append(AdminAlert.active.is_(active))

    total = (
        await session.execute(select(func.count(AdminAlert.id)).where(*conditions))
    ).scalar_one()
    result = await session.execute(
        select(AdminAlert)
        .where(*conditions)
        .order_by(AdminAlert.created_at.desc(), AdminAlert.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return AdminAlertPage(
        data=[AdminAlertResponse.model_validate(a) for a in result.scalars().all()],
        pagination=Pagination(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size),
        ),
    )


async def get_admin_alert(session: AsyncSession, alert_id: uuid.UUID) -> AdminAlert:
    alert = await session.get(AdminAlert, alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Admin alert not found")
    return alert


async def update_admin_alert(
    session: AsyncSession, alert_id: uuid.UUID, req: AdminAlertUpdateRequest
) -> AdminAlert:
    """Apply the fields present in ``req``. Moving off specific_org drops the contractor."""
    alert = await get_admin_alert(session, alert_id)
    updates = req.model_dump(exclude_unset=True)

    target_type = updates.get("target_type") or AlertTargetType(alert.target_type)
    target_contractor_id = updates.get("target_contractor_id", alert.target_contractor_id)
    if target_type is not AlertTargetType.SPECIFIC_ORG:
        target_contractor_id = None
    await _check_target(session, target_type, target_contractor_id)

    for name in ("title", "content", "link", "active"):
        if name in updates and (updates[name] is not None or name == "link"):
            setattr(alert, name, updates[name])
    alert.target_type = target_type.value
    alert.target_contractor_id = target_contractor_id

    session.add(alert)
    await session.flush()
    log.info("admin_alert.updated", alert_id=str(alert.id), fields=sorted(updates))
    return alert


async def delete_admin_alert(session: AsyncSession, alert_id: uuid.UUID) -> None:
    """Remove the alert. Notifications already sent for it stay with their recipients."""
    alert = await get_admin_alert(session, alert_id)
    await session.delete(alert)
    await session.flush()
    log.info("admin_alert.deleted", alert_id=str(alert_id))
