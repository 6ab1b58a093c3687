"""
Contractor service - role, member, invite, ownership and webhook mutations.

Every mutation authorizes through the role hierarchy evaluator, writes one
audit entry in the same session, and invalidates the role snapshot cache
when roles or assignments change.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import HTTPException
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core import cache
from app.models.contractor import Contractor
from app.models.contractor_invite import ContractorInvite
from app.models.contractor_member import ContractorMember
from app.models.contractor_role import ContractorMemberRole, ContractorRole
from app.models.user import User
from app.models.webhook import NotificationWebhook
from app.services import permissions
from app.services.audit import AuditRecorder, diff_fields
from app.services.dispatcher import NotificationDispatcher
from app.services.webhooks import resolve_webhook_actions
from contractor_hub_shared.schemas.common import PERMISSION_FLAGS, PermissionFlag
from contractor_hub_shared.schemas.contractors import (
    DEFAULT_ROLE_NAME,
    DEFAULT_ROLE_POSITION,
    OWNER_ROLE_NAME,
    OWNER_ROLE_POSITION,
    ContractorCreateRequest,
    RoleCreateRequest,
    RoleUpdateRequest,
    WebhookCreateRequest,
)

log = structlog.get_logger()


def _role_snapshot(role: ContractorRole) -> dict:
    return {
        "name": role.name,
        "position": role.position,
        **{flag: getattr(role, flag) for flag in PERMISSION_FLAGS},
    }


async def _require(
    session: AsyncSession, contractor: Contractor, user_id: uuid.UUID, flag: PermissionFlag
) -> None:
    if not await permissions.has_permission(session, contractor.id, user_id, flag):
        raise HTTPException(status_code=403, detail=f"Missing permission: {flag.value}")


async def _get_role(session: AsyncSession, contractor: Contractor, role_id: uuid.UUID) -> ContractorRole:
    role = await session.get(ContractorRole, role_id)
    if not role or role.contractor_id != contractor.id:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


async def _get_user(session: AsyncSession, user_id: uuid.UUID) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def _remove_membership(session: AsyncSession, contractor: Contractor, user_id: uuid.UUID) -> int:
    """Delete every role assignment in the contractor plus the legacy row. Returns assignments removed."""
    result = await session.execute(
        select(ContractorMemberRole)
        .join(ContractorRole, ContractorMemberRole.role_id == ContractorRole.id)
        .where(ContractorRole.contractor_id == contractor.id, ContractorMemberRole.user_id == user_id)
    )
    assignments = list(result.scalars().all())
    for assignment in assignments:
        await session.delete(assignment)

    legacy = await session.get(ContractorMember, (contractor.id, user_id))
    if legacy is not None:
        await session.delete(legacy)
    await session.flush()
    await cache.invalidate(contractor.id, session)
    return len(assignments)


# ---------------------------------------------------------------------------
# Contractors
# ---------------------------------------------------------------------------

async def create_contractor(
    session: AsyncSession, req: ContractorCreateRequest, owner_id: uuid.UUID
) -> Contractor:
    """Create a contractor with its owner and default roles; the creator holds both."""
    existing = await session.execute(
        select(Contractor).where(Contractor.spectrum_id == req.spectrum_id)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Spectrum id already taken")

    contractor = Contractor(
        spectrum_id=req.spectrum_id,
        name=req.name or req.spectrum_id,
        description=req.description,
    )
    session.add(contractor)
    await session.flush()

    owner_role = ContractorRole(
        contractor_id=contractor.id,
        name=OWNER_ROLE_NAME,
        position=OWNER_ROLE_POSITION,
        **{flag: True for flag in PERMISSION_FLAGS},
    )
    default_role = ContractorRole(
        contractor_id=contractor.id,
        name=DEFAULT_ROLE_NAME,
        position=DEFAULT_ROLE_POSITION,
    )
    session.add_all([owner_role, default_role])
    await session.flush()

    contractor.owner_role_id = owner_role.id
    contractor.default_role_id = default_role.id
    session.add(contractor)
    session.add_all(
        [
            ContractorMemberRole(user_id=owner_id, role_id=owner_role.id),
            ContractorMemberRole(user_id=owner_id, role_id=default_role.id),
        ]
    )
    await session.flush()

    await AuditRecorder(session).record(
        "org.created",
        owner_id,
        "contractor",
        contractor.id,
        {"spectrum_id": contractor.spectrum_id, "name": contractor.name},
        contractor_id=contractor.id,
    )
    log.info("contractor.created", contractor_id=str(contractor.id), spectrum_id=contractor.spectrum_id)
    return contractor


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

async def list_roles(session: AsyncSession, contractor: Contractor) -> list[ContractorRole]:
    result = await session.execute(
        select(ContractorRole)
        .where(ContractorRole.contractor_id == contractor.id)
        .order_by(ContractorRole.position)
    )
    return list(result.scalars().all())


async def create_role(
    session: AsyncSession, contractor: Contractor, actor_id: uuid.UUID, req: RoleCreateRequest
) -> ContractorRole:
    """New roles always go to the bottom of the hierarchy."""
    await _require(session, contractor, actor_id, PermissionFlag.MANAGE_ROLES)

    max_position = (
        await session.execute(
            select(func.max(ContractorRole.position)).where(ContractorRole.contractor_id == contractor.id)
        )
    ).scalar_one_or_none()

    role = ContractorRole(
        contractor_id=contractor.id,
        name=req.name,
        position=(max_position if max_position is not None else DEFAULT_ROLE_POSITION) + 1,
        **{flag: getattr(req, flag) for flag in PERMISSION_FLAGS},
    )
    session.add(role)
    await session.flush()
    await cache.invalidate(contractor.id, session)

    await AuditRecorder(session).record(
        "role.created", actor_id, "role", role.id, _role_snapshot(role), contractor_id=contractor.id
    )
    return role


async def update_role(
    session: AsyncSession,
    contractor: Contractor,
    role_id: uuid.UUID,
    actor_id: uuid.UUID,
    req: RoleUpdateRequest,
) -> ContractorRole:
    role = await _get_role(session, contractor, role_id)
    if not await permissions.can_manage_role(session, contractor.id, role_id, actor_id):
        raise HTTPException(status_code=403, detail="Cannot manage this role")

    actor_min = await permissions.get_min_position(session, contractor.id, actor_id)
    if actor_min is None or req.position <= actor_min:
        raise HTTPException(status_code=403, detail="Role must stay below your own position")

    before = _role_snapshot(role)
    role.name = req.name
    role.position = req.position
    for flag in PERMISSION_FLAGS:
        setattr(role, flag, getattr(req, flag))
    session.add(role)
    await session.flush()
    await cache.invalidate(contractor.id, session)

    await AuditRecorder(session).record(
        "role.updated",
        actor_id,
        "role",
        role.id,
        {"changes": diff_fields(before, _role_snapshot(role))},
        contractor_id=contractor.id,
    )
    return role


async def delete_role(
    session: AsyncSession, contractor: Contractor, role_id: uuid.UUID, actor_id: uuid.UUID
) -> None:
    """Default and owner roles can never be deleted."""
    role = await _get_role(session, contractor, role_id)
    if not await permissions.can_manage_role(session, contractor.id, role_id, actor_id):
        raise HTTPException(status_code=403, detail="Cannot manage this role")
    if role.id in (contractor.default_role_id, contractor.owner_role_id):
        raise HTTPException(status_code=403, detail="This role cannot be removed")

    snapshot = _role_snapshot(role)
    await session.execute(delete(ContractorMemberRole).where(ContractorMemberRole.role_id == role.id))
    await session.delete(role)
    await session.flush()
    await cache.invalidate(contractor.id, session)

    await AuditRecorder(session).record(
        "role.deleted", actor_id, "role", role_id, snapshot, contractor_id=contractor.id
    )


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

async def _check_member_target(
    session: AsyncSession, contractor: Contractor, target_id: uuid.UUID, actor_id: uuid.UUID
) -> None:
    await _get_user(session, target_id)
    if not await permissions.is_member(session, contractor.id, target_id):
        raise HTTPException(status_code=404, detail="User is not a member")
    if await permissions.outranks(session, contractor.id, target_id, actor_id):
        raise HTTPException(status_code=403, detail="You are outranked by this member")


async def assign_role(
    session: AsyncSession,
    contractor: Contractor,
    role_id: uuid.UUID,
    target_id: uuid.UUID,
    actor_id: uuid.UUID,
) -> None:
    role = await _get_role(session, contractor, role_id)
    await _check_member_target(session, contractor, target_id, actor_id)
    if not await permissions.can_manage_role(session, contractor.id, role.id, actor_id):
        raise HTTPException(status_code=403, detail="Cannot manage this role")
    if await session.get(ContractorMemberRole, (target_id, role.id)):
        raise HTTPException(status_code=409, detail="Role already assigned")

    session.add(ContractorMemberRole(user_id=target_id, role_id=role.id))
    await session.flush()
    await cache.invalidate(contractor.id, session)

    await AuditRecorder(session).record(
        "member.role_assigned",
        actor_id,
        "user",
        target_id,
        {"role_id": role.id, "role_name": role.name},
        contractor_id=contractor.id,
    )


async def remove_role(
    session: AsyncSession,
    contractor: Contractor,
    role_id: uuid.UUID,
    target_id: uuid.UUID,
    actor_id: uuid.UUID,
) -> None:
    role = await _get_role(session, contractor, role_id)
    await _check_member_target(session, contractor, target_id, actor_id)
    if not await permissions.can_manage_role(session, contractor.id, role.id, actor_id):
        raise HTTPException(status_code=403, detail="Cannot manage this role")
    if role.id == contractor.default_role_id:
        raise HTTPException(status_code=403, detail="This role cannot be removed")

    assignment = await session.get(ContractorMemberRole, (target_id, role.id))
    if assignment is None:
        raise HTTPException(status_code=404, detail="Role not assigned")
    await session.delete(assignment)
    await session.flush()
    await cache.invalidate(contractor.id, session)

    await AuditRecorder(session).record(
        "member.role_removed",
        actor_id,
        "user",
        target_id,
        {"role_id": role.id, "role_name": role.name},
        contractor_id=contractor.id,
    )


async def kick_member(
    session: AsyncSession, contractor: Contractor, target_id: uuid.UUID, actor_id: uuid.UUID
) -> None:
    await _require(session, contractor, actor_id, PermissionFlag.KICK_MEMBERS)
    await _check_member_target(session, contractor, target_id, actor_id)

    removed = await _remove_membership(session, contractor, target_id)
    await AuditRecorder(session).record(
        "member.removed",
        actor_id,
        "user",
        target_id,
        {"roles_removed": removed},
        contractor_id=contractor.id,
    )
    log.info("contractor.member_kicked", contractor_id=str(contractor.id), target=str(target_id))


async def leave(session: AsyncSession, contractor: Contractor, user_id: uuid.UUID) -> None:
    """Members leave voluntarily; the owner must transfer ownership first."""
    if not await permissions.is_member(session, contractor.id, user_id):
        raise HTTPException(status_code=404, detail="Not a member")
    if contractor.owner_role_id and await session.get(
        ContractorMemberRole, (user_id, contractor.owner_role_id)
    ):
        raise HTTPException(status_code=409, detail="You cannot leave a contractor you own")

    await _remove_membership(session, contractor, user_id)
    await AuditRecorder(session).record(
        "member.left", user_id, "user", user_id, contractor_id=contractor.id
    )


async def transfer_ownership(
    session: AsyncSession, contractor: Contractor, actor_id: uuid.UUID, new_owner_id: uuid.UUID
) -> None:
    owner_role_id = contractor.owner_role_id
    if owner_role_id is None or not await session.get(ContractorMemberRole, (actor_id, owner_role_id)):
        raise HTTPException(status_code=403, detail="Only the owner can transfer ownership")
    if new_owner_id == actor_id:
        raise HTTPException(status_code=409, detail="You already own this contractor")
    await _get_user(session, new_owner_id)
    if not await permissions.is_member(session, contractor.id, new_owner_id):
        raise HTTPException(status_code=404, detail="New owner must be a member")

    await session.execute(
        delete(ContractorMemberRole).where(
            ContractorMemberRole.user_id == actor_id,
            ContractorMemberRole.role_id == owner_role_id,
        )
    )
    session.add(ContractorMemberRole(user_id=new_owner_id, role_id=owner_role_id))
    # Former owner stays a member
    if contractor.default_role_id and not await session.get(
        ContractorMemberRole, (actor_id, contractor.default_role_id)
    ):
        session.add(ContractorMemberRole(user_id=actor_id, role_id=contractor.default_role_id))
    await session.flush()
    await cache.invalidate(contractor.id, session)

    await AuditRecorder(session).record(
        "org.ownership_transferred",
        actor_id,
        "contractor",
        contractor.id,
        {"previous_owner_id": actor_id, "new_owner_id": new_owner_id},
        contractor_id=contractor.id,
    )
    log.info("contractor.ownership_transferred", contractor_id=str(contractor.id), new_owner=str(new_owner_id))


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------

async def invite_user(
    session: AsyncSession,
    contractor: Contractor,
    invitee_id: uuid.UUID,
    actor_id: uuid.UUID,
    message: str = "",
    dispatcher: Optional[NotificationDispatcher] = None,
) -> ContractorInvite:
    await _require(session, contractor, actor_id, PermissionFlag.MANAGE_INVITES)
    await _get_user(session, invitee_id)
    if await permissions.is_member(session, contractor.id, invitee_id):
        raise HTTPException(status_code=409, detail="User is already a member")

    existing = await session.execute(
        select(ContractorInvite).where(
            ContractorInvite.contractor_id == contractor.id,
            ContractorInvite.user_id == invitee_id,
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="User already invited")

    invite = ContractorInvite(
        contractor_id=contractor.id, user_id=invitee_id, inviter_id=actor_id, message=message
    )
    session.add(invite)
    await session.flush()

    await AuditRecorder(session).record(
        "invite.created", actor_id, "invite", invite.id, {"user_id": invitee_id}, contractor_id=contractor.id
    )
    await (dispatcher or NotificationDispatcher(session)).contractor_invite(invite)
    return invite


async def _get_own_invite(session: AsyncSession, invite_id: uuid.UUID, user_id: uuid.UUID) -> ContractorInvite:
    invite = await session.get(ContractorInvite, invite_id)
    if not invite or invite.user_id != user_id:
        raise HTTPException(status_code=404, detail="Invite not found")
    return invite


async def accept_invite(session: AsyncSession, invite_id: uuid.UUID, user_id: uuid.UUID) -> Contractor:
    """Accepting grants the contractor's default role and consumes every invite to that contractor."""
    invite = await _get_own_invite(session, invite_id, user_id)
    contractor = await session.get(Contractor, invite.contractor_id)
    if contractor is None:
        raise HTTPException(status_code=404, detail="Contractor not found")
    if await permissions.is_member(session, contractor.id, user_id):
        raise HTTPException(status_code=409, detail="Already a member")

    await session.execute(
        delete(ContractorInvite).where(
            ContractorInvite.contractor_id == contractor.id,
            ContractorInvite.user_id == user_id,
        )
    )
    session.add(ContractorMemberRole(user_id=user_id, role_id=contractor.default_role_id))
    await session.flush()
    await cache.invalidate(contractor.id, session)

    await AuditRecorder(session).record(
        "invite.accepted", user_id, "invite", invite_id, contractor_id=contractor.id
    )
    return contractor


async def decline_invite(session: AsyncSession, invite_id: uuid.UUID, user_id: uuid.UUID) -> None:
    invite = await _get_own_invite(session, invite_id, user_id)
    contractor_id = invite.contractor_id
    await session.delete(invite)
    await session.flush()
    await AuditRecorder(session).record(
        "invite.declined", user_id, "invite", invite_id, contractor_id=contractor_id
    )


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

async def list_webhooks(
    session: AsyncSession, contractor: Contractor, actor_id: uuid.UUID
) -> list[NotificationWebhook]:
    await _require(session, contractor, actor_id, PermissionFlag.MANAGE_WEBHOOKS)
    result = await session.execute(
        select(NotificationWebhook)
        .where(NotificationWebhook.contractor_id == contractor.id)
        .order_by(NotificationWebhook.created_at)
    )
    return list(result.scalars().all())


async def create_webhook(
    session: AsyncSession, contractor: Contractor, actor_id: uuid.UUID, req: WebhookCreateRequest
) -> NotificationWebhook:
    await _require(session, contractor, actor_id, PermissionFlag.MANAGE_WEBHOOKS)
    actions = await resolve_webhook_actions(session, req.actions)

    webhook = NotificationWebhook(
        contractor_id=contractor.id, name=req.name, url=req.url, actions=actions
    )
    session.add(webhook)
    await session.flush()

    await AuditRecorder(session).record(
        "webhook.created",
        actor_id,
        "webhook",
        webhook.id,
        {"name": webhook.name, "actions": actions},
        contractor_id=contractor.id,
    )
    return webhook


async def delete_webhook(
    session: AsyncSession, contractor: Contractor, webhook_id: uuid.UUID, actor_id: uuid.UUID
) -> None:
    await _require(session, contractor, actor_id, PermissionFlag.MANAGE_WEBHOOKS)
    webhook = await session.get(NotificationWebhook, webhook_id)
    if not webhook or webhook.contractor_id != contractor.id:
        raise HTTPException(status_code=404, detail="Webhook not found")

    await session.delete(webhook)
    await session.flush()
    await AuditRecorder(session).record(
        "webhook.deleted", actor_id, "webhook", webhook_id, {"name": webhook.name}, contractor_id=contractor.id
    )
