"""
Role hierarchy evaluator.

Position-based ranking (lower position = more senior, owner = 0) and
permission flags OR-ed across every role a member holds. All functions are
predicates or read queries; callers translate a False into a 403.
"""

from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core import cache
from app.models.contractor_member import ContractorMember
from app.models.contractor_role import ContractorMemberRole, ContractorRole
from app.models.user import User
from contractor_hub_shared.schemas.common import PermissionFlag, SiteRole


async def get_member_roles(
    session: AsyncSession, contractor_id: uuid.UUID, user_id: uuid.UUID
) -> list[ContractorRole]:
    """Roles ``user_id`` holds in ``contractor_id``."""
    snapshot = await cache.get_snapshot(session, contractor_id)
    if snapshot is not None:
        return cache.roles_from_snapshot(snapshot, contractor_id, user_id)

    result = await session.execute(
        select(ContractorRole)
        .join(ContractorMemberRole, ContractorMemberRole.role_id == ContractorRole.id)
        .where(
            ContractorRole.contractor_id == contractor_id,
            ContractorMemberRole.user_id == user_id,
        )
        .order_by(ContractorRole.position)
    )
    return list(result.scalars().all())


async def get_min_position(
    session: AsyncSession, contractor_id: uuid.UUID, user_id: uuid.UUID
) -> int | None:
    """Most senior position held, or None when the user holds no role."""
    roles = await get_member_roles(session, contractor_id, user_id)
    if not roles:
        return None
    return min(role.position for role in roles)


async def has_permission(
    session: AsyncSession,
    contractor_id: uuid.UUID,
    user_id: uuid.UUID,
    flag: PermissionFlag | str,
) -> bool:
    """Site admins always pass; everyone else needs ``flag`` on at least one role."""
    name = flag.value if isinstance(flag, PermissionFlag) else flag
    user = await session.get(User, user_id)
    if user is not None and user.role == SiteRole.ADMIN.value:
        return True

    roles = await get_member_roles(session, contractor_id, user_id)
    return any(getattr(role, name) for role in roles)


async def is_member(
    session: AsyncSession, contractor_id: uuid.UUID, user_id: uuid.UUID
) -> bool:
    if await get_member_roles(session, contractor_id, user_id):
        return True
    legacy = await session.get(ContractorMember, (contractor_id, user_id))
    return legacy is not None


async def outranks(
    session: AsyncSession,
    contractor_id: uuid.UUID,
    target_user_id: uuid.UUID,
    actor_user_id: uuid.UUID,
) -> bool:
    """True when the actor may NOT act on the target.

    The actor must be strictly more senior (lower minimum position) than the
    target. An actor without roles is always blocked; a target without roles
    can be acted on by any actor holding a role.
    """
    actor_min = await get_min_position(session, contractor_id, actor_user_id)
    if actor_min is None:
        return True
    target_min = await get_min_position(session, contractor_id, target_user_id)
    if target_min is None:
        return False
    return actor_min >= target_min


async def can_act_on(
    session: AsyncSession,
    contractor_id: uuid.UUID,
    target_user_id: uuid.UUID,
    actor_user_id: uuid.UUID,
) -> bool:
    return not await outranks(session, contractor_id, target_user_id, actor_user_id)


async def can_manage_role(
    session: AsyncSession,
    contractor_id: uuid.UUID,
    role_id: uuid.UUID,
    user_id: uuid.UUID,
) -> bool:
    """Holds ``manage_roles`` and is strictly senior to the role being managed."""
    role = await session.get(ContractorRole, role_id)
    if role is None or role.contractor_id != contractor_id:
        return False

    roles = await get_member_roles(session, contractor_id, user_id)
    if not roles:
        return False
    if not any(r.manage_roles for r in roles):
        return False
    return min(r.position for r in roles) < role.position


async def members_with_permission(
    session: AsyncSession, contractor_id: uuid.UUID, flag: PermissionFlag | str
) -> list[uuid.UUID]:
    """Distinct users holding at least one role with ``flag`` set."""
    name = flag.value if isinstance(flag, PermissionFlag) else flag
    column = getattr(ContractorRole, name)
    result = await session.execute(
        select(ContractorMemberRole.user_id)
        .join(ContractorRole, ContractorMemberRole.role_id == ContractorRole.id)
        .where(ContractorRole.contractor_id == contractor_id, column.is_(True))
        .distinct()
    )
    return list(result.scalars().all())


async def contractor_member_ids(
    session: AsyncSession, contractor_id: uuid.UUID
) -> list[uuid.UUID]:
    """Everyone holding a role in the contractor or a legacy membership row."""
    result = await session.execute(
        select(ContractorMemberRole.user_id)
        .join(ContractorRole, ContractorMemberRole.role_id == ContractorRole.id)
        .where(ContractorRole.contractor_id == contractor_id)
        .distinct()
    )
    ids = set(result.scalars().all())
    result = await session.execute(
        select(ContractorMember.user_id).where(ContractorMember.contractor_id == contractor_id)
    )
    ids.update(result.scalars().all())
    return list(ids)
