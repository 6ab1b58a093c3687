"""
Redis-backed role snapshot cache.

One JSON snapshot per contractor holds every role and every member-role
assignment. Snapshots are keyed by a per-contractor version counter; any role
or assignment mutation calls ``invalidate`` which bumps the counter, so stale
snapshots are never read again and simply expire.

A reader running while the mutation is still uncommitted can rebuild the old
state under the new version. ``invalidate`` therefore also records the
contractor on the session, and ``flush_invalidations`` bumps the version once
more after the commit (``get_session`` and ``get_session_context`` call it).

Disabled unless ``CH_ROLE_CACHE_ENABLED`` is set. Redis errors fall back to
the database.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Optional

import structlog
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.redis import get_redis
from app.models.contractor_role import ContractorMemberRole, ContractorRole
from contractor_hub_shared.schemas.common import PERMISSION_FLAGS

log = structlog.get_logger()
settings = get_settings()

KEY_PREFIX = "ch:roles:"
PENDING_KEY = "role_cache_pending"


def _version_key(contractor_id: uuid.UUID) -> str:
    return f"{KEY_PREFIX}{contractor_id}:version"


def _snapshot_key(contractor_id: uuid.UUID, version: int) -> str:
    return f"{KEY_PREFIX}{contractor_id}:v{version}"


async def _build_snapshot(session: AsyncSession, contractor_id: uuid.UUID) -> dict[str, Any]:
    result = await session.execute(
        select(ContractorRole).where(ContractorRole.contractor_id == contractor_id)
    )
    roles = result.scalars().all()
    role_ids = [role.id for role in roles]

    members: dict[str, list[str]] = {}
    if role_ids:
        result = await session.execute(
            select(ContractorMemberRole).where(ContractorMemberRole.role_id.in_(role_ids))
        )
        for row in result.scalars().all():
            members.setdefault(str(row.user_id), []).append(str(row.role_id))

    return {
        "roles": {
            str(role.id): {
                "name": role.name,
                "position": role.position,
                **{flag: getattr(role, flag) for flag in PERMISSION_FLAGS},
            }
            for role in roles
        },
        "members": members,
    }


async def get_snapshot(session: AsyncSession, contractor_id: uuid.UUID) -> dict[str, Any] | None:
    """Return the cached snapshot, building it on a miss. None when the cache is unusable."""
    if not settings.role_cache_enabled:
        return None
    try:
        redis = await get_redis()
        version = int(await redis.get(_version_key(contractor_id)) or 0)
        key = _snapshot_key(contractor_id, version)
        cached = await redis.get(key)
        if cached:
            return json.loads(cached)
        snapshot = await _build_snapshot(session, contractor_id)
        await redis.setex(key, settings.role_cache_ttl_seconds, json.dumps(snapshot))
        return snapshot
    except RedisError as exc:
        log.warning("role_cache.unavailable", contractor_id=str(contractor_id), error=str(exc))
        return None


def roles_from_snapshot(
    snapshot: dict[str, Any], contractor_id: uuid.UUID, user_id: uuid.UUID
) -> list[ContractorRole]:
    """Detached ContractorRole instances held by ``user_id`` according to the snapshot."""
    roles = []
    for role_id in snapshot["members"].get(str(user_id), []):
        data = snapshot["roles"].get(role_id)
        if data is None:
            continue
        roles.append(ContractorRole(id=uuid.UUID(role_id), contractor_id=contractor_id, **data))
    return roles


async def invalidate(contractor_id: uuid.UUID, session: Optional[AsyncSession] = None) -> None:
    """Bump the contractor's snapshot version, and again after ``session`` commits."""
    if not settings.role_cache_enabled:
        return
    if session is not None:
        session.info.setdefault(PENDING_KEY, set()).add(contractor_id)
    await _bump(contractor_id)


async def flush_invalidations(session: AsyncSession) -> None:
    """Bump every contractor invalidated in ``session``. Call after commit."""
    for contractor_id in session.info.pop(PENDING_KEY, set()):
        await _bump(contractor_id)


async def _bump(contractor_id: uuid.UUID) -> None:
    try:
        redis = await get_redis()
        await redis.incr(_version_key(contractor_id))
    except RedisError as exc:
        log.warning("role_cache.invalidate_failed", contractor_id=str(contractor_id), error=str(exc))
