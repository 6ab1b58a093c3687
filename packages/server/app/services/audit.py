"""
Audit recorder and audit log read API.

Entries are appended in the caller's session so they commit (or roll back)
together with the mutation they describe.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.audit_log import AuditLog
from contractor_hub_shared.schemas.audit import AuditLogEntry, AuditLogPage, AuditLogQuery

log = structlog.get_logger()


def diff_fields(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
    """``{field: {"before": x, "after": y}}`` for every key whose value changed."""
    changes = {}
    for key in sorted(set(before) | set(after)):
        old, new = before.get(key), after.get(key)
        if old != new:
            changes[key] = {"before": old, "after": new}
    return changes


class AuditRecorder:
    """Appends one audit row per privileged mutation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        action: str,
        actor_id: Optional[uuid.UUID],
        subject_type: str,
        subject_id: uuid.UUID | str,
        metadata: Optional[dict[str, Any]] = None,
        contractor_id: Optional[uuid.UUID] = None,
    ) -> AuditLog:
        entry = AuditLog(
            action=action,
            actor_id=actor_id,
            subject_type=subject_type,
            subject_id=str(subject_id),
            contractor_id=contractor_id,
            details=_jsonable(metadata or {}),
        )
        self.session.add(entry)
        await self.session.flush()

        log.info(
            "audit.recorded",
            action=action,
            actor_id=str(actor_id) if actor_id else None,
            subject_type=subject_type,
            subject_id=str(subject_id),
        )
        return entry


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def _to_entry(row: AuditLog) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        action=row.action,
        actor_id=row.actor_id,
        subject_type=row.subject_type,
        subject_id=row.subject_id,
        contractor_id=row.contractor_id,
        metadata=row.details or {},
        created_at=row.created_at,
    )


async def list_audit_logs(session: AsyncSession, query: AuditLogQuery) -> AuditLogPage:
    """Filtered, newest-first page of audit entries."""
    conditions = []
    if query.action:
        conditions.append(AuditLog.action == query.action)
    if query.actor_id:
        conditions.append(AuditLog.actor_id == query.actor_id)
    if query.subject_type:
        conditions.append(AuditLog.subject_type == query.subject_type)
    if query.subject_id:
        conditions.append(AuditLog.subject_id == query.subject_id)
    if query.contractor_id:
        conditions.append(AuditLog.contractor_id == query.contractor_id)
    if query.start_date:
        conditions.append(AuditLog.created_at >= query.start_date)
    if query.end_date:
        conditions.append(AuditLog.created_at <= query.end_date)

    total = (
        await session.execute(select(func.count()).select_from(AuditLog).where(*conditions))
    ).scalar_one()

    result = await session.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.created_at.desc(), AuditLog.id)
        .offset((query.page - 1) * query.page_size)
        .limit(query.page_size)
    )
    items = [_to_entry(row) for row in result.scalars().all()]
    return AuditLogPage(items=items, total=total, page=query.page, page_size=query.page_size)
