"""
Tests for the audit recorder and audit log queries.

Covers:
- Recording with UUID metadata made JSON-safe
- Field diffs
- Filters, date range and newest-first pagination
- Query validation (page bounds, inverted date range)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from app.models.audit_log import AuditLog
from app.services.audit import AuditRecorder, diff_fields, list_audit_logs
from contractor_hub_shared.schemas.audit import AuditLogQuery


class TestDiffFields:
    def test_only_changed_keys(self):
        before = {"name": "Crew", "position": 20, "manage_orders": False}
        after = {"name": "Crew", "position": 15, "manage_orders": True}
        assert diff_fields(before, after) == {
            "manage_orders": {"before": False, "after": True},
            "position": {"before": 20, "after": 15},
        }

    def test_added_and_removed_keys(self):
        assert diff_fields({"a": 1}, {"b": 2}) == {
            "a": {"before": 1, "after": None},
            "b": {"before": None, "after": 2},
        }


class TestAuditRecorder:
    @pytest.mark.asyncio
    async def test_record(self, session, make_user):
        actor = await make_user()
        contractor_id = uuid.uuid4()
        role_id = uuid.uuid4()

        entry = await AuditRecorder(session).record(
            "member.role_assigned",
            actor.id,
            "user",
            actor.id,
            {"role_id": role_id, "names": ("a", "b")},
            contractor_id=contractor_id,
        )
        assert entry.subject_id == str(actor.id)
        assert entry.details == {"role_id": str(role_id), "names": ["a", "b"]}

        page = await list_audit_logs(session, AuditLogQuery(contractor_id=contractor_id))
        assert page.total == 1
        assert page.items[0].metadata["role_id"] == str(role_id)

    @pytest.mark.asyncio
    async def test_metadata_defaults_to_empty(self, session):
        entry = await AuditRecorder(session).record("member.left", None, "user", "someone")
        assert entry.details == {}


class TestListAuditLogs:
    async def _seed(self, session, actor_id):
        now = datetime.now(timezone.utc)
        rows = [
            AuditLog(action="role.created", actor_id=actor_id, subject_type="role", subject_id="r1",
                     created_at=now - timedelta(days=3)),
            AuditLog(action="role.updated", actor_id=actor_id, subject_type="role", subject_id="r1",
                     created_at=now - timedelta(days=2)),
            AuditLog(action="member.removed", actor_id=None, subject_type="user", subject_id="u1",
                     created_at=now - timedelta(days=1)),
        ]
        session.add_all(rows)
        await session.flush()
        return now

    @pytest.mark.asyncio
    async def test_newest_first(self, session, make_user):
        actor = await make_user()
        await self._seed(session, actor.id)
        page = await list_audit_logs(session, AuditLogQuery())
        assert [i.action for i in page.items] == ["member.removed", "role.updated", "role.created"]

    @pytest.mark.asyncio
    async def test_filters(self, session, make_user):
        actor = await make_user()
        await self._seed(session, actor.id)

        by_actor = await list_audit_logs(session, AuditLogQuery(actor_id=actor.id))
        assert by_actor.total == 2
        by_subject = await list_audit_logs(session, AuditLogQuery(subject_type="role", subject_id="r1"))
        assert by_subject.total == 2
        by_action = await list_audit_logs(session, AuditLogQuery(action="member.removed"))
        assert [i.subject_id for i in by_action.items] == ["u1"]

    @pytest.mark.asyncio
    async def test_date_range(self, session, make_user):
        actor = await make_user()
        now = await self._seed(session, actor.id)
        page = await list_audit_logs(
            session,
            AuditLogQuery(start_date=now - timedelta(days=2, hours=12), end_date=now - timedelta(hours=12)),
        )
        assert sorted(i.action for i in page.items) == ["member.removed", "role.updated"]

    @pytest.mark.asyncio
    async def test_pagination(self, session, make_user):
        actor = await make_user()
        await self._seed(session, actor.id)
        page = await list_audit_logs(session, AuditLogQuery(page=2, page_size=2))
        assert page.total == 3
        assert [i.action for i in page.items] == ["role.created"]


class TestAuditLogQuery:
    def test_inverted_range_rejected(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            AuditLogQuery(start_date=now, end_date=now - timedelta(days=1))

    def test_page_bounds(self):
        with pytest.raises(ValidationError):
            AuditLogQuery(page=0)
        with pytest.raises(ValidationError):
            AuditLogQuery(page_size=101)
