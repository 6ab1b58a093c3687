"""
Tests for the contractor service.

Covers:
- Contractor creation (owner + default roles)
- Role CRUD with the protected owner/default roles
- Role assignment and removal under the hierarchy rules
- Kick, leave and ownership transfer
- Direct invites (create, accept, decline)
- Notification webhooks (action validation and shorthand expansion)
- One audit entry per mutation
"""

from __future__ import annotations

import uuid

import pytest
from fastapi import HTTPException
from sqlmodel import select

from app.models.audit_log import AuditLog
from app.models.contractor_member import ContractorMember
from app.models.contractor_role import ContractorMemberRole
from app.services import contractors, permissions
from app.services.dispatcher import NotificationDispatcher
from app.services.notifications import unread_count
from contractor_hub_shared.schemas.contractors import (
    ContractorCreateRequest,
    RoleCreateRequest,
    RoleUpdateRequest,
    WebhookCreateRequest,
)


async def _audit_actions(session, contractor_id) -> list[str]:
    result = await session.execute(
        select(AuditLog.action).where(AuditLog.contractor_id == contractor_id)
    )
    return list(result.scalars().all())


def _status(exc_info) -> int:
    return exc_info.value.status_code


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

class TestCreateContractor:
    @pytest.mark.asyncio
    async def test_creator_holds_owner_and_default_roles(self, session, make_user):
        owner = await make_user()
        contractor = await contractors.create_contractor(
            session, ContractorCreateRequest(spectrum_id="sctest", name="SC Test"), owner.id
        )

        assert contractor.spectrum_id == "SCTEST"
        roles = await permissions.get_member_roles(session, contractor.id, owner.id)
        assert {r.id for r in roles} == {contractor.owner_role_id, contractor.default_role_id}
        assert await permissions.get_min_position(session, contractor.id, owner.id) == 0
        assert await _audit_actions(session, contractor.id) == ["org.created"]

    @pytest.mark.asyncio
    async def test_duplicate_spectrum_id(self, session, make_user):
        owner = await make_user()
        await contractors.create_contractor(session, ContractorCreateRequest(spectrum_id="DUPE"), owner.id)
        with pytest.raises(HTTPException) as exc_info:
            await contractors.create_contractor(session, ContractorCreateRequest(spectrum_id="dupe"), owner.id)
        assert _status(exc_info) == 409


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

class TestRoles:
    @pytest.mark.asyncio
    async def test_new_role_goes_to_the_bottom(self, session, make_user, make_contractor):
        owner = await make_user()
        contractor = await make_contractor(owner)
        first = await contractors.create_role(session, contractor, owner.id, RoleCreateRequest(name="Crew"))
        second = await contractors.create_role(
            session, contractor, owner.id, RoleCreateRequest(name="Traders", manage_market=True)
        )

        assert first.position == 11
        assert second.position == 12
        assert second.manage_market is True
        assert [r.name for r in await contractors.list_roles(session, contractor)] == [
            "Owner", "Member", "Crew", "Traders",
        ]

    @pytest.mark.asyncio
    async def test_create_requires_manage_roles(self, session, make_user, make_contractor, make_role, grant):
        owner, member = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(member, await make_role(contractor, "Crew", 20))
        with pytest.raises(HTTPException) as exc_info:
            await contractors.create_role(session, contractor, member.id, RoleCreateRequest(name="Mine"))
        assert _status(exc_info) == 403

    @pytest.mark.asyncio
    async def test_update_role_records_changes(self, session, make_user, make_contractor):
        owner = await make_user()
        contractor = await make_contractor(owner)
        role = await contractors.create_role(session, contractor, owner.id, RoleCreateRequest(name="Crew"))

        updated = await contractors.update_role(
            session,
            contractor,
            role.id,
            owner.id,
            RoleUpdateRequest(name="Deck Crew", position=5, manage_stock=True),
        )
        assert updated.name == "Deck Crew"
        assert updated.position == 5
        assert updated.manage_stock is True

        entry = (
            await session.execute(select(AuditLog).where(AuditLog.action == "role.updated"))
        ).scalar_one()
        assert entry.details["changes"]["name"] == {"before": "Crew", "after": "Deck Crew"}
        assert "manage_orders" not in entry.details["changes"]

    @pytest.mark.asyncio
    async def test_cannot_move_role_above_self(self, session, make_user, make_contractor, make_role, grant):
        owner, manager = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(manager, await make_role(contractor, "Managers", 5, manage_roles=True))
        crew = await make_role(contractor, "Crew", 20)

        with pytest.raises(HTTPException) as exc_info:
            await contractors.update_role(
                session, contractor, crew.id, manager.id, RoleUpdateRequest(name="Crew", position=5)
            )
        assert _status(exc_info) == 403

    @pytest.mark.asyncio
    async def test_owner_and_default_roles_cannot_be_deleted(self, session, make_user, make_contractor):
        owner = await make_user()
        contractor = await make_contractor(owner)
        with pytest.raises(HTTPException) as exc_info:
            await contractors.delete_role(session, contractor, contractor.default_role_id, owner.id)
        assert _status(exc_info) == 403
        # The owner role is at position 0, so even the owner does not outrank it
        with pytest.raises(HTTPException) as exc_info:
            await contractors.delete_role(session, contractor, contractor.owner_role_id, owner.id)
        assert _status(exc_info) == 403

    @pytest.mark.asyncio
    async def test_delete_role_drops_assignments(self, session, make_user, make_contractor, make_role, grant):
        owner, member = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        crew = await make_role(contractor, "Crew", 20)
        await grant(member, crew)

        await contractors.delete_role(session, contractor, crew.id, owner.id)
        assert await permissions.get_member_roles(session, contractor.id, member.id) == []
        assert "role.deleted" in await _audit_actions(session, contractor.id)

    @pytest.mark.asyncio
    async def test_unknown_role_is_404(self, session, make_user, make_contractor):
        owner = await make_user()
        contractor = await make_contractor(owner)
        with pytest.raises(HTTPException) as exc_info:
            await contractors.delete_role(session, contractor, uuid.uuid4(), owner.id)
        assert _status(exc_info) == 404


# ---------------------------------------------------------------------------
# Role assignment
# ---------------------------------------------------------------------------

class TestRoleAssignment:
    @pytest.mark.asyncio
    async def test_assign_and_remove(self, session, make_user, make_contractor, make_role, grant):
        owner, member = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        crew = await make_role(contractor, "Crew", 20)
        traders = await make_role(contractor, "Traders", 21)
        await grant(member, crew)

        await contractors.assign_role(session, contractor, traders.id, member.id, owner.id)
        names = {r.name for r in await permissions.get_member_roles(session, contractor.id, member.id)}
        assert names == {"Crew", "Traders"}

        await contractors.remove_role(session, contractor, traders.id, member.id, owner.id)
        names = {r.name for r in await permissions.get_member_roles(session, contractor.id, member.id)}
        assert names == {"Crew"}

        actions = await _audit_actions(session, contractor.id)
        assert "member.role_assigned" in actions
        assert "member.role_removed" in actions

    @pytest.mark.asyncio
    async def test_assign_twice_conflicts(self, session, make_user, make_contractor, make_role, grant):
        owner, member = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        crew = await make_role(contractor, "Crew", 20)
        await grant(member, crew)
        with pytest.raises(HTTPException) as exc_info:
            await contractors.assign_role(session, contractor, crew.id, member.id, owner.id)
        assert _status(exc_info) == 409

    @pytest.mark.asyncio
    async def test_default_role_cannot_be_removed(self, session, make_user, make_contractor):
        owner, member = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        session.add(ContractorMemberRole(user_id=member.id, role_id=contractor.default_role_id))
        await session.flush()

        with pytest.raises(HTTPException) as exc_info:
            await contractors.remove_role(session, contractor, contractor.default_role_id, member.id, owner.id)
        assert _status(exc_info) == 403

    @pytest.mark.asyncio
    async def test_cannot_touch_a_senior_member(self, session, make_user, make_contractor, make_role, grant):
        owner, manager, officer = await make_user(), await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(manager, await make_role(contractor, "Managers", 5, manage_roles=True))
        await grant(officer, await make_role(contractor, "Officers", 2))
        crew = await make_role(contractor, "Crew", 20)

        with pytest.raises(HTTPException) as exc_info:
            await contractors.assign_role(session, contractor, crew.id, officer.id, manager.id)
        assert _status(exc_info) == 403

    @pytest.mark.asyncio
    async def test_target_must_be_member(self, session, make_user, make_contractor, make_role):
        owner, stranger = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        crew = await make_role(contractor, "Crew", 20)
        with pytest.raises(HTTPException) as exc_info:
            await contractors.assign_role(session, contractor, crew.id, stranger.id, owner.id)
        assert _status(exc_info) == 404


# ---------------------------------------------------------------------------
# Kick / leave / transfer
# ---------------------------------------------------------------------------

class TestMembers:
    @pytest.mark.asyncio
    async def test_owner_kicks_member(self, session, make_user, make_contractor, make_role, grant):
        owner, member = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        crew = await make_role(contractor, "Crew", 5)
        await grant(member, crew)
        session.add(ContractorMember(contractor_id=contractor.id, user_id=member.id))
        await session.flush()

        await contractors.kick_member(session, contractor, member.id, owner.id)
        assert not await permissions.is_member(session, contractor.id, member.id)
        assert "member.removed" in await _audit_actions(session, contractor.id)

    @pytest.mark.asyncio
    async def test_member_cannot_kick_owner(self, session, make_user, make_contractor, make_role, grant):
        owner, bouncer = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(bouncer, await make_role(contractor, "Bouncers", 5, kick_members=True))

        with pytest.raises(HTTPException) as exc_info:
            await contractors.kick_member(session, contractor, owner.id, bouncer.id)
        assert _status(exc_info) == 403
        assert await permissions.is_member(session, contractor.id, owner.id)

    @pytest.mark.asyncio
    async def test_kick_requires_flag(self, session, make_user, make_contractor, make_role, grant):
        owner, officer, crew_member = await make_user(), await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(officer, await make_role(contractor, "Officers", 2))
        await grant(crew_member, await make_role(contractor, "Crew", 20))

        with pytest.raises(HTTPException) as exc_info:
            await contractors.kick_member(session, contractor, crew_member.id, officer.id)
        assert _status(exc_info) == 403

    @pytest.mark.asyncio
    async def test_member_leaves(self, session, make_user, make_contractor, make_role, grant):
        owner, member = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(member, await make_role(contractor, "Crew", 20))

        await contractors.leave(session, contractor, member.id)
        assert not await permissions.is_member(session, contractor.id, member.id)

    @pytest.mark.asyncio
    async def test_owner_cannot_leave(self, session, make_user, make_contractor):
        owner = await make_user()
        contractor = await make_contractor(owner)
        with pytest.raises(HTTPException) as exc_info:
            await contractors.leave(session, contractor, owner.id)
        assert _status(exc_info) == 409

    @pytest.mark.asyncio
    async def test_transfer_ownership(self, session, make_user, make_contractor, make_role, grant):
        owner, heir = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(heir, await make_role(contractor, "Officers", 2))

        await contractors.transfer_ownership(session, contractor, owner.id, heir.id)

        assert await permissions.get_min_position(session, contractor.id, heir.id) == 0
        former = {r.id for r in await permissions.get_member_roles(session, contractor.id, owner.id)}
        assert former == {contractor.default_role_id}
        assert "org.ownership_transferred" in await _audit_actions(session, contractor.id)

        # Former owner can now leave
        await contractors.leave(session, contractor, owner.id)

    @pytest.mark.asyncio
    async def test_only_owner_transfers(self, session, make_user, make_contractor, make_role, grant):
        owner, officer = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(officer, await make_role(contractor, "Officers", 2, manage_roles=True))
        with pytest.raises(HTTPException) as exc_info:
            await contractors.transfer_ownership(session, contractor, officer.id, officer.id)
        assert _status(exc_info) == 403


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------

class TestInvites:
    @pytest.mark.asyncio
    async def test_invite_notifies_and_accept_grants_default_role(
        self, session, fake_push, fake_webhooks, make_user, make_contractor
    ):
        owner, invitee = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        dispatcher = NotificationDispatcher(session, push=fake_push, webhooks=fake_webhooks)

        invite = await contractors.invite_user(
            session, contractor, invitee.id, owner.id, "Join us", dispatcher=dispatcher
        )
        assert await unread_count(session, invitee.id, action="contractor_invite") == 1
        assert fake_push.calls[0][0] == [invitee.id]

        joined = await contractors.accept_invite(session, invite.id, invitee.id)
        assert joined.id == contractor.id
        roles = await permissions.get_member_roles(session, contractor.id, invitee.id)
        assert [r.id for r in roles] == [contractor.default_role_id]
        assert {"invite.created", "invite.accepted"} <= set(await _audit_actions(session, contractor.id))

    @pytest.mark.asyncio
    async def test_cannot_invite_a_member(self, session, make_user, make_contractor):
        owner = await make_user()
        contractor = await make_contractor(owner)
        with pytest.raises(HTTPException) as exc_info:
            await contractors.invite_user(session, contractor, owner.id, owner.id)
        assert _status(exc_info) == 409

    @pytest.mark.asyncio
    async def test_decline_and_foreign_invites(self, session, fake_push, fake_webhooks, make_user, make_contractor):
        owner, invitee, other = await make_user(), await make_user(), await make_user()
        contractor = await make_contractor(owner)
        dispatcher = NotificationDispatcher(session, push=fake_push, webhooks=fake_webhooks)
        invite = await contractors.invite_user(session, contractor, invitee.id, owner.id, dispatcher=dispatcher)

        with pytest.raises(HTTPException) as exc_info:
            await contractors.accept_invite(session, invite.id, other.id)
        assert _status(exc_info) == 404

        await contractors.decline_invite(session, invite.id, invitee.id)
        assert not await permissions.is_member(session, contractor.id, invitee.id)
        with pytest.raises(HTTPException):
            await contractors.accept_invite(session, invite.id, invitee.id)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

class TestWebhooks:
    @pytest.mark.asyncio
    async def test_order_status_shorthand_expands(self, session, make_user, make_contractor):
        owner = await make_user()
        contractor = await make_contractor(owner)
        hook = await contractors.create_webhook(
            session,
            contractor,
            owner.id,
            WebhookCreateRequest(
                name="Discord", url="https://hooks.example.com/x", actions=["order_create", "order_status_change"]
            ),
        )
        assert hook.actions == [
            "order_create",
            "order_status_fulfilled",
            "order_status_in_progress",
            "order_status_not_started",
            "order_status_cancelled",
        ]
        assert [h.id for h in await contractors.list_webhooks(session, contractor, owner.id)] == [hook.id]

    @pytest.mark.asyncio
    async def test_unknown_action_is_rejected(self, session, make_user, make_contractor):
        owner = await make_user()
        contractor = await make_contractor(owner)
        with pytest.raises(HTTPException) as exc_info:
            await contractors.create_webhook(
                session,
                contractor,
                owner.id,
                WebhookCreateRequest(name="Bad", url="https://hooks.example.com/x", actions=["order_vanished"]),
            )
        assert _status(exc_info) == 400

    @pytest.mark.asyncio
    async def test_requires_manage_webhooks(self, session, make_user, make_contractor, make_role, grant):
        owner, member = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(member, await make_role(contractor, "Crew", 20))
        with pytest.raises(HTTPException) as exc_info:
            await contractors.list_webhooks(session, contractor, member.id)
        assert _status(exc_info) == 403

    @pytest.mark.asyncio
    async def test_delete(self, session, make_user, make_contractor):
        owner = await make_user()
        contractor = await make_contractor(owner)
        hook = await contractors.create_webhook(
            session,
            contractor,
            owner.id,
            WebhookCreateRequest(name="Log", url="https://hooks.example.com/log", actions=["order_create"]),
        )
        await contractors.delete_webhook(session, contractor, hook.id, owner.id)
        assert await contractors.list_webhooks(session, contractor, owner.id) == []
        assert {"webhook.created", "webhook.deleted"} <= set(await _audit_actions(session, contractor.id))
