"""
Contractor API endpoints.

POST   /api/v1/contractors                                          - Create a contractor
POST   /api/v1/contractors/invites/{invite_id}/accept|decline       - Answer a direct invite
GET    /api/v1/contractors/{spectrum_id}                            - Contractor details
GET    /api/v1/contractors/{spectrum_id}/roles                      - List roles
POST   /api/v1/contractors/{spectrum_id}/roles                      - Create role
PUT    /api/v1/contractors/{spectrum_id}/roles/{role_id}            - Update role
DELETE /api/v1/contractors/{spectrum_id}/roles/{role_id}            - Delete role
POST   /api/v1/contractors/{spectrum_id}/roles/{role_id}/members/{user_id}   - Assign role
DELETE /api/v1/contractors/{spectrum_id}/roles/{role_id}/members/{user_id}   - Remove role
DELETE /api/v1/contractors/{spectrum_id}/members/{user_id}          - Kick member
POST   /api/v1/contractors/{spectrum_id}/leave                      - Leave
POST   /api/v1/contractors/{spectrum_id}/transfer-ownership         - Transfer ownership
POST   /api/v1/contractors/{spectrum_id}/invites                    - Invite a user
GET|POST /api/v1/contractors/{spectrum_id}/webhooks                 - Webhooks
DELETE /api/v1/contractors/{spectrum_id}/webhooks/{webhook_id}      - Delete webhook
GET    /api/v1/contractors/{spectrum_id}/audit-logs                 - Contractor audit trail
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import ContractorContext, get_contractor_member, get_current_user
from app.core.database import get_session
from app.models.user import User
from app.services import audit as audit_service
from app.services import contractors as contractor_service
from contractor_hub_shared.schemas.audit import AuditLogPage, AuditLogQuery
from contractor_hub_shared.schemas.contractors import (
    ContractorCreateRequest,
    ContractorResponse,
    InviteCreateRequest,
    InviteResponse,
    OwnershipTransferRequest,
    RoleCreateRequest,
    RoleListResponse,
    RoleResponse,
    RoleUpdateRequest,
    WebhookCreateRequest,
    WebhookListResponse,
    WebhookResponse,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Non-scoped routes
# ---------------------------------------------------------------------------

@router.post("", response_model=ContractorResponse, status_code=201)
async def create_contractor(
    body: ContractorCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Create a contractor. The creator receives the owner and default roles."""
    contractor = await contractor_service.create_contractor(session, body, user.id)
    return ContractorResponse.model_validate(contractor)


@router.post("/invites/{invite_id}/accept", response_model=ContractorResponse)
async def accept_invite(
    invite_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    contractor = await contractor_service.accept_invite(session, invite_id, user.id)
    return ContractorResponse.model_validate(contractor)


@router.post("/invites/{invite_id}/decline", status_code=204)
async def decline_invite(
    invite_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await contractor_service.decline_invite(session, invite_id, user.id)


# ---------------------------------------------------------------------------
# Contractor-scoped routes
# ---------------------------------------------------------------------------

@router.get("/{spectrum_id}", response_model=ContractorResponse)
async def get_contractor(ctx: ContractorContext = Depends(get_contractor_member)):
    return ContractorResponse.model_validate(ctx.contractor)


@router.get("/{spectrum_id}/roles", response_model=RoleListResponse)
async def list_roles(
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    roles = await contractor_service.list_roles(session, ctx.contractor)
    return RoleListResponse(data=[RoleResponse.model_validate(r) for r in roles])


@router.post("/{spectrum_id}/roles", response_model=RoleResponse, status_code=201)
async def create_role(
    body: RoleCreateRequest,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    role = await contractor_service.create_role(session, ctx.contractor, ctx.user_id, body)
    return RoleResponse.model_validate(role)


@router.put("/{spectrum_id}/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: uuid.UUID,
    body: RoleUpdateRequest,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    role = await contractor_service.update_role(session, ctx.contractor, role_id, ctx.user_id, body)
    return RoleResponse.model_validate(role)


@router.delete("/{spectrum_id}/roles/{role_id}", status_code=204)
async def delete_role(
    role_id: uuid.UUID,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    await contractor_service.delete_role(session, ctx.contractor, role_id, ctx.user_id)


@router.post("/{spectrum_id}/roles/{role_id}/members/{user_id}", status_code=204)
async def assign_role(
    role_id: uuid.UUID,
    user_id: uuid.UUID,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    await contractor_service.assign_role(session, ctx.contractor, role_id, user_id, ctx.user_id)


@router.delete("/{spectrum_id}/roles/{role_id}/members/{user_id}", status_code=204)
async def remove_role(
    role_id: uuid.UUID,
    user_id: uuid.UUID,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    await contractor_service.remove_role(session, ctx.contractor, role_id, user_id, ctx.user_id)


@router.delete("/{spectrum_id}/members/{user_id}", status_code=204)
async def kick_member(
    user_id: uuid.UUID,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    await contractor_service.kick_member(session, ctx.contractor, user_id, ctx.user_id)


@router.post("/{spectrum_id}/leave", status_code=204)
async def leave(
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    await contractor_service.leave(session, ctx.contractor, ctx.user_id)


@router.post("/{spectrum_id}/transfer-ownership", status_code=204)
async def transfer_ownership(
    body: OwnershipTransferRequest,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    await contractor_service.transfer_ownership(session, ctx.contractor, ctx.user_id, body.new_owner_id)


@router.post("/{spectrum_id}/invites", response_model=InviteResponse, status_code=201)
async def invite_user(
    body: InviteCreateRequest,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    invite = await contractor_service.invite_user(
        session, ctx.contractor, body.user_id, ctx.user_id, body.message
    )
    return InviteResponse.model_validate(invite)


@router.get("/{spectrum_id}/webhooks", response_model=WebhookListResponse)
async def list_webhooks(
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    hooks = await contractor_service.list_webhooks(session, ctx.contractor, ctx.user_id)
    return WebhookListResponse(data=[WebhookResponse.model_validate(h) for h in hooks])


@router.post("/{spectrum_id}/webhooks", response_model=WebhookResponse, status_code=201)
async def create_webhook(
    body: WebhookCreateRequest,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    hook = await contractor_service.create_webhook(session, ctx.contractor, ctx.user_id, body)
    return WebhookResponse.model_validate(hook)


@router.delete("/{spectrum_id}/webhooks/{webhook_id}", status_code=204)
async def delete_webhook(
    webhook_id: uuid.UUID,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    await contractor_service.delete_webhook(session, ctx.contractor, webhook_id, ctx.user_id)


@router.get("/{spectrum_id}/audit-logs", response_model=AuditLogPage)
async def contractor_audit_logs(
    page: int = Query(1),
    page_size: int = Query(20),
    action: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
    subject_type: Optional[str] = None,
    subject_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    ctx: ContractorContext = Depends(get_contractor_member),
    session: AsyncSession = Depends(get_session),
):
    """Audit trail scoped to this contractor (members only)."""
    try:
        query = AuditLogQuery(
            page=page,
            page_size=page_size,
            action=action,
            actor_id=actor_id,
            subject_type=subject_type,
            subject_id=subject_id,
            contractor_id=ctx.contractor_id,
            start_date=start_date,
            end_date=end_date,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=exc.errors(include_url=False, include_context=False, include_input=False),
        )
    return await audit_service.list_audit_logs(session, query)
