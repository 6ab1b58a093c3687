"""
Contractor-related Pydantic schemas shared between the server and its clients.

Covers: contractor creation, role CRUD, member/role assignment, invites,
ownership transfer and notification webhooks.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Role defaults
# ---------------------------------------------------------------------------

OWNER_ROLE_NAME = "Owner"
DEFAULT_ROLE_NAME = "Member"
OWNER_ROLE_POSITION = 0
DEFAULT_ROLE_POSITION = 10


class RolePermissions(BaseModel):
    manage_roles: bool = False
    manage_orders: bool = False
    manage_invites: bool = False
    manage_market: bool = False
    manage_webhooks: bool = False
    manage_recruiting: bool = False
    manage_blocklist: bool = False
    manage_org_details: bool = False
    manage_stock: bool = False
    kick_members: bool = False


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class ContractorCreateRequest(BaseModel):
    spectrum_id: str = Field(
        ...,
        min_length=3,
        max_length=50,
        pattern=r"^[A-Za-z0-9_-]+$",
        description="External-facing unique contractor identifier",
    )
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: str = Field(default="", max_length=2000)

    @field_validator("spectrum_id")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()


class RoleCreateRequest(RolePermissions):
    name: str = Field(..., min_length=1, max_length=50)


class RoleUpdateRequest(RolePermissions):
    name: str = Field(..., min_length=1, max_length=50)
    position: int = Field(..., ge=0)


class InviteCreateRequest(BaseModel):
    user_id: uuid.UUID
    message: str = Field(default="", max_length=1000)


class OwnershipTransferRequest(BaseModel):
    new_owner_id: uuid.UUID


class WebhookCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    url: str = Field(..., pattern=r"^https?://")
    actions: list[str] = Field(
        default_factory=list,
        description="Notification action names this webhook receives",
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class RoleResponse(RolePermissions):
    id: uuid.UUID
    contractor_id: uuid.UUID
    name: str
    position: int

    model_config = {"from_attributes": True}


class ContractorResponse(BaseModel):
    id: uuid.UUID
    spectrum_id: str
    name: str
    description: str
    default_role_id: Optional[uuid.UUID] = None
    owner_role_id: Optional[uuid.UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class InviteResponse(BaseModel):
    id: uuid.UUID
    contractor_id: uuid.UUID
    user_id: uuid.UUID
    inviter_id: Optional[uuid.UUID] = None
    message: str
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookResponse(BaseModel):
    id: uuid.UUID
    contractor_id: uuid.UUID
    name: str
    url: str
    actions: list[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class RoleListResponse(BaseModel):
    data: list[RoleResponse]


class WebhookListResponse(BaseModel):
    data: list[WebhookResponse]
