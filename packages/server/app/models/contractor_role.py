"""Contractor roles and the many-to-many member/role assignment table."""

import uuid

from sqlmodel import Field, SQLModel

from .base import UUIDMixin


class ContractorRole(UUIDMixin, SQLModel, table=True):
    __tablename__ = "contractor_roles"

    contractor_id: uuid.UUID = Field(foreign_key="contractors.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    position: int = Field(nullable=False)  # lower = more senior; owner = 0

    manage_roles: bool = Field(default=False, nullable=False)
    manage_orders: bool = Field(default=False, nullable=False)
    manage_invites: bool = Field(default=False, nullable=False)
    manage_market: bool = Field(default=False, nullable=False)
    manage_webhooks: bool = Field(default=False, nullable=False)
    manage_recruiting: bool = Field(default=False, nullable=False)
    manage_blocklist: bool = Field(default=False, nullable=False)
    manage_org_details: bool = Field(default=False, nullable=False)
    manage_stock: bool = Field(default=False, nullable=False)
    kick_members: bool = Field(default=False, nullable=False)


class ContractorMemberRole(SQLModel, table=True):
    __tablename__ = "contractor_member_roles"

    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True)
    role_id: uuid.UUID = Field(foreign_key="contractor_roles.id", primary_key=True)
