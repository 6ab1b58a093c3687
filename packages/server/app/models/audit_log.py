"""Audit log model (append-only, never updated or deleted by the application)."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, JSONType, UUIDMixin


class AuditLog(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "audit_logs"

    action: str = Field(nullable=False, index=True)  # e.g. role.updated, member.removed
    actor_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id", index=True)
    subject_type: str = Field(nullable=False)
    subject_id: str = Field(nullable=False)
    contractor_id: Optional[uuid.UUID] = Field(default=None, index=True)
    # "metadata" is reserved on declarative classes, so the attribute is named differently
    details: dict = Field(
        default_factory=dict,
        sa_column=sa.Column("metadata", JSONType, nullable=False),
    )
