"""Admin alert model (site-wide announcements fanned out as notifications)."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin


class AdminAlert(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "admin_alerts"

    title: str = Field(nullable=False)
    content: str = Field(nullable=False)
    link: Optional[str] = None
    target_type: str = Field(nullable=False)  # all_users | org_members | org_owners | admins_only | specific_org
    target_contractor_id: Optional[uuid.UUID] = Field(default=None, foreign_key="contractors.id")
    created_by: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    active: bool = Field(default=True, nullable=False)
