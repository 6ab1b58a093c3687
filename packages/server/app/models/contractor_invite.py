"""Direct contractor invite addressed to one user."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin


class ContractorInvite(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "contractor_invites"

    contractor_id: uuid.UUID = Field(foreign_key="contractors.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    inviter_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    message: str = Field(default="", nullable=False)
