"""Contractor (organization) model."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Contractor(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "contractors"

    spectrum_id: str = Field(unique=True, nullable=False, index=True)
    name: str = Field(nullable=False)
    description: str = Field(default="", nullable=False)
    # Set right after the owner/default roles are inserted
    default_role_id: Optional[uuid.UUID] = Field(default=None)
    owner_role_id: Optional[uuid.UUID] = Field(default=None)
