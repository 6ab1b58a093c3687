"""User model."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin


class User(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "users"

    username: str = Field(unique=True, index=True, nullable=False)
    display_name: Optional[str] = None
    role: str = Field(default="user", nullable=False)  # user | admin (site-level)
    banned: bool = Field(default=False, nullable=False)
