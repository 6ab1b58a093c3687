"""Web Push subscriptions and per-action push preferences."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class PushSubscription(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "push_subscriptions"

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    endpoint: str = Field(nullable=False, unique=True)
    p256dh: str = Field(nullable=False)
    auth: str = Field(nullable=False)
    user_agent: Optional[str] = None


class PushPreference(TimestampMixin, SQLModel, table=True):
    __tablename__ = "push_preferences"

    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True)
    action_type_id: int = Field(foreign_key="notification_action_type.id", primary_key=True)
    enabled: bool = Field(default=True, nullable=False)
