"""Notification models: action types, objects, changes and per-recipient rows."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin, utcnow


class NotificationActionType(SQLModel, table=True):
    __tablename__ = "notification_action_type"

    id: int | None = Field(default=None, primary_key=True)
    action: str = Field(unique=True, nullable=False, index=True)
    entity: str = Field(nullable=False)


class NotificationObject(UUIDMixin, SQLModel, table=True):
    """One row per (entity, action); recurrence refreshes the timestamp."""

    __tablename__ = "notification_object"
    __table_args__ = (
        sa.UniqueConstraint("entity_id", "action_type_id", name="uq_notification_object_entity_action"),
    )

    action_type_id: int = Field(foreign_key="notification_action_type.id", nullable=False)
    entity_id: uuid.UUID = Field(nullable=False, index=True)
    timestamp: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )


class NotificationChange(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "notification_change"

    notification_object_id: uuid.UUID = Field(
        foreign_key="notification_object.id", nullable=False, index=True
    )
    actor_id: uuid.UUID = Field(nullable=False)


class Notification(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "notification"

    notification_object_id: uuid.UUID = Field(
        foreign_key="notification_object.id", nullable=False, index=True
    )
    notifier_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    read: bool = Field(default=False, nullable=False)
