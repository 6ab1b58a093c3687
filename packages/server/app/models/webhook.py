"""Contractor notification webhooks."""

import uuid

from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, JSONType, UUIDMixin


class NotificationWebhook(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "notification_webhooks"

    contractor_id: uuid.UUID = Field(foreign_key="contractors.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    url: str = Field(nullable=False)
    actions: list = Field(default_factory=list, sa_type=JSONType, nullable=False)
