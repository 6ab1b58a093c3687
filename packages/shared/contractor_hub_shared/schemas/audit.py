"""Audit log schemas: typed query parameters and the paginated read model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class AuditLogQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
    action: Optional[str] = None
    actor_id: Optional[uuid.UUID] = None
    subject_type: Optional[str] = None
    subject_id: Optional[str] = None
    contractor_id: Optional[uuid.UUID] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_range(self) -> "AuditLogQuery":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class AuditLogEntry(BaseModel):
    id: uuid.UUID
    action: str
    actor_id: Optional[uuid.UUID] = None
    subject_type: str
    subject_id: str
    contractor_id: Optional[uuid.UUID] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AuditLogPage(BaseModel):
    items: list[AuditLogEntry]
    total: int
    page: int
    page_size: int
