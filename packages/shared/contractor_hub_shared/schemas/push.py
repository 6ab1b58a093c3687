"""Push subscription and preference schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class PushSubscriptionKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class PushSubscriptionCreateRequest(BaseModel):
    """Browser PushSubscription JSON plus the user agent."""
    endpoint: str = Field(..., pattern=r"^https://")
    keys: PushSubscriptionKeys
    user_agent: Optional[str] = Field(default=None, alias="userAgent")

    model_config = {"populate_by_name": True}


class PushSubscriptionResponse(BaseModel):
    id: uuid.UUID
    endpoint: str
    user_agent: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PushSubscriptionListResponse(BaseModel):
    data: list[PushSubscriptionResponse]


class PushPreferencesResponse(BaseModel):
    preferences: dict[str, bool]


class PushPreferenceUpdateRequest(BaseModel):
    action_type: str = Field(..., min_length=1)
    enabled: bool
