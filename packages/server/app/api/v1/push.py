"""
Push subscription and preference endpoints.

POST   /api/v1/push/subscriptions        - Register a browser subscription
GET    /api/v1/push/subscriptions        - List own subscriptions
DELETE /api/v1/push/subscriptions/{id}   - Remove a subscription
GET    /api/v1/push/preferences          - Map of action -> enabled
PUT    /api/v1/push/preferences          - Enable/disable one action
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.config import get_settings
from app.core.database import get_session
from app.models.user import User
from app.services.push import WebPushNotificationService
from contractor_hub_shared.schemas.push import (
    PushPreferencesResponse,
    PushPreferenceUpdateRequest,
    PushSubscriptionCreateRequest,
    PushSubscriptionListResponse,
    PushSubscriptionResponse,
)

router = APIRouter()
settings = get_settings()


def get_push_service() -> WebPushNotificationService:
    return WebPushNotificationService()


@router.get("/vapid-public-key")
async def vapid_public_key():
    """Public VAPID key the browser needs to subscribe."""
    return {"public_key": settings.vapid_public_key or None}


@router.post("/subscriptions", response_model=PushSubscriptionResponse, status_code=201)
async def create_subscription(
    body: PushSubscriptionCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    push: WebPushNotificationService = Depends(get_push_service),
):
    subscription = await push.create_subscription(session, user.id, body)
    return PushSubscriptionResponse.model_validate(subscription)


@router.get("/subscriptions", response_model=PushSubscriptionListResponse)
async def list_subscriptions(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    push: WebPushNotificationService = Depends(get_push_service),
):
    subscriptions = await push.get_user_subscriptions(session, user.id)
    return PushSubscriptionListResponse(
        data=[PushSubscriptionResponse.model_validate(s) for s in subscriptions]
    )


@router.delete("/subscriptions/{subscription_id}", status_code=204)
async def delete_subscription(
    subscription_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    push: WebPushNotificationService = Depends(get_push_service),
):
    await push.delete_subscription(session, user.id, subscription_id)


@router.get("/preferences", response_model=PushPreferencesResponse)
async def get_preferences(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    push: WebPushNotificationService = Depends(get_push_service),
):
    return PushPreferencesResponse(preferences=await push.get_preferences(session, user.id))


@router.put("/preferences", response_model=PushPreferencesResponse)
async def update_preference(
    body: PushPreferenceUpdateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    push: WebPushNotificationService = Depends(get_push_service),
):
    await push.update_preference(session, user.id, body.action_type, body.enabled)
    return PushPreferencesResponse(preferences=await push.get_preferences(session, user.id))
