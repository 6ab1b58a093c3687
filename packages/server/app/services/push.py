"""
Web Push notification service.

Handles:
- Push subscription management (per user)
- Per-action push preferences (missing preference = enabled)
- Sending via the Web Push protocol (VAPID, ``pywebpush``)
- Removal of subscriptions the push service reports as gone
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Callable, Iterable, Optional

import structlog
from fastapi import HTTPException
from pywebpush import WebPushException, webpush
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import get_session_context
from app.models.notification import NotificationActionType
from app.models.push import PushPreference, PushSubscription
from app.services.delivery import DeliveryReport, fan_out
from app.services.notifications import get_action_type
from contractor_hub_shared.schemas.notifications import PushPayload
from contractor_hub_shared.schemas.push import PushSubscriptionCreateRequest

log = structlog.get_logger()
settings = get_settings()

# Subscription is gone or revoked; delete it
INVALID_STATUSES = {403, 404, 410}
# Temporary; keep the subscription
SOFT_FAIL_STATUSES = {413, 429}


class PushSendError(Exception):
    """At least one subscription failed with an unexpected error."""


def _status_of(exc: WebPushException) -> Optional[int]:
    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None)


class WebPushNotificationService:
    def __init__(self, session_factory: Callable[[], Any] = get_session_context):
        self.session_factory = session_factory

    @property
    def configured(self) -> bool:
        return bool(settings.vapid_public_key and settings.vapid_private_key)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def create_subscription(
        self, session: AsyncSession, user_id: uuid.UUID, req: PushSubscriptionCreateRequest
    ) -> PushSubscription:
        """Store a browser subscription; re-subscribing the same endpoint updates it."""
        result = await session.execute(
            select(PushSubscription).where(PushSubscription.endpoint == req.endpoint)
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            subscription = PushSubscription(
                user_id=user_id,
                endpoint=req.endpoint,
                p256dh=req.keys.p256dh,
                auth=req.keys.auth,
                user_agent=req.user_agent,
            )
        else:
            subscription.user_id = user_id
            subscription.p256dh = req.keys.p256dh
            subscription.auth = req.keys.auth
            subscription.user_agent = req.user_agent
        session.add(subscription)
        await session.flush()
        log.debug("push.subscription_created", user_id=str(user_id), subscription_id=str(subscription.id))
        return subscription

    async def delete_subscription(
        self, session: AsyncSession, user_id: uuid.UUID, subscription_id: uuid.UUID
    ) -> None:
        subscription = await session.get(PushSubscription, subscription_id)
        if subscription is None:
            raise HTTPException(status_code=404, detail="Subscription not found")
        if subscription.user_id != user_id:
            raise HTTPException(status_code=403, detail="Subscription belongs to another user")
        await session.delete(subscription)
        await session.flush()
        log.debug("push.subscription_deleted", user_id=str(user_id), subscription_id=str(subscription_id))

    async def get_user_subscriptions(
        self, session: AsyncSession, user_id: uuid.UUID
    ) -> list[PushSubscription]:
        result = await session.execute(
            select(PushSubscription)
            .where(PushSubscription.user_id == user_id)
            .order_by(PushSubscription.created_at)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preferences(self, session: AsyncSession, user_id: uuid.UUID) -> dict[str, bool]:
        """Every known action mapped to enabled/disabled (default enabled)."""
        actions = (await session.execute(select(NotificationActionType))).scalars().all()
        result = await session.execute(
            select(PushPreference).where(PushPreference.user_id == user_id)
        )
        stored = {pref.action_type_id: pref.enabled for pref in result.scalars().all()}
        return {action.action: stored.get(action.id, True) for action in actions}

    async def update_preference(
        self, session: AsyncSession, user_id: uuid.UUID, action_name: str, enabled: bool
    ) -> None:
        action_type = await get_action_type(session, action_name)
        preference = await session.get(PushPreference, (user_id, action_type.id))
        if preference is None:
            preference = PushPreference(user_id=user_id, action_type_id=action_type.id, enabled=enabled)
        else:
            preference.enabled = enabled
        session.add(preference)
        await session.flush()
        log.debug("push.preference_updated", user_id=str(user_id), action=action_name, enabled=enabled)

    async def _is_enabled(self, session: AsyncSession, user_id: uuid.UUID, action_name: str) -> bool:
        result = await session.execute(
            select(PushPreference.enabled)
            .join(NotificationActionType, PushPreference.action_type_id == NotificationActionType.id)
            .where(PushPreference.user_id == user_id, NotificationActionType.action == action_name)
        )
        enabled = result.scalar_one_or_none()
        return True if enabled is None else enabled

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _send(self, subscription: PushSubscription, data: str) -> None:
        await asyncio.to_thread(
            webpush,
            subscription_info={
                "endpoint": subscription.endpoint,
                "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
            },
            data=data,
            vapid_private_key=settings.vapid_private_key,
            vapid_claims={"sub": settings.vapid_subject},
            timeout=settings.push_timeout_seconds,
        )

    async def send_push_notification(
        self, user_id: uuid.UUID, payload: PushPayload, action_type: Optional[str] = None
    ) -> None:
        """Send to every subscription of one user, honouring their preferences."""
        if not self.configured:
            log.debug("push.not_configured", user_id=str(user_id))
            return

        async with self.session_factory() as session:
            if action_type and not await self._is_enabled(session, user_id, action_type):
                log.debug("push.disabled_by_preference", user_id=str(user_id), action=action_type)
                return

            subscriptions = await self.get_user_subscriptions(session, user_id)
            if not subscriptions:
                log.debug("push.no_subscriptions", user_id=str(user_id))
                return

            data = json.dumps(payload.to_wire())
            invalid: list[uuid.UUID] = []
            errors = 0
            for subscription in subscriptions:
                try:
                    await self._send(subscription, data)
                except WebPushException as exc:
                    status = _status_of(exc)
                    if status in INVALID_STATUSES:
                        invalid.append(subscription.id)
                        log.debug("push.subscription_invalid", subscription_id=str(subscription.id), status=status)
                    elif status in SOFT_FAIL_STATUSES:
                        log.warning("push.soft_failure", subscription_id=str(subscription.id), status=status)
                    else:
                        errors += 1
                        log.warning("push.failed", subscription_id=str(subscription.id), status=status, error=str(exc))

            if invalid:
                await session.execute(delete(PushSubscription).where(PushSubscription.id.in_(invalid)))

            log.debug(
                "push.sent",
                user_id=str(user_id),
                total=len(subscriptions),
                removed=len(invalid),
                failed=errors,
            )
            if errors:
                raise PushSendError(f"{errors} of {len(subscriptions)} subscriptions failed")

    async def send_push_notifications(
        self, user_ids: Iterable[uuid.UUID], payload: PushPayload, action_type: Optional[str] = None
    ) -> DeliveryReport:
        if not self.configured:
            log.debug("push.not_configured_batch")
            return DeliveryReport()

        async def _send_one(user_id: uuid.UUID) -> None:
            await self.send_push_notification(user_id, payload, action_type)

        report = await fan_out(_send_one, user_ids, concurrency=settings.push_max_concurrency)
        if report.failed:
            log.warning("push.batch_partial_failure", failed=len(report.failed), attempted=report.attempted)
        return report

    async def cleanup_invalid_subscriptions(self) -> dict[str, int]:
        """Send every subscription a silent payload and drop the ones that are gone."""
        if not self.configured:
            log.debug("push.cleanup_skipped")
            return {"total": 0, "valid": 0, "removed": 0}

        log.info("push.cleanup_started")
        silent_payload = json.dumps({"title": "Test", "body": "Test notification", "silent": True})
        valid = 0
        removed: list[uuid.UUID] = []
        async with self.session_factory() as session:
            subscriptions = (await session.execute(select(PushSubscription))).scalars().all()
            for subscription in subscriptions:
                try:
                    await self._send(subscription, silent_payload)
                    valid += 1
                except WebPushException as exc:
                    status = _status_of(exc)
                    if status in INVALID_STATUSES:
                        removed.append(subscription.id)
                    elif status == 429:
                        valid += 1
                    else:
                        log.warning("push.cleanup_send_failed", subscription_id=str(subscription.id), status=status)
            if removed:
                await session.execute(delete(PushSubscription).where(PushSubscription.id.in_(removed)))

        stats = {"total": len(subscriptions), "valid": valid, "removed": len(removed)}
        log.info("push.cleanup_completed", **stats)
        return stats
