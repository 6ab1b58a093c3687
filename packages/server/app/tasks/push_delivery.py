"""
ARQ background tasks: queued push and webhook delivery, hourly subscription cleanup.

Run with ``arq app.tasks.push_delivery.WorkerSettings``.
"""

from __future__ import annotations

import uuid

import structlog
from arq import cron
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.services.push import WebPushNotificationService
from app.services.webhooks import WebhookDelivery
from contractor_hub_shared.schemas.notifications import PushPayload

log = structlog.get_logger()
settings = get_settings()


async def deliver_push(
    ctx: dict, user_ids: list[str], payload: dict, action: str | None = None
) -> dict:
    """Send one payload to many users. Returns counts of the fan-out outcome."""
    service = WebPushNotificationService()
    report = await service.send_push_notifications(
        [uuid.UUID(uid) for uid in user_ids],
        PushPayload.model_validate(payload),
        action,
    )
    result = {
        "attempted": report.attempted,
        "succeeded": len(report.succeeded),
        "failed": len(report.failed),
    }
    log.info("push_delivery.job_completed", action=action, **result)
    return result


async def deliver_webhooks(ctx: dict, contractor_id: str, action: str, payload: dict) -> int:
    """Post one event to the contractor's subscribed webhooks. Returns successful posts."""
    delivered = await WebhookDelivery(mode="inline").deliver(
        uuid.UUID(contractor_id), action, PushPayload.model_validate(payload)
    )
    log.info("webhook_delivery.job_completed", action=action, delivered=delivered)
    return delivered


async def cleanup_push_subscriptions(ctx: dict) -> dict:
    return await WebPushNotificationService().cleanup_invalid_subscriptions()


async def startup(ctx: dict) -> None:
    configure_logging(settings.log_level, settings.log_format)
    log.info("push_delivery.worker_started", mode=settings.push_delivery_mode)


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [deliver_push, deliver_webhooks, cleanup_push_subscriptions]
    cron_jobs = [
        # Run every hour
        cron(cleanup_push_subscriptions, minute=0),
    ]
    on_startup = startup
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
