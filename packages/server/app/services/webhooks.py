"""
Contractor notification webhooks.

Creation validates action names against the action type table (the
``order_status_change`` shorthand expands to every order status action).
Delivery is best-effort: one POST per subscribed webhook, a single retry on
429/5xx, failures logged and swallowed. In queue mode
(``CH_PUSH_DELIVERY_MODE=queue``) the posts run in the ARQ worker instead of
the request.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Callable, Optional

import httpx
import structlog
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import get_session_context
from app.core.redis import get_arq_pool
from app.models.notification import NotificationActionType
from app.models.webhook import NotificationWebhook
from contractor_hub_shared.schemas.notifications import PushPayload

log = structlog.get_logger()
settings = get_settings()

MAX_ATTEMPTS = 2
RETRY_BASE_SECONDS = 0.5
WEBHOOK_JOB = "deliver_webhooks"

ORDER_STATUS_SHORTHAND = "order_status_change"
ORDER_STATUS_ACTIONS = [
    "order_status_fulfilled",
    "order_status_in_progress",
    "order_status_not_started",
    "order_status_cancelled",
]


async def resolve_webhook_actions(session: AsyncSession, actions: list[str]) -> list[str]:
    """Expand shorthands and reject unknown action names (400)."""
    wanted: list[str] = []
    for action in actions:
        expanded = ORDER_STATUS_ACTIONS if action == ORDER_STATUS_SHORTHAND else [action]
        for name in expanded:
            if name not in wanted:
                wanted.append(name)

    if wanted:
        result = await session.execute(
            select(NotificationActionType.action).where(NotificationActionType.action.in_(wanted))
        )
        known = set(result.scalars().all())
        unknown = [name for name in wanted if name not in known]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Unknown actions: {', '.join(unknown)}")
    return wanted


async def webhooks_for_action(
    session: AsyncSession, contractor_id: uuid.UUID, action: str
) -> list[NotificationWebhook]:
    result = await session.execute(
        select(NotificationWebhook).where(NotificationWebhook.contractor_id == contractor_id)
    )
    return [hook for hook in result.scalars().all() if action in (hook.actions or [])]


class WebhookDelivery:
    """Posts to subscribed webhooks inline, or hands the event to the ARQ worker in queue mode."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        session_factory: Callable[[], Any] = get_session_context,
        mode: Optional[str] = None,
    ):
        self._client = client
        self.session_factory = session_factory
        self.mode = mode or settings.push_delivery_mode

    async def post(self, url: str, body: dict[str, Any]) -> bool:
        """POST with one retry on 429/5xx/transport errors. Returns success."""
        client = self._client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.webhook_timeout_seconds)
        )
        try:
            for attempt in range(MAX_ATTEMPTS):
                try:
                    resp = await client.post(url, json=body)
                    if resp.status_code == 429 or resp.status_code >= 500:
                        log.warning("webhook.retryable_status", url=url, status=resp.status_code, attempt=attempt + 1)
                    elif resp.status_code >= 400:
                        log.warning("webhook.rejected", url=url, status=resp.status_code)
                        return False
                    else:
                        return True
                except httpx.HTTPError as exc:
                    log.warning("webhook.transport_error", url=url, error=str(exc), attempt=attempt + 1)
                if attempt + 1 < MAX_ATTEMPTS:
                    await asyncio.sleep(RETRY_BASE_SECONDS * (2 ** attempt))
            return False
        finally:
            if self._client is None:
                await client.aclose()

    async def deliver(self, contractor_id: uuid.UUID, action: str, payload: PushPayload) -> int:
        """Send ``payload`` to the contractor's webhooks for ``action``. Returns successful posts."""
        if self.mode == "queue":
            await self._enqueue(contractor_id, action, payload)
            return 0

        async with self.session_factory() as session:
            hooks = await webhooks_for_action(session, contractor_id, action)
        if not hooks:
            return 0

        body = {"action": action, "contractor_id": str(contractor_id), "notification": payload.to_wire()}
        results = await asyncio.gather(
            *(self.post(hook.url, body) for hook in hooks), return_exceptions=True
        )
        delivered = 0
        for hook, outcome in zip(hooks, results):
            if outcome is True:
                delivered += 1
            else:
                log.warning(
                    "webhook.delivery_failed",
                    webhook_id=str(hook.id),
                    action=action,
                    error=repr(outcome) if isinstance(outcome, BaseException) else None,
                )
        log.debug("webhook.delivered", contractor_id=str(contractor_id), action=action, delivered=delivered)
        return delivered

    async def _enqueue(self, contractor_id: uuid.UUID, action: str, payload: PushPayload) -> None:
        try:
            pool = await get_arq_pool()
            await pool.enqueue_job(WEBHOOK_JOB, str(contractor_id), action, payload.model_dump(mode="json"))
            log.debug("webhook.enqueued", contractor_id=str(contractor_id), action=action)
        except Exception as exc:
            log.warning("webhook.enqueue_failed", contractor_id=str(contractor_id), action=action, error=str(exc))
