"""
Best-effort outbound delivery.

``fan_out`` runs one coroutine per recipient under a semaphore and collects
every outcome; a failure for one recipient never cancels or blocks the
others. ``PushDelivery`` chooses between sending inline (in the request) and
enqueueing an ARQ job for the worker.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Optional

import structlog

from app.core.config import get_settings
from app.core.redis import get_arq_pool
from contractor_hub_shared.schemas.notifications import PushPayload

if TYPE_CHECKING:
    from app.services.push import WebPushNotificationService

log = structlog.get_logger()
settings = get_settings()

PUSH_JOB = "deliver_push"


@dataclass
class DeliveryReport:
    attempted: int = 0
    succeeded: list[uuid.UUID] = field(default_factory=list)
    failed: dict[uuid.UUID, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


async def fan_out(
    send: Callable[[uuid.UUID], Awaitable[object]],
    user_ids: Iterable[uuid.UUID],
    *,
    concurrency: Optional[int] = None,
) -> DeliveryReport:
    """Call ``send(user_id)`` for every user with bounded concurrency, collecting all outcomes."""
    targets = list(dict.fromkeys(user_ids))
    report = DeliveryReport(attempted=len(targets))
    if not targets:
        return report

    semaphore = asyncio.Semaphore(max(1, concurrency or settings.push_max_concurrency))

    async def _one(user_id: uuid.UUID) -> None:
        async with semaphore:
            await send(user_id)

    results = await asyncio.gather(*(_one(uid) for uid in targets), return_exceptions=True)
    for user_id, outcome in zip(targets, results):
        if isinstance(outcome, BaseException):
            report.failed[user_id] = repr(outcome)
            log.debug("delivery.failed", user_id=str(user_id), error=repr(outcome))
        else:
            report.succeeded.append(user_id)
    return report


class PushDelivery:
    """Sends push payloads inline or hands them to the ARQ worker."""

    def __init__(
        self,
        service: "WebPushNotificationService",
        mode: Optional[str] = None,
    ):
        self.service = service
        self.mode = mode or settings.push_delivery_mode

    async def deliver(
        self, user_ids: Iterable[uuid.UUID], payload: PushPayload, action: Optional[str]
    ) -> Optional[DeliveryReport]:
        targets = list(dict.fromkeys(user_ids))
        if not targets:
            return None

        if self.mode == "queue":
            try:
                pool = await get_arq_pool()
                await pool.enqueue_job(
                    PUSH_JOB,
                    [str(uid) for uid in targets],
                    payload.model_dump(mode="json"),
                    action,
                )
                log.debug("push.enqueued", recipients=len(targets), action=action)
            except Exception as exc:
                log.warning("push.enqueue_failed", action=action, error=str(exc))
            return None

        return await self.service.send_push_notifications(targets, payload, action)
