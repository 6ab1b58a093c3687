"""
Fan-out dispatcher: turns domain events into notification rows and
best-effort deliveries.

Every event goes through the same steps:
1. resolve recipients
2. drop the actor and duplicates
3. object -> change -> notify in the caller's session (errors propagate)
4. push to the newly notified users and post to the contractor's webhooks
   (errors are logged and swallowed)
"""

from __future__ import annotations

import uuid
from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.admin_alert import AdminAlert
from app.models.contractor_invite import ContractorInvite
from app.services import alerts, notifications, payloads, permissions
from app.services.delivery import PushDelivery
from app.services.push import WebPushNotificationService
from app.services.webhooks import WebhookDelivery
from contractor_hub_shared.schemas.common import PermissionFlag
from contractor_hub_shared.schemas.notifications import (
    MarketBidEvent,
    MarketListingEvent,
    MarketOfferEvent,
    MessageEvent,
    OfferKind,
    OfferSessionEvent,
    OrderCommentEvent,
    OrderEvent,
    PushPayload,
    ReviewEvent,
    order_status_action,
)

log = structlog.get_logger()


class NotificationDispatcher:
    def __init__(
        self,
        session: AsyncSession,
        push: Optional[PushDelivery] = None,
        webhooks: Optional[WebhookDelivery] = None,
    ):
        self.session = session
        self.push = push or PushDelivery(WebPushNotificationService())
        self.webhooks = webhooks or WebhookDelivery()

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    async def _dispatch(
        self,
        action: str,
        entity_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        recipients: Iterable[Optional[uuid.UUID]],
        payload: PushPayload,
        contractor_id: Optional[uuid.UUID] = None,
    ) -> list[uuid.UUID]:
        targets = [
            uid for uid in dict.fromkeys(recipients) if uid is not None and uid != actor_id
        ]
        if not targets:
            log.debug("dispatch.no_recipients", action=action, entity_id=str(entity_id))
            return []

        obj, _ = await notifications.get_or_create_notification_object(
            self.session, entity_id, action
        )
        if actor_id is not None:
            await notifications.record_change(self.session, obj.id, actor_id)
        notified = await notifications.notify(self.session, obj.id, targets)

        log.info(
            "dispatch.completed",
            action=action,
            entity_id=str(entity_id),
            recipients=len(targets),
            notified=len(notified),
        )

        await self._deliver_push(notified, payload, action)
        if contractor_id is not None:
            await self._deliver_webhooks(contractor_id, action, payload)
        return notified

    async def _deliver_push(
        self, user_ids: list[uuid.UUID], payload: PushPayload, action: str
    ) -> None:
        if not user_ids:
            return
        try:
            await self.push.deliver(user_ids, payload, action)
        except Exception as exc:
            log.debug("dispatch.push_failed", action=action, error=str(exc))

    async def _deliver_webhooks(
        self, contractor_id: uuid.UUID, action: str, payload: PushPayload
    ) -> None:
        try:
            await self.webhooks.deliver(contractor_id, action, payload)
        except Exception as exc:
            log.warning(
                "dispatch.webhooks_failed",
                contractor_id=str(contractor_id),
                action=action,
                error=str(exc),
            )

    async def _members_with(self, contractor_id: Optional[uuid.UUID], flag: PermissionFlag) -> list[uuid.UUID]:
        if contractor_id is None:
            return []
        return await permissions.members_with_permission(self.session, contractor_id, flag)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def order_created(self, order: OrderEvent) -> None:
        if order.contractor_id:
            await self._dispatch(
                "order_create",
                order.order_id,
                order.customer_id,
                await self._members_with(order.contractor_id, PermissionFlag.MANAGE_ORDERS),
                payloads.order_payload(order, "order_create"),
                contractor_id=order.contractor_id,
            )
        if order.assigned_id:
            await self.order_assigned(order)

    async def order_assigned(self, order: OrderEvent) -> None:
        await self._dispatch(
            "order_assigned",
            order.order_id,
            order.customer_id,
            [order.assigned_id],
            payloads.order_payload(order, "order_assigned"),
        )

    async def order_message(self, order: OrderEvent, message: MessageEvent) -> None:
        await self._dispatch(
            "order_message",
            order.order_id,
            message.author,
            [order.assigned_id, order.customer_id],
            payloads.order_message_payload(order),
        )

    async def order_comment(self, order: OrderEvent, comment: OrderCommentEvent) -> None:
        await self._dispatch(
            "order_comment",
            comment.comment_id,
            comment.author,
            [order.assigned_id, order.customer_id],
            payloads.order_comment_payload(order, comment),
        )

    async def order_review(self, order: OrderEvent, review: ReviewEvent) -> None:
        await self._dispatch(
            "order_review",
            review.review_id,
            order.customer_id,
            [order.assigned_id],
            payloads.order_review_payload(review),
        )

    async def order_status_changed(
        self, order: OrderEvent, new_status: str, actor_id: uuid.UUID
    ) -> None:
        action = order_status_action(new_status)
        await self._dispatch(
            action,
            order.order_id,
            actor_id,
            [order.assigned_id, order.customer_id],
            payloads.order_payload(order, action),
            contractor_id=order.contractor_id,
        )

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    async def offer_created(self, offer: OfferSessionEvent, kind: OfferKind) -> None:
        action = "offer_create" if kind == "create" else "counter_offer_create"
        recipients = await self._members_with(offer.contractor_id, PermissionFlag.MANAGE_ORDERS)
        recipients.append(offer.assigned_id)
        await self._dispatch(
            action,
            offer.id,
            offer.customer_id,
            recipients,
            payloads.offer_payload(offer, kind),
            contractor_id=offer.contractor_id,
        )

    async def offer_message(self, offer: OfferSessionEvent, message: MessageEvent) -> None:
        await self._dispatch(
            "offer_message",
            offer.id,
            message.author,
            [offer.assigned_id, offer.customer_id],
            payloads.offer_message_payload(offer),
        )

    # ------------------------------------------------------------------
    # Market
    # ------------------------------------------------------------------

    async def _market_recipients(self, listing: MarketListingEvent) -> list[Optional[uuid.UUID]]:
        recipients: list[Optional[uuid.UUID]] = list(
            await self._members_with(listing.contractor_seller_id, PermissionFlag.MANAGE_MARKET)
        )
        recipients.append(listing.user_seller_id)
        return recipients

    async def market_bid(self, listing: MarketListingEvent, bid: MarketBidEvent) -> None:
        # Bids placed on behalf of a contractor carry no user actor
        if bid.user_bidder_id is None:
            log.debug("dispatch.market_bid_without_user", bid_id=str(bid.bid_id))
            return
        await self._dispatch(
            "market_item_bid",
            bid.bid_id,
            bid.user_bidder_id,
            await self._market_recipients(listing),
            payloads.market_bid_payload(listing, bid),
            contractor_id=listing.contractor_seller_id,
        )

    async def market_offer(self, listing: MarketListingEvent, offer: MarketOfferEvent) -> None:
        if offer.buyer_user_id is None:
            log.debug("dispatch.market_offer_without_user", offer_id=str(offer.offer_id))
            return
        await self._dispatch(
            "market_item_offer",
            offer.offer_id,
            offer.buyer_user_id,
            await self._market_recipients(listing),
            payloads.market_offer_payload(listing, offer),
            contractor_id=listing.contractor_seller_id,
        )

    # ------------------------------------------------------------------
    # Contractors, alerts, reviews
    # ------------------------------------------------------------------

    async def contractor_invite(self, invite: ContractorInvite) -> None:
        await self._dispatch(
            "contractor_invite",
            invite.id,
            invite.inviter_id,
            [invite.user_id],
            payloads.contractor_invite_payload(invite),
        )

    async def admin_alert(self, alert: AdminAlert) -> None:
        recipients = await alerts.users_for_alert_target(
            self.session, alert.target_type, alert.target_contractor_id
        )
        if not recipients:
            log.warning("dispatch.admin_alert_no_targets", alert_id=str(alert.id), target=alert.target_type)
            return
        await self._dispatch(
            "admin_alert",
            alert.id,
            alert.created_by,
            recipients,
            payloads.admin_alert_payload(alert),
        )

    async def review_revision_requested(self, review: ReviewEvent, requester_id: uuid.UUID) -> None:
        if review.user_author:
            recipients: list[Optional[uuid.UUID]] = [review.user_author]
        else:
            recipients = list(
                await self._members_with(review.contractor_author, PermissionFlag.MANAGE_ORDERS)
            )
        if not recipients:
            log.warning("dispatch.review_revision_no_recipients", review_id=str(review.review_id))
            return
        await self._dispatch(
            "order_review_revision_requested",
            review.review_id,
            requester_id,
            recipients,
            payloads.review_revision_payload(review),
            contractor_id=None if review.user_author else review.contractor_author,
        )
