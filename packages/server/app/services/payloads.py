"""Push payload formatters, one per notification kind."""

from __future__ import annotations

from typing import Any

from app.core.config import get_settings
from app.models.admin_alert import AdminAlert
from app.models.contractor_invite import ContractorInvite
from contractor_hub_shared.schemas.notifications import (
    MarketBidEvent,
    MarketListingEvent,
    MarketOfferEvent,
    OfferKind,
    OfferSessionEvent,
    OrderCommentEvent,
    OrderEvent,
    PushPayload,
    PushPayloadData,
    ReviewEvent,
)

settings = get_settings()

ORDER_TITLES = {
    "order_create": ("New Order Created", 'A new order "{title}" has been created'),
    "order_assigned": ("Order Assigned", 'You have been assigned to order "{title}"'),
    "order_status_fulfilled": ("Order Fulfilled", 'Order "{title}" has been fulfilled'),
    "order_status_in_progress": ("Order In Progress", 'Order "{title}" is now in progress'),
    "order_status_not_started": (
        "Order Status Updated",
        'Order "{title}" status updated to not started',
    ),
    "order_status_cancelled": ("Order Cancelled", 'Order "{title}" has been cancelled'),
}


def _payload(
    title: str,
    body: str,
    *,
    path: str | None = None,
    url: str | None = None,
    type: str,
    entity_id: Any,
    action: str,
    tag: str,
    require_interaction: bool = False,
    **extra: Any,
) -> PushPayload:
    base = settings.base_url.rstrip("/")
    return PushPayload(
        title=title,
        body=body,
        icon=f"{base}/favicon.ico",
        badge=f"{base}/favicon.ico",
        data=PushPayloadData(
            url=url or f"{base}{path}",
            type=type,
            entity_id=str(entity_id),
            action=action,
            extra={k: str(v) for k, v in extra.items()},
        ),
        tag=tag,
        require_interaction=require_interaction,
    )


def order_payload(order: OrderEvent, action: str) -> PushPayload:
    name = order.title or "Untitled"
    title, body = ORDER_TITLES.get(action, ("New Order", "Order: {title}"))
    return _payload(
        title,
        body.format(title=name),
        path=f"/orders/{order.order_id}",
        type="order",
        entity_id=order.order_id,
        action=action,
        tag=f"order-{order.order_id}",
    )


def order_message_payload(order: OrderEvent) -> PushPayload:
    return _payload(
        "New Message",
        f'New message in order "{order.title or "Untitled"}"',
        path=f"/orders/{order.order_id}",
        type="order",
        entity_id=order.order_id,
        action="order_message",
        tag=f"order-message-{order.order_id}",
    )


def order_comment_payload(order: OrderEvent, comment: OrderCommentEvent) -> PushPayload:
    return _payload(
        "New Comment",
        f'New comment on order "{order.title or "Untitled"}"',
        path=f"/orders/{order.order_id}",
        type="order",
        entity_id=order.order_id,
        action="order_comment",
        tag=f"order-comment-{order.order_id}",
        commentId=comment.comment_id,
    )


def order_review_payload(review: ReviewEvent) -> PushPayload:
    return _payload(
        "New Review",
        "You have received a new review",
        path=f"/orders/{review.order_id}",
        type="order_review",
        entity_id=review.review_id,
        action="order_review",
        tag=f"order-review-{review.review_id}",
    )


def review_revision_payload(review: ReviewEvent) -> PushPayload:
    return _payload(
        "Review Revision Requested",
        "A revision has been requested for your review",
        path=f"/orders/{review.order_id}",
        type="order_review",
        entity_id=review.review_id,
        action="order_review_revision_requested",
        tag=f"order-review-revision-{review.review_id}",
    )


def offer_payload(offer: OfferSessionEvent, kind: OfferKind) -> PushPayload:
    created = kind == "create"
    return _payload(
        "New Offer" if created else "Counter-Offer",
        "A new offer has been submitted" if created else "A counter-offer has been submitted",
        path=f"/offers/{offer.id}",
        type="offer",
        entity_id=offer.id,
        action="offer_create" if created else "counter_offer_create",
        tag=f"offer-{offer.id}",
    )


def offer_message_payload(offer: OfferSessionEvent) -> PushPayload:
    return _payload(
        "New Message",
        "New message in offer session",
        path=f"/offers/{offer.id}",
        type="offer",
        entity_id=offer.id,
        action="offer_message",
        tag=f"offer-message-{offer.id}",
    )


def market_bid_payload(listing: MarketListingEvent, bid: MarketBidEvent) -> PushPayload:
    return _payload(
        "New Bid",
        f'A new bid has been placed on "{listing.title or "your listing"}"',
        path=f"/market/{listing.listing_id}",
        type="market_listing",
        entity_id=listing.listing_id,
        action="market_item_bid",
        tag=f"market-bid-{bid.bid_id}",
        bidId=bid.bid_id,
    )


def market_offer_payload(listing: MarketListingEvent, offer: MarketOfferEvent) -> PushPayload:
    return _payload(
        "New Offer",
        "A new offer has been made on your listing",
        path=f"/market/{listing.listing_id}",
        type="market_listing",
        entity_id=listing.listing_id,
        action="market_item_offer",
        tag=f"market-offer-{offer.offer_id}",
        offerId=offer.offer_id,
    )


def contractor_invite_payload(invite: ContractorInvite) -> PushPayload:
    return _payload(
        "Contractor Invitation",
        "You have been invited to join a contractor organization",
        path="/contractors",
        type="contractor_invite",
        entity_id=invite.id,
        action="contractor_invite",
        tag=f"contractor-invite-{invite.id}",
    )


def admin_alert_payload(alert: AdminAlert) -> PushPayload:
    return _payload(
        alert.title,
        alert.content,
        path="/admin",
        url=alert.link,
        type="admin_alert",
        entity_id=alert.id,
        action="admin_alert",
        tag=f"admin-alert-{alert.id}",
        require_interaction=True,
    )
