"""
Notification schemas: domain event inputs for the fan-out dispatcher,
push payloads, and the notification read API.

Domain entities (orders, offers, market listings, ...) are owned by other
services; the dispatcher only needs the typed subset of their fields below.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from .common import Pagination


# ---------------------------------------------------------------------------
# Action types
# ---------------------------------------------------------------------------

# action name -> entity table the notification object points at
NOTIFICATION_ACTIONS: dict[str, str] = {
    "order_create": "orders",
    "order_assigned": "orders",
    "order_message": "orders",
    "order_comment": "order_comments",
    "order_review": "order_reviews",
    "order_status_fulfilled": "orders",
    "order_status_in_progress": "orders",
    "order_status_not_started": "orders",
    "order_status_cancelled": "orders",
    "offer_create": "offer_sessions",
    "counter_offer_create": "offer_sessions",
    "offer_message": "offer_sessions",
    "market_item_bid": "market_bids",
    "market_item_offer": "market_offers",
    "contractor_invite": "contractor_invites",
    "admin_alert": "admin_alerts",
    "order_review_revision_requested": "order_reviews",
}


def order_status_action(status: str) -> str:
    """Action name for an order status change, e.g. in-progress -> order_status_in_progress."""
    return f"order_status_{status.replace('-', '_')}"


class AlertTargetType(str, Enum):
    ALL_USERS = "all_users"
    ORG_MEMBERS = "org_members"
    ORG_OWNERS = "org_owners"
    ADMINS_ONLY = "admins_only"
    SPECIFIC_ORG = "specific_org"


# ---------------------------------------------------------------------------
# Domain event inputs
# ---------------------------------------------------------------------------

class OrderEvent(BaseModel):
    order_id: uuid.UUID
    title: str = ""
    customer_id: uuid.UUID
    assigned_id: Optional[uuid.UUID] = None
    contractor_id: Optional[uuid.UUID] = None
    status: str = "not-started"


class MessageEvent(BaseModel):
    message_id: uuid.UUID
    author: Optional[uuid.UUID] = None
    content: str = ""


class OrderCommentEvent(BaseModel):
    comment_id: uuid.UUID
    order_id: uuid.UUID
    author: uuid.UUID
    content: str = ""


class ReviewEvent(BaseModel):
    review_id: uuid.UUID
    order_id: uuid.UUID
    user_author: Optional[uuid.UUID] = None
    contractor_author: Optional[uuid.UUID] = None
    rating: Optional[float] = None
    content: str = ""


class OfferSessionEvent(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    assigned_id: Optional[uuid.UUID] = None
    contractor_id: Optional[uuid.UUID] = None


class MarketListingEvent(BaseModel):
    listing_id: uuid.UUID
    title: Optional[str] = None
    user_seller_id: Optional[uuid.UUID] = None
    contractor_seller_id: Optional[uuid.UUID] = None


class MarketBidEvent(BaseModel):
    bid_id: uuid.UUID
    listing_id: uuid.UUID
    user_bidder_id: Optional[uuid.UUID] = None
    contractor_bidder_id: Optional[uuid.UUID] = None
    bid: float = 0


class MarketOfferEvent(BaseModel):
    offer_id: uuid.UUID
    listing_id: uuid.UUID
    buyer_user_id: Optional[uuid.UUID] = None
    buyer_contractor_id: Optional[uuid.UUID] = None
    offer: float = 0


OfferKind = Literal["create", "counteroffer"]


# ---------------------------------------------------------------------------
# Push payloads
# ---------------------------------------------------------------------------

class PushPayloadData(BaseModel):
    url: str
    type: str
    entity_id: str = Field(serialization_alias="entityId")
    action: str
    extra: dict[str, Any] = Field(default_factory=dict)


class PushPayload(BaseModel):
    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    data: Optional[PushPayloadData] = None
    tag: Optional[str] = None
    require_interaction: bool = Field(default=False, serialization_alias="requireInteraction")
    silent: bool = False

    def to_wire(self) -> dict[str, Any]:
        """JSON body sent to the push service / webhook receiver."""
        body = self.model_dump(by_alias=True, exclude_none=True)
        data = body.get("data")
        if data is not None:
            data.update(data.pop("extra", {}))
        return body


# ---------------------------------------------------------------------------
# Admin alerts
# ---------------------------------------------------------------------------

class AdminAlertCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=5000)
    link: Optional[str] = None
    target_type: AlertTargetType
    target_contractor_id: Optional[uuid.UUID] = None


class AdminAlertResponse(BaseModel):
    id: uuid.UUID
    title: str
    content: str
    link: Optional[str] = None
    target_type: AlertTargetType
    target_contractor_id: Optional[uuid.UUID] = None
    created_by: uuid.UUID
    created_at: datetime
    active: bool = True

    model_config = {"from_attributes": True}


class AdminAlertUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their value. Recipients are not re-notified."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    link: Optional[str] = None
    target_type: Optional[AlertTargetType] = None
    target_contractor_id: Optional[uuid.UUID] = None
    active: Optional[bool] = None


class AdminAlertPage(BaseModel):
    data: list[AdminAlertResponse]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Read API
# ---------------------------------------------------------------------------

class NotificationItem(BaseModel):
    id: uuid.UUID
    notification_object_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: uuid.UUID
    timestamp: datetime
    read: bool
    actors: list[uuid.UUID] = Field(default_factory=list)


class NotificationPage(BaseModel):
    data: list[NotificationItem]
    pagination: Pagination
    unread_count: int


class NotificationReadRequest(BaseModel):
    read: Literal[True] = Field(
        ...,
        description="Only true is accepted; read notifications never become unread",
    )


class UnreadCountResponse(BaseModel):
    unread_count: int


class NotificationBulkDeleteRequest(BaseModel):
    """``notification_ids`` omitted, empty, or no body at all deletes every notification."""

    notification_ids: Optional[list[uuid.UUID]] = None


class NotificationBulkDeleteResponse(BaseModel):
    deleted: int
