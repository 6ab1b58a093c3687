"""
Tests for the notification fan-out dispatcher.

Covers:
- Actor self-suppression and recipient de-duplication
- Order, offer, market, invite and alert recipient resolution
- Push goes to the newly notified only; webhooks for contractor events
- Delivery failures never roll back or block notification rows
- Push payload wire format
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import func
from sqlmodel import select

from app.models.admin_alert import AdminAlert
from app.models.contractor_invite import ContractorInvite
from app.models.notification import Notification, NotificationChange, NotificationObject
from app.services import payloads
from app.services.dispatcher import NotificationDispatcher
from contractor_hub_shared.schemas.notifications import (
    MarketBidEvent,
    MarketListingEvent,
    MarketOfferEvent,
    MessageEvent,
    OfferSessionEvent,
    OrderCommentEvent,
    OrderEvent,
    ReviewEvent,
)

from conftest import FakePush, FakeWebhooks


async def _recipients(session, entity_id) -> list[uuid.UUID]:
    result = await session.execute(
        select(Notification.notifier_id)
        .join(NotificationObject, Notification.notification_object_id == NotificationObject.id)
        .where(NotificationObject.entity_id == entity_id)
    )
    return sorted(result.scalars().all())


async def _changes(session, entity_id) -> list[NotificationChange]:
    result = await session.execute(
        select(NotificationChange)
        .join(NotificationObject, NotificationChange.notification_object_id == NotificationObject.id)
        .where(NotificationObject.entity_id == entity_id)
    )
    return list(result.scalars().all())


@pytest.fixture
def dispatcher(session, fake_push, fake_webhooks):
    return NotificationDispatcher(session, push=fake_push, webhooks=fake_webhooks)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class TestOrderEvents:
    @pytest.mark.asyncio
    async def test_order_created_notifies_order_managers(
        self, session, dispatcher, fake_push, fake_webhooks, make_user, make_contractor, make_role, grant
    ):
        owner, clerk, customer = await make_user(), await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(clerk, await make_role(contractor, "Clerks", 20, manage_orders=True))

        order = OrderEvent(order_id=uuid.uuid4(), title="Hauling", customer_id=customer.id, contractor_id=contractor.id)
        await dispatcher.order_created(order)

        assert await _recipients(session, order.order_id) == sorted([owner.id, clerk.id])
        user_ids, payload, action = fake_push.calls[0]
        assert sorted(user_ids) == sorted([owner.id, clerk.id])
        assert action == "order_create"
        assert payload.data.url.endswith(f"/orders/{order.order_id}")
        assert fake_webhooks.calls == [(contractor.id, "order_create", payload)]

    @pytest.mark.asyncio
    async def test_order_created_for_user_also_notifies_assignee(self, session, dispatcher, make_user):
        customer, assignee = await make_user(), await make_user()
        order = OrderEvent(order_id=uuid.uuid4(), customer_id=customer.id, assigned_id=assignee.id)
        await dispatcher.order_created(order)
        assert await _recipients(session, order.order_id) == [assignee.id]

    @pytest.mark.asyncio
    async def test_message_author_is_not_notified(self, session, dispatcher, fake_push, make_user):
        customer, assignee = await make_user(), await make_user()
        order = OrderEvent(order_id=uuid.uuid4(), customer_id=customer.id, assigned_id=assignee.id)
        await dispatcher.order_message(order, MessageEvent(message_id=uuid.uuid4(), author=customer.id))

        assert await _recipients(session, order.order_id) == [assignee.id]
        assert fake_push.calls[0][0] == [assignee.id]

    @pytest.mark.asyncio
    async def test_status_change_by_assignee_notifies_customer(
        self, session, dispatcher, fake_webhooks, make_user, make_contractor
    ):
        owner, customer, assignee = await make_user(), await make_user(), await make_user()
        contractor = await make_contractor(owner)
        order = OrderEvent(
            order_id=uuid.uuid4(), customer_id=customer.id, assigned_id=assignee.id, contractor_id=contractor.id
        )
        await dispatcher.order_status_changed(order, "in-progress", assignee.id)

        assert await _recipients(session, order.order_id) == [customer.id]
        changes = await _changes(session, order.order_id)
        assert [c.actor_id for c in changes] == [assignee.id]
        assert fake_webhooks.calls[0][1] == "order_status_in_progress"

    @pytest.mark.asyncio
    async def test_repeated_messages_coalesce(self, session, dispatcher, fake_push, make_user):
        customer, assignee = await make_user(), await make_user()
        order = OrderEvent(order_id=uuid.uuid4(), customer_id=customer.id, assigned_id=assignee.id)
        for _ in range(3):
            await dispatcher.order_message(order, MessageEvent(message_id=uuid.uuid4(), author=customer.id))

        assert await _recipients(session, order.order_id) == [assignee.id]
        assert len(await _changes(session, order.order_id)) == 3
        # Only the first occurrence created a notification, so only it pushed
        assert len(fake_push.calls) == 1

    @pytest.mark.asyncio
    async def test_comment_and_review_use_their_own_entity(self, session, dispatcher, make_user):
        customer, assignee = await make_user(), await make_user()
        order = OrderEvent(order_id=uuid.uuid4(), customer_id=customer.id, assigned_id=assignee.id)
        comment = OrderCommentEvent(comment_id=uuid.uuid4(), order_id=order.order_id, author=assignee.id)
        review = ReviewEvent(review_id=uuid.uuid4(), order_id=order.order_id, user_author=customer.id)

        await dispatcher.order_comment(order, comment)
        await dispatcher.order_review(order, review)

        assert await _recipients(session, comment.comment_id) == [customer.id]
        assert await _recipients(session, review.review_id) == [assignee.id]

    @pytest.mark.asyncio
    async def test_only_actor_means_nothing_is_created(self, session, dispatcher, fake_push, make_user):
        customer = await make_user()
        order = OrderEvent(order_id=uuid.uuid4(), customer_id=customer.id, assigned_id=customer.id)
        await dispatcher.order_message(order, MessageEvent(message_id=uuid.uuid4(), author=customer.id))

        count = (await session.execute(select(func.count()).select_from(NotificationObject))).scalar_one()
        assert count == 0
        assert fake_push.calls == []


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------

class TestOfferEvents:
    @pytest.mark.asyncio
    async def test_offer_and_counteroffer_actions(self, session, dispatcher, fake_push, make_user):
        customer, assignee = await make_user(), await make_user()
        offer = OfferSessionEvent(id=uuid.uuid4(), customer_id=customer.id, assigned_id=assignee.id)

        await dispatcher.offer_created(offer, "create")
        await dispatcher.offer_created(offer, "counteroffer")

        assert [call[2] for call in fake_push.calls] == ["offer_create", "counter_offer_create"]
        assert await _recipients(session, offer.id) == [assignee.id, assignee.id]

    @pytest.mark.asyncio
    async def test_offer_message(self, session, dispatcher, make_user):
        customer, assignee = await make_user(), await make_user()
        offer = OfferSessionEvent(id=uuid.uuid4(), customer_id=customer.id, assigned_id=assignee.id)
        await dispatcher.offer_message(offer, MessageEvent(message_id=uuid.uuid4(), author=assignee.id))
        assert await _recipients(session, offer.id) == [customer.id]


# ---------------------------------------------------------------------------
# Market
# ---------------------------------------------------------------------------

class TestMarketEvents:
    @pytest.mark.asyncio
    async def test_bid_on_contractor_listing(
        self, session, make_user, make_contractor, make_role, grant
    ):
        owner, trader, bidder = await make_user(), await make_user(), await make_user()
        contractor = await make_contractor(owner)
        await grant(trader, await make_role(contractor, "Traders", 20, manage_market=True))

        push, webhooks = FakePush(fail=True), FakeWebhooks(fail=True)
        dispatcher = NotificationDispatcher(session, push=push, webhooks=webhooks)
        listing = MarketListingEvent(listing_id=uuid.uuid4(), title="Hull plating", contractor_seller_id=contractor.id)
        bid = MarketBidEvent(bid_id=uuid.uuid4(), listing_id=listing.listing_id, user_bidder_id=bidder.id, bid=1500)

        await dispatcher.market_bid(listing, bid)

        assert await _recipients(session, bid.bid_id) == sorted([owner.id, trader.id])
        changes = await _changes(session, bid.bid_id)
        assert [c.actor_id for c in changes] == [bidder.id]
        # Both deliveries were attempted and failed; rows are untouched
        assert len(push.calls) == 1 and len(webhooks.calls) == 1

    @pytest.mark.asyncio
    async def test_offer_on_user_listing(self, session, dispatcher, make_user):
        seller, buyer = await make_user(), await make_user()
        listing = MarketListingEvent(listing_id=uuid.uuid4(), user_seller_id=seller.id)
        offer = MarketOfferEvent(offer_id=uuid.uuid4(), listing_id=listing.listing_id, buyer_user_id=buyer.id, offer=20)

        await dispatcher.market_offer(listing, offer)
        assert await _recipients(session, offer.offer_id) == [seller.id]

    @pytest.mark.asyncio
    async def test_contractor_bidder_is_skipped(self, session, dispatcher, fake_push, make_user):
        seller = await make_user()
        listing = MarketListingEvent(listing_id=uuid.uuid4(), user_seller_id=seller.id)
        bid = MarketBidEvent(bid_id=uuid.uuid4(), listing_id=listing.listing_id, contractor_bidder_id=uuid.uuid4())

        await dispatcher.market_bid(listing, bid)
        assert await _recipients(session, bid.bid_id) == []
        assert fake_push.calls == []


# ---------------------------------------------------------------------------
# Invites, alerts, review revisions
# ---------------------------------------------------------------------------

class TestOtherEvents:
    @pytest.mark.asyncio
    async def test_contractor_invite(self, session, dispatcher, make_user, make_contractor):
        owner, invitee = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        invite = ContractorInvite(contractor_id=contractor.id, user_id=invitee.id, inviter_id=owner.id)
        session.add(invite)
        await session.flush()

        await dispatcher.contractor_invite(invite)
        assert await _recipients(session, invite.id) == [invitee.id]
        assert [c.actor_id for c in await _changes(session, invite.id)] == [owner.id]

    @pytest.mark.asyncio
    async def test_admin_alert_reaches_everyone_but_banned_and_author(
        self, session, dispatcher, fake_push, make_user
    ):
        admin = await make_user(role="admin")
        alice, bob = await make_user(), await make_user()
        await make_user(banned=True)
        alert = AdminAlert(title="Maintenance", content="Down at noon", target_type="all_users", created_by=admin.id)
        session.add(alert)
        await session.flush()

        await dispatcher.admin_alert(alert)
        assert await _recipients(session, alert.id) == sorted([alice.id, bob.id])
        payload = fake_push.calls[0][1]
        assert payload.require_interaction is True

    @pytest.mark.asyncio
    async def test_review_revision_for_contractor_author(
        self, session, dispatcher, fake_webhooks, make_user, make_contractor
    ):
        owner, customer = await make_user(), await make_user()
        contractor = await make_contractor(owner)
        review = ReviewEvent(review_id=uuid.uuid4(), order_id=uuid.uuid4(), contractor_author=contractor.id)

        await dispatcher.review_revision_requested(review, customer.id)
        assert await _recipients(session, review.review_id) == [owner.id]
        assert fake_webhooks.calls[0][1] == "order_review_revision_requested"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

class TestPayloads:
    def test_wire_format_flattens_extra(self):
        listing = MarketListingEvent(listing_id=uuid.uuid4(), title="Quantum drive")
        bid = MarketBidEvent(bid_id=uuid.uuid4(), listing_id=listing.listing_id, bid=250)
        wire = payloads.market_bid_payload(listing, bid).to_wire()

        assert wire["data"]["entityId"] == str(listing.listing_id)
        assert wire["data"]["bidId"] == str(bid.bid_id)
        assert wire["data"]["action"] == "market_item_bid"
        assert "extra" not in wire["data"]
        assert "requireInteraction" in wire

    def test_admin_alert_link_overrides_url(self):
        alert = AdminAlert(
            id=uuid.uuid4(),
            title="Patch",
            content="New patch notes",
            link="https://example.com/notes",
            target_type="all_users",
            created_by=uuid.uuid4(),
        )
        payload = payloads.admin_alert_payload(alert)
        assert payload.data.url == "https://example.com/notes"
        assert payload.require_interaction is True
