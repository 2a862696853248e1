"""Tests for seller earnings and payouts."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from marketplace.actor import Actor
from marketplace.errors import (
    AlreadyProcessedError,
    AuthorizationError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import OrderItem, PayoutStatus
from marketplace.services.payout_service import (
    create_payout,
    mark_payout_processed,
    seller_earnings,
)
from marketplace.services.refund_service import process_refund

from conftest import advance_item, deliver_item, pay, payout_window


@pytest.fixture
def seller_actor(seller):
    return Actor.from_user(seller.user)


@pytest.fixture
def admin_actor(admin):
    return Actor.from_user(admin)


@pytest.fixture
def delivered_order(customer, seller, make_variant, place, seller_actor):
    order = pay(place(customer, [(make_variant(seller, price="30.00"), 1)]))
    deliver_item(order.items.first(), seller_actor)
    return order


class TestSellerEarnings:
    def test_delivered_is_available_and_in_flight_is_pending(
            self, customer, seller, make_variant, place, seller_actor,
            delivered_order):
        in_flight = pay(place(
            customer, [(make_variant(seller, price="20.00"), 1)]))
        advance_item(in_flight.items.first(), seller_actor,
                     "processing", "shipped")

        earnings = seller_earnings(seller.id)

        assert earnings.available == Decimal("30.00")
        assert earnings.pending == Decimal("20.00")
        assert earnings.total_earned == Decimal("30.00")
        assert earnings.commission_rate == Decimal("10")

    def test_refunded_orders_excluded(
            self, seller, delivered_order, admin_actor):
        process_refund(admin_actor, delivered_order.id)

        earnings = seller_earnings(seller.id)

        assert earnings.available == Decimal("0.00")
        assert earnings.total_earned == Decimal("0.00")


class TestPayouts:
    def test_payout_batches_delivered_lines(
            self, seller, delivered_order, admin_actor):
        start, end = payout_window()

        payout = create_payout(admin_actor, seller.id, start, end)

        item = delivered_order.items.first()
        assert payout.amount == Decimal("30.00")
        assert payout.order_item_ids == [item.id]
        assert payout.status == PayoutStatus.PENDING
        assert db.session.get(OrderItem, item.id).payout_id == payout.id
        assert seller_earnings(seller.id).available == Decimal("0.00")

    def test_lines_are_paid_out_once(
            self, seller, delivered_order, admin_actor):
        start, end = payout_window()
        create_payout(admin_actor, seller.id, start, end)

        with pytest.raises(ValidationError):
            create_payout(admin_actor, seller.id, start, end)

    def test_period_outside_deliveries_is_empty(
            self, seller, delivered_order, admin_actor):
        start = datetime.utcnow() - timedelta(days=30)
        end = datetime.utcnow() - timedelta(days=20)

        with pytest.raises(ValidationError):
            create_payout(admin_actor, seller.id, start, end)

    def test_processed_payout_is_immutable(
            self, seller, delivered_order, admin_actor):
        payout = create_payout(admin_actor, seller.id, *payout_window())

        payout = mark_payout_processed(
            admin_actor, payout.id, True, transfer_reference="tr_1")
        assert payout.status == PayoutStatus.PAID
        assert payout.processed_at is not None

        with pytest.raises(AlreadyProcessedError):
            mark_payout_processed(admin_actor, payout.id, False)

    def test_failed_payout_frees_lines(
            self, seller, delivered_order, admin_actor):
        start, end = payout_window()
        payout = create_payout(admin_actor, seller.id, start, end)

        mark_payout_processed(
            admin_actor, payout.id, False, failure_reason="bank rejected")
        retry = create_payout(admin_actor, seller.id, start, end)

        assert retry.id != payout.id
        assert retry.amount == Decimal("30.00")

    def test_seller_cannot_create_payout(
            self, seller, delivered_order, seller_actor):
        with pytest.raises(AuthorizationError):
            create_payout(seller_actor, seller.id, *payout_window())
