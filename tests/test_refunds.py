"""Tests for full-order refunds."""

from decimal import Decimal

import pytest

from marketplace.actor import Actor
from marketplace.errors import (
    AlreadyProcessedError,
    AuthorizationError,
    InvalidTransitionError,
)
from marketplace.extensions import db
from marketplace.models import (
    OrderStatus,
    PaymentStatus,
    RefundEntry,
    RefundStatus,
)
from marketplace.services import notification_service
from marketplace.services.payment_service import (
    PaymentGateway,
    PaymentGatewayError,
)
from marketplace.services.payout_service import aggregate_seller_revenue
from marketplace.services.refund_service import process_refund

from conftest import advance_item, pay, stock


class DecliningGateway(PaymentGateway):
    name = "declining"

    def request_refund(self, order, amount):
        raise PaymentGatewayError("card issuer unavailable")


@pytest.fixture
def variant(seller, make_variant):
    return make_variant(seller, price="40.00", quantity=10)


@pytest.fixture
def paid_order(customer, variant, place):
    return pay(place(customer, [(variant, 2)]))


@pytest.fixture
def admin_actor(admin):
    return Actor.from_user(admin)


class TestProcessRefund:
    def test_refund_marks_order_and_records_entry(
            self, paid_order, admin_actor, variant):
        entry = process_refund(admin_actor, paid_order.id, "damaged")

        db.session.refresh(paid_order)
        assert paid_order.status == OrderStatus.REFUNDED
        assert paid_order.payment_status == PaymentStatus.REFUNDED
        assert paid_order.refunded_at is not None
        assert entry.amount == paid_order.grand_total
        assert entry.status == RefundStatus.SUCCEEDED
        assert entry.provider_reference.startswith(
            f"MOCK_REFUND_{paid_order.id}_")
        assert stock(variant).quantity == 10

    def test_second_refund_is_rejected_without_new_entry(
            self, paid_order, admin_actor):
        process_refund(admin_actor, paid_order.id)

        with pytest.raises(AlreadyProcessedError):
            process_refund(admin_actor, paid_order.id)

        assert RefundEntry.query.filter_by(
            order_id=paid_order.id).count() == 1

    def test_commission_and_seller_amounts_untouched(
            self, paid_order, admin_actor):
        item = paid_order.items.first()
        commission, seller_amount = item.commission_amount, item.seller_amount

        process_refund(admin_actor, paid_order.id)

        db.session.refresh(item)
        assert item.commission_amount == commission
        assert item.seller_amount == seller_amount

    def test_revenue_excludes_refunded_orders(
            self, paid_order, admin_actor, seller):
        assert aggregate_seller_revenue(seller.id) == Decimal("80.00")

        process_refund(admin_actor, paid_order.id)

        assert aggregate_seller_revenue(seller.id) == Decimal("0.00")

    def test_shipped_lines_keep_their_stock_out(
            self, paid_order, admin_actor, seller, variant):
        advance_item(paid_order.items.first(), Actor.from_user(seller.user),
                     "processing", "shipped")

        process_refund(admin_actor, paid_order.id)

        assert stock(variant).quantity == 8

    def test_unpaid_order_cannot_be_refunded(
            self, customer, variant, place, admin_actor):
        order = place(customer, [(variant, 1)])

        with pytest.raises(InvalidTransitionError):
            process_refund(admin_actor, order.id)

        assert RefundEntry.query.count() == 0

    def test_only_admin_may_refund(self, paid_order, customer):
        with pytest.raises(AuthorizationError):
            process_refund(Actor.from_user(customer), paid_order.id)

    def test_gateway_failure_is_recorded(
            self, app, paid_order, admin_actor):
        app.extensions["payment_gateway"] = DecliningGateway()

        entry = process_refund(admin_actor, paid_order.id)

        assert entry.status == RefundStatus.FAILED
        assert entry.failure_reason == "card issuer unavailable"
        db.session.refresh(paid_order)
        assert paid_order.status == OrderStatus.REFUNDED

    def test_refund_event_emitted(self, paid_order, admin_actor):
        received = []
        notification_service.subscribe(
            notification_service.ORDER_REFUNDED,
            lambda event, payload: received.append(payload))

        process_refund(admin_actor, paid_order.id)

        assert received[0]["order_id"] == paid_order.id
