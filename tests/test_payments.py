"""Tests for provider payment events."""

from decimal import Decimal

import pytest

from marketplace.errors import (
    AlreadyProcessedError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import Inventory, OrderStatus, PaymentStatus
from marketplace.services.payment_service import (
    MockPaymentGateway,
    PaymentEvent,
    apply_payment_event,
)

from conftest import pay, stock


@pytest.fixture
def variant(seller, make_variant):
    return make_variant(seller, price="25.00", quantity=5)


@pytest.fixture
def order(customer, variant, place):
    return place(customer, [(variant, 2)])


class TestApplyPaymentEvent:
    def test_success_confirms_and_takes_stock(self, order, variant):
        confirmed = pay(order)

        assert confirmed.status == OrderStatus.CONFIRMED
        assert confirmed.payment_status == PaymentStatus.SUCCEEDED
        assert confirmed.payment_reference == f"pi_{order.id}"
        inv = stock(variant)
        assert inv.quantity == 3
        assert inv.reserved_quantity == 0

    def test_failure_leaves_order_pending(self, order, variant):
        apply_payment_event(PaymentEvent(
            order_id=order.id, amount=order.grand_total, succeeded=False,
            failure_reason="card declined"))

        db.session.refresh(order)
        assert order.payment_status == PaymentStatus.FAILED
        assert order.status == OrderStatus.PENDING
        assert stock(variant).reserved_quantity == 2

    def test_amount_mismatch_rejected(self, order):
        with pytest.raises(ValidationError):
            apply_payment_event(PaymentEvent(
                order_id=order.id, amount=Decimal("1.00"), succeeded=True))

        db.session.refresh(order)
        assert order.payment_status == PaymentStatus.PENDING

    def test_duplicate_success_rejected(self, order):
        pay(order)

        with pytest.raises(AlreadyProcessedError):
            pay(order)

    def test_unknown_order(self, app):
        with pytest.raises(NotFoundError):
            apply_payment_event(PaymentEvent(
                order_id=424242, amount=Decimal("1.00"), succeeded=True))

    def test_stock_shortfall_keeps_payment_record(self, order, variant):
        # Stock written off between checkout and payment.
        Inventory.query.filter_by(variant_id=variant.id).update(
            {Inventory.quantity: 1})
        db.session.commit()

        with pytest.raises(InsufficientStockError):
            pay(order)

        db.session.refresh(order)
        assert order.payment_status == PaymentStatus.SUCCEEDED
        assert order.status == OrderStatus.PENDING
        assert stock(variant).reserved_quantity == 2


class TestMockGateway:
    def test_refund_reference(self, order):
        gateway = MockPaymentGateway()

        reference = gateway.request_refund(order, Decimal("5.00"))

        assert reference.startswith(f"MOCK_REFUND_{order.id}_")
        assert gateway.refunds == [(order.id, Decimal("5.00"), reference)]
