"""Pytest fixtures for marketplace tests."""

from datetime import datetime, timedelta
from decimal import Decimal
import itertools

import pytest

from marketplace import create_app
from marketplace.actor import Actor
from marketplace.config import TestConfig
from marketplace.extensions import db
from marketplace.models import (
    Inventory,
    Product,
    ProductStatus,
    ProductVariant,
    SellerProfile,
    SellerStatus,
    User,
    UserRole,
)
from marketplace.services import notification_service
from marketplace.services.checkout_service import place_order
from marketplace.services.order_state_service import transition_order_item
from marketplace.services.payment_service import (
    PaymentEvent,
    apply_payment_event,
)

ADDRESS = {
    "recipient_name": "Jane Doe",
    "line1": "1 Main Street",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}

_seq = itertools.count(1)


@pytest.fixture
def app():
    """Create an app bound to a fresh in-memory database."""
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    notification_service.clear()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(role=UserRole.CUSTOMER, email=None):
    user = User(
        email=email or f"user{next(_seq)}@example.com",
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def customer(app):
    return make_user(UserRole.CUSTOMER)


@pytest.fixture
def other_customer(app):
    return make_user(UserRole.CUSTOMER)


@pytest.fixture
def admin(app):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def make_seller(app):
    """Factory for seller users with a profile."""

    def _make(commission_rate="10", status=SellerStatus.APPROVED):
        n = next(_seq)
        user = make_user(UserRole.SELLER, email=f"seller{n}@example.com")
        profile = SellerProfile(
            user_id=user.id,
            store_name=f"Store {n}",
            store_slug=f"store-{n}",
            commission_rate=Decimal(commission_rate),
            status=status,
        )
        db.session.add(profile)
        db.session.commit()
        return profile

    return _make


@pytest.fixture
def seller(make_seller):
    return make_seller()


@pytest.fixture
def make_variant(app):
    """Factory for a product variant with an inventory row."""

    def _make(seller, price="25.00", quantity=10, track_inventory=True,
              allow_backorder=False, low_stock_threshold=5, product=None):
        n = next(_seq)
        if product is None:
            product = Product(
                seller_id=seller.id,
                name=f"Product {n}",
                slug=f"product-{n}",
                status=ProductStatus.ACTIVE,
            )
            db.session.add(product)
            db.session.flush()
        variant = ProductVariant(
            product_id=product.id,
            sku=f"SKU-{n}",
            price=Decimal(price),
            options={"size": "M"},
        )
        db.session.add(variant)
        db.session.flush()
        db.session.add(Inventory(
            variant_id=variant.id,
            quantity=quantity,
            reserved_quantity=0,
            low_stock_threshold=low_stock_threshold,
            track_inventory=track_inventory,
            allow_backorder=allow_backorder,
        ))
        db.session.commit()
        return variant

    return _make


@pytest.fixture
def place(app):
    """Place an order for ``user`` from ``(variant, quantity)`` pairs."""

    def _place(user, lines):
        return place_order(
            Actor.from_user(user),
            [(variant.id, qty) for variant, qty in lines],
            dict(ADDRESS),
        )

    return _place


def pay(order):
    """Deliver a successful provider event for the full order total."""
    return apply_payment_event(PaymentEvent(
        order_id=order.id,
        amount=order.grand_total,
        succeeded=True,
        reference=f"pi_{order.id}",
    ))


def advance_item(item, actor, *statuses, tracking_number=None):
    for status in statuses:
        item = transition_order_item(
            actor, item.id, status, tracking_number=tracking_number)
    return item


def deliver_item(item, actor):
    return advance_item(item, actor, "processing", "shipped", "delivered")


def stock(variant):
    inv = Inventory.query.filter_by(variant_id=variant.id).one()
    db.session.refresh(inv)
    return inv


def payout_window():
    now = datetime.utcnow()
    return now - timedelta(days=1), now + timedelta(days=1)


def login(client, user):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user.id)
        sess["_fresh"] = True
