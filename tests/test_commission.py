"""Tests for commission splitting and rate changes."""

from decimal import Decimal

import pytest

from marketplace.actor import Actor
from marketplace.errors import AuthorizationError, NotFoundError, ValidationError
from marketplace.extensions import db
from marketplace.models import AuditLog, OrderItem, SellerProfile, UserRole
from marketplace.services.commission_service import (
    split_commission,
    update_commission_rate,
)

from conftest import make_user


class TestCommissionSplit:
    def test_commission_taken_from_subtotal(self):
        split = split_commission(
            Decimal("100.00"), Decimal("110.00"), Decimal("10"))

        assert split.commission_amount == Decimal("10.00")
        assert split.seller_amount == Decimal("100.00")

    def test_parts_add_up_to_line_total(self):
        split = split_commission(
            Decimal("33.33"), Decimal("36.66"), Decimal("15"))

        assert split.commission_amount == Decimal("5.00")
        assert split.commission_amount + split.seller_amount == Decimal(
            "36.66")

    def test_zero_rate_gives_seller_everything(self):
        split = split_commission(Decimal("50.00"), Decimal("55.00"), 0)

        assert split.commission_amount == Decimal("0.00")
        assert split.seller_amount == Decimal("55.00")

    def test_full_rate_takes_whole_subtotal(self):
        split = split_commission(Decimal("50.00"), Decimal("55.00"), 100)

        assert split.commission_amount == Decimal("50.00")
        assert split.seller_amount == Decimal("5.00")

    @pytest.mark.parametrize("rate", ["-1", "100.01", "abc"])
    def test_out_of_range_rate_rejected(self, rate):
        with pytest.raises(ValidationError):
            split_commission(Decimal("10.00"), Decimal("11.00"), rate)


class TestCommissionRateUpdate:
    def test_existing_lines_keep_their_snapshot(
            self, admin, customer, seller, make_variant, place):
        variant = make_variant(seller, price="40.00")
        first = place(customer, [(variant, 1)])

        update_commission_rate(Actor.from_user(admin), seller.id, "20")
        second = place(customer, [(variant, 1)])

        old_item = first.items.first()
        new_item = second.items.first()
        assert old_item.commission_rate == Decimal("10")
        assert old_item.commission_amount == Decimal("4.00")
        assert old_item.seller_amount == Decimal("40.00")
        assert new_item.commission_rate == Decimal("20")
        assert new_item.commission_amount == Decimal("8.00")

    def test_snapshot_cannot_be_rewritten(
            self, customer, seller, make_variant, place):
        order = place(customer, [(make_variant(seller), 1)])
        item = order.items.first()

        with pytest.raises(ValidationError):
            item.commission_amount = Decimal("0.00")

    def test_snapshot_is_fixed_after_commit(
            self, customer, seller, make_variant, place):
        order = place(customer, [(make_variant(seller, price="25.00"), 1)])
        item = order.items.first()
        db.session.commit()

        with pytest.raises(ValidationError):
            item.commission_amount = Decimal("0.00")
        db.session.commit()
        with pytest.raises(ValidationError):
            item.seller_amount = Decimal("27.50")
        db.session.rollback()

        stored = db.session.get(OrderItem, item.id)
        assert stored.commission_amount == Decimal("2.50")
        assert stored.seller_amount == Decimal("25.00")

    def test_update_is_audited(self, admin, seller):
        update_commission_rate(Actor.from_user(admin), seller.id, "12.5")

        db.session.refresh(seller)
        assert seller.commission_rate == Decimal("12.5")
        entry = AuditLog.query.filter_by(
            action="SELLER_COMMISSION_RATE_UPDATE").one()
        payload = entry.get_payload()
        assert Decimal(payload["from"]) == Decimal("10")
        assert payload["to"] == "12.5"

    def test_seller_cannot_change_rates(self, seller):
        with pytest.raises(AuthorizationError):
            update_commission_rate(
                Actor.from_user(seller.user), seller.id, "1")

    def test_unknown_seller(self, admin):
        with pytest.raises(NotFoundError):
            update_commission_rate(Actor.from_user(admin), 9999, "5")

    def test_out_of_range_rate(self, admin, seller):
        with pytest.raises(ValidationError):
            update_commission_rate(Actor.from_user(admin), seller.id, "150")


class TestDefaultRate:
    def test_new_seller_gets_configured_rate(self, app):
        app.config["DEFAULT_COMMISSION_RATE"] = "12.5"
        user = make_user(UserRole.SELLER)
        profile = SellerProfile(
            user_id=user.id, store_name="Default Rate", store_slug="default-rate")
        db.session.add(profile)
        db.session.commit()

        assert profile.commission_rate == Decimal("12.5")
