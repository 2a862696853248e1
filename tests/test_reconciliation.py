"""Tests for the nightly sales counter reconciliation."""

from decimal import Decimal

import pytest

from marketplace.actor import Actor
from marketplace.extensions import db
from marketplace.models import AuditLog
from marketplace.services.order_state_service import (
    cancel_order_by_customer,
    transition_order,
    transition_order_item,
)
from marketplace.services.reconciliation_service import (
    ReconcileResult,
    reconcile_sales_counts,
    run_nightly_jobs,
)
from marketplace.services.refund_service import process_refund

from conftest import pay


@pytest.fixture
def variant(seller, make_variant):
    return make_variant(seller, price="10.00", quantity=50)


class TestReconcileSalesCounts:
    def test_drifted_counter_is_corrected(
            self, customer, variant, place):
        for _ in range(3):
            place(customer, [(variant, 1)])
        product = variant.product
        product.sales_count = 5
        db.session.commit()

        result = reconcile_sales_counts()

        assert result.updated == 1
        assert result.errors == 0
        assert result.success
        db.session.refresh(product)
        assert product.sales_count == 3

    def test_second_run_changes_nothing(self, customer, variant, place):
        place(customer, [(variant, 1)])
        reconcile_sales_counts()

        result = reconcile_sales_counts()

        assert result == ReconcileResult(
            updated=0, errors=0, sellers_updated=0)

    def test_cancelled_and_refunded_orders_do_not_count(
            self, customer, admin, variant, place):
        kept = place(customer, [(variant, 1)])
        cancelled = place(customer, [(variant, 1)])
        refunded = pay(place(customer, [(variant, 1)]))
        cancel_order_by_customer(Actor.from_user(customer), cancelled.id)
        process_refund(Actor.from_user(admin), refunded.id)

        reconcile_sales_counts()

        product = variant.product
        db.session.refresh(product)
        assert product.sales_count == 1
        assert kept.items.first().product_id == product.id

    def test_seller_aggregates_follow_valid_lines(
            self, customer, seller, variant, place):
        place(customer, [(variant, 2)])
        place(customer, [(variant, 1)])
        seller.total_sales = 0
        seller.total_revenue = Decimal("0")
        db.session.commit()

        result = reconcile_sales_counts()

        assert result.sellers_updated == 1
        db.session.refresh(seller)
        assert seller.total_sales == 2
        # Seller amounts: (20.00 + 2.00 - 2.00) + (10.00 + 1.00 - 1.00)
        assert seller.total_revenue == Decimal("30.00")


class TestLiveCounters:
    def _assert_counters(self, variant, seller, sales, revenue):
        assert variant.product.sales_count == sales
        assert seller.total_sales == sales
        assert seller.total_revenue == Decimal(revenue)
        assert reconcile_sales_counts() == ReconcileResult(
            updated=0, errors=0, sellers_updated=0)

    def test_paid_order_moves_counters(
            self, customer, seller, variant, place):
        pay(place(customer, [(variant, 2)]))

        self._assert_counters(variant, seller, 1, "20.00")

    def test_seller_cancelling_a_line_takes_it_back(
            self, customer, seller, variant, place):
        order = pay(place(customer, [(variant, 2)]))

        transition_order_item(Actor.from_user(seller.user),
                              order.items.first().id, "cancelled")

        self._assert_counters(variant, seller, 0, "0.00")

    def test_customer_cancel_takes_sales_back(
            self, customer, seller, variant, place):
        order = place(customer, [(variant, 1)])

        cancel_order_by_customer(Actor.from_user(customer), order.id)

        self._assert_counters(variant, seller, 0, "0.00")

    def test_refund_takes_sales_back(
            self, customer, admin, seller, variant, place):
        order = pay(place(customer, [(variant, 1)]))
        pay(place(customer, [(variant, 3)]))

        process_refund(Actor.from_user(admin), order.id)

        self._assert_counters(variant, seller, 1, "30.00")

    def test_refund_after_cancel_does_not_count_twice(
            self, customer, admin, seller, variant, place):
        order = pay(place(customer, [(variant, 1)]))
        transition_order(Actor.from_user(admin), order.id, "cancelled")

        process_refund(Actor.from_user(admin), order.id)

        self._assert_counters(variant, seller, 0, "0.00")


class TestNightlyJobs:
    def test_summary_and_audit_row(self, customer, variant, place):
        place(customer, [(variant, 1)])
        variant.product.sales_count = 7
        db.session.commit()

        summary = run_nightly_jobs(triggered_by="test")

        assert summary["success"] is True
        assert summary["summary"] == {
            "total": 1, "succeeded": 1, "failed": 0}
        job = summary["results"]["reconcile_sales_counts"]
        assert job["updated"] == 1
        entry = AuditLog.query.filter_by(
            action="RECONCILE_SALES_COUNTS").one()
        assert entry.actor_role == "ANONYMOUS"
        assert entry.get_payload()["triggered_by"] == "test"

    def test_system_actor_recorded(self, variant):
        run_nightly_jobs(actor=Actor.system())

        entry = AuditLog.query.filter_by(
            action="RECONCILE_SALES_COUNTS").one()
        assert entry.actor_role == "SYSTEM"
