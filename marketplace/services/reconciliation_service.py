"""Cached sales counters and their nightly repair.

``Product.sales_count`` and the seller aggregates (``total_sales``,
``total_revenue``) are caches over the valid order lines. They are moved
live, one sale per line, when lines enter or leave the valid set. Writes
that bypass those paths make them drift; the nightly job recomputes them
from the order lines and overwrites what differs.
"""
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import and_, case, func
from sqlalchemy.exc import SQLAlchemyError

from marketplace.extensions import db
from marketplace.models import (
    EXCLUDED_ORDER_STATUSES,
    Order,
    OrderItem,
    OrderItemStatus,
    Product,
    SellerProfile,
)
from marketplace.services.audit_service import log_audit
from marketplace.utils import commit_or_raise, persistence_errors, round_money
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    updated: int
    errors: int
    sellers_updated: int = 0

    @property
    def success(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data['success'] = self.success
        return data


def valid_line_filter():
    """Lines that count as sold: not cancelled, order not cancelled/refunded."""
    return and_(
        OrderItem.status != OrderItemStatus.CANCELLED,
        Order.status.notin_(EXCLUDED_ORDER_STATUSES),
    )


def _floored(column, delta):
    return case((column + delta < 0, 0), else_=column + delta)


def adjust_sales_counters(items, sign: int) -> None:
    """Add (``sign=1``) or remove (``sign=-1``) one sale per line.

    Runs inside the caller's unit of work. Counters never go below zero.
    """
    sales = Counter()
    sellers = defaultdict(lambda: [0, Decimal('0')])
    for item in items:
        sales[item.product_id] += 1
        sellers[item.seller_id][0] += 1
        sellers[item.seller_id][1] += Decimal(item.seller_amount)

    with persistence_errors('sales counters'):
        for product_id, count in sales.items():
            Product.query.filter(Product.id == product_id).update(
                {Product.sales_count: _floored(
                    Product.sales_count, sign * count)},
                synchronize_session=False,
            )
        for seller_id, (count, revenue) in sellers.items():
            SellerProfile.query.filter(SellerProfile.id == seller_id).update(
                {
                    SellerProfile.total_sales: _floored(
                        SellerProfile.total_sales, sign * count),
                    SellerProfile.total_revenue: _floored(
                        SellerProfile.total_revenue, sign * revenue),
                },
                synchronize_session=False,
            )


def _product_sales():
    rows = db.session.query(
        OrderItem.product_id, func.count(OrderItem.id)
    ).join(
        Order, OrderItem.order_id == Order.id
    ).filter(
        valid_line_filter()
    ).group_by(OrderItem.product_id).all()
    return {product_id: count for product_id, count in rows}


def _seller_totals():
    rows = db.session.query(
        OrderItem.seller_id,
        func.count(OrderItem.id),
        func.sum(OrderItem.seller_amount),
    ).join(
        Order, OrderItem.order_id == Order.id
    ).filter(
        valid_line_filter()
    ).group_by(OrderItem.seller_id).all()
    return {
        seller_id: (count, round_money(revenue or 0))
        for seller_id, count, revenue in rows
    }


def _apply(row, values) -> bool:
    """Write ``values`` onto ``row`` inside a savepoint. False on failure."""
    try:
        with db.session.begin_nested():
            for key, value in values.items():
                setattr(row, key, value)
    except SQLAlchemyError as e:
        logger.error(
            "Failed to reconcile %r: %s", row, e, exc_info=True)
        return False
    return True


def reconcile_sales_counts() -> ReconcileResult:
    """Recompute product and seller counters. Safe to run repeatedly."""
    sales = _product_sales()
    updated = 0
    errors = 0
    for product in Product.query.order_by(Product.id).all():
        expected = sales.get(product.id, 0)
        if product.sales_count == expected:
            continue
        logger.info(
            "Product %s sales_count drifted: %s -> %s",
            product.id, product.sales_count, expected)
        if _apply(product, {'sales_count': expected}):
            updated += 1
        else:
            errors += 1

    totals = _seller_totals()
    sellers_updated = 0
    for seller in SellerProfile.query.order_by(SellerProfile.id).all():
        count, revenue = totals.get(seller.id, (0, round_money(0)))
        current_revenue = round_money(seller.total_revenue or 0)
        if seller.total_sales == count and current_revenue == revenue:
            continue
        if _apply(seller, {'total_sales': count, 'total_revenue': revenue}):
            sellers_updated += 1
        else:
            errors += 1

    commit_or_raise('sales reconciliation')
    result = ReconcileResult(
        updated=updated, errors=errors, sellers_updated=sellers_updated)
    logger.info(
        "Sales reconciliation finished: %s products updated, "
        "%s sellers updated, %s errors",
        updated, sellers_updated, errors)
    return result


# name -> (job, audit action)
NIGHTLY_JOBS = {
    'reconcile_sales_counts': (reconcile_sales_counts, 'RECONCILE_SALES_COUNTS'),
}


def run_nightly_jobs(actor=None, triggered_by='cron') -> dict:
    """Run every nightly job and summarise the outcome.

    One failing job does not stop the others; its error is reported in
    the job's entry.
    """
    results = {}
    for name, (job, action) in NIGHTLY_JOBS.items():
        logger.info("[Nightly] Starting: %s", name)
        try:
            outcome = job()
        except Exception as e:
            db.session.rollback()
            logger.error("[Nightly] Failed: %s - %s", name, e, exc_info=True)
            results[name] = {'success': False, 'error': str(e)}
            continue

        results[name] = outcome.to_dict()
        if outcome.success:
            log_audit(
                actor=actor,
                action=action,
                target_type='MAINTENANCE',
                payload=dict(outcome.to_dict(), triggered_by=triggered_by),
            )
            logger.info("[Nightly] Completed: %s", name)
        else:
            logger.error(
                "[Nightly] Completed with errors: %s - %s", name,
                results[name])

    succeeded = sum(1 for r in results.values() if r['success'])
    failed = len(results) - succeeded
    logger.info(
        "[Nightly] All jobs completed: %s succeeded, %s failed",
        succeeded, failed)
    return {
        'success': failed == 0,
        'timestamp': datetime.utcnow().isoformat(),
        'summary': {
            'total': len(results),
            'succeeded': succeeded,
            'failed': failed,
        },
        'results': results,
    }
