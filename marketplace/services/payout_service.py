"""Seller earnings and payout batches.

Earnings are read straight off the order lines' ``seller_amount`` snapshot.
Refunded and cancelled orders drop out through the order-status filter,
never by rewriting the line amounts.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from marketplace.errors import (
    AlreadyProcessedError,
    NotFoundError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import (
    Order,
    OrderItem,
    OrderItemStatus,
    PayoutStatus,
    SellerPayout,
    SellerProfile,
    UserRole,
)
from marketplace.services import notification_service
from marketplace.services.audit_service import log_audit
from marketplace.services.reconciliation_service import valid_line_filter
from marketplace.utils import commit_or_raise, persistence_errors, round_money
import logging

logger = logging.getLogger(__name__)

PENDING_ITEM_STATUSES = (
    OrderItemStatus.PENDING,
    OrderItemStatus.PROCESSING,
    OrderItemStatus.SHIPPED,
)


@dataclass(frozen=True)
class SellerEarnings:
    available: Decimal
    pending: Decimal
    total_earned: Decimal
    paid_out: Decimal
    commission_rate: Decimal

    def to_dict(self) -> dict:
        return {
            'available': str(self.available),
            'pending': str(self.pending),
            'total_earned': str(self.total_earned),
            'paid_out': str(self.paid_out),
            'commission_rate': str(self.commission_rate),
        }


def _get_seller(seller_id) -> SellerProfile:
    seller = db.session.get(SellerProfile, seller_id)
    if seller is None:
        raise NotFoundError('Seller', seller_id)
    return seller


def _valid_lines(seller_id):
    return db.session.query(OrderItem).join(
        Order, OrderItem.order_id == Order.id
    ).filter(
        OrderItem.seller_id == seller_id,
        valid_line_filter(),
    )


def _sum_seller_amount(query) -> Decimal:
    total = query.with_entities(func.sum(OrderItem.seller_amount)).scalar()
    return round_money(total or 0)


def aggregate_seller_revenue(seller_id) -> Decimal:
    """Sum of seller_amount across every line that still counts as sold."""
    return _sum_seller_amount(_valid_lines(seller_id))


def seller_earnings(seller_id) -> SellerEarnings:
    seller = _get_seller(seller_id)
    lines = _valid_lines(seller_id)
    delivered = lines.filter(OrderItem.status == OrderItemStatus.DELIVERED)
    paid_out = _sum_seller_amount(delivered.filter(
        OrderItem.payout_id.isnot(None)))
    available = _sum_seller_amount(delivered.filter(
        OrderItem.payout_id.is_(None)))
    pending = _sum_seller_amount(lines.filter(
        OrderItem.status.in_(PENDING_ITEM_STATUSES)))
    return SellerEarnings(
        available=available,
        pending=pending,
        total_earned=available + paid_out,
        paid_out=paid_out,
        commission_rate=seller.commission_rate,
    )


def create_payout(actor, seller_id, period_start: datetime,
                  period_end: datetime) -> SellerPayout:
    """Batch delivered, not yet paid-out lines delivered within the period."""
    actor.require(UserRole.ADMIN)
    if period_start is None or period_end is None:
        raise ValidationError('Payout period is required', field='period')
    if period_end < period_start:
        raise ValidationError(
            'Payout period ends before it starts', field='period_end')
    seller = _get_seller(seller_id)

    items = _valid_lines(seller.id).filter(
        OrderItem.status == OrderItemStatus.DELIVERED,
        OrderItem.payout_id.is_(None),
        OrderItem.delivered_at >= period_start,
        OrderItem.delivered_at <= period_end,
    ).order_by(OrderItem.id).all()
    if not items:
        raise ValidationError(
            'No delivered order lines to pay out in this period')

    payout = SellerPayout(
        seller_id=seller.id,
        amount=round_money(sum(
            (Decimal(item.seller_amount) for item in items), Decimal('0'))),
        order_item_ids=[item.id for item in items],
        period_start=period_start,
        period_end=period_end,
        status=PayoutStatus.PENDING,
    )
    db.session.add(payout)
    with persistence_errors('payout'):
        db.session.flush()
        # Claim the lines only if no concurrent payout got them first.
        claimed = OrderItem.query.filter(
            OrderItem.id.in_(payout.order_item_ids),
            OrderItem.payout_id.is_(None),
        ).update(
            {OrderItem.payout_id: payout.id}, synchronize_session='fetch')
    if claimed != len(items):
        db.session.rollback()
        raise AlreadyProcessedError(
            'Some order lines were paid out by another request')
    commit_or_raise('payout')

    logger.info(
        "Payout %s created for seller %s: %s over %s lines",
        payout.id, seller.id, payout.amount, len(items))
    log_audit(
        actor=actor,
        action='PAYOUT_CREATE',
        target_type='PAYOUT',
        target_id=payout.id,
        payload={
            'seller_id': seller.id,
            'amount': str(payout.amount),
            'order_item_ids': payout.order_item_ids,
        },
    )
    notification_service.emit(notification_service.PAYOUT_CREATED, {
        'payout_id': payout.id,
        'seller_id': seller.id,
        'amount': str(payout.amount),
    })
    return payout


def mark_payout_processed(actor, payout_id, succeeded: bool,
                          transfer_reference=None,
                          failure_reason=None) -> SellerPayout:
    """Record the transfer result. A processed payout never changes again.

    A failed payout hands its lines back so they can be batched again.
    """
    actor.require(UserRole.ADMIN)
    payout = db.session.get(SellerPayout, payout_id)
    if payout is None:
        raise NotFoundError('Payout', payout_id)
    if payout.is_processed:
        raise AlreadyProcessedError(
            f'Payout {payout.id} is already {payout.status.value}')

    new_status = PayoutStatus.PAID if succeeded else PayoutStatus.FAILED
    with persistence_errors('payout result'):
        updated = SellerPayout.query.filter(
            SellerPayout.id == payout.id,
            SellerPayout.status == PayoutStatus.PENDING,
        ).update(
            {
                SellerPayout.status: new_status,
                SellerPayout.transfer_reference: transfer_reference,
                SellerPayout.failure_reason: (
                    None if succeeded else failure_reason),
                SellerPayout.processed_at: datetime.utcnow(),
            },
            synchronize_session='fetch',
        )
    if not updated:
        db.session.rollback()
        raise AlreadyProcessedError(
            f'Payout {payout.id} was processed by another request')
    if not succeeded:
        with persistence_errors('payout result'):
            OrderItem.query.filter(OrderItem.payout_id == payout.id).update(
                {OrderItem.payout_id: None}, synchronize_session='fetch')
    commit_or_raise('payout result')

    log_audit(
        actor=actor,
        action='PAYOUT_PROCESS',
        target_type='PAYOUT',
        target_id=payout.id,
        payload={
            'status': new_status.value,
            'transfer_reference': transfer_reference,
            'failure_reason': failure_reason,
        },
    )
    return payout
