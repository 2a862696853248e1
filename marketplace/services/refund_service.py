"""Full-order refunds.

The order, its payment status, the refund ledger entry and the stock of
unshipped lines change in one transaction. The provider is asked for the
money afterwards; its answer is written back to the ledger entry.
Commission and seller amounts on the lines are never touched: revenue
figures exclude refunded orders by filtering on order status instead.
"""
from datetime import datetime

from marketplace.errors import (
    AlreadyProcessedError,
    InvalidTransitionError,
    NotFoundError,
)
from marketplace.extensions import db
from marketplace.models import (
    EXCLUDED_ORDER_STATUSES,
    Order,
    OrderItemStatus,
    OrderStatus,
    PaymentStatus,
    RefundEntry,
    RefundStatus,
    UserRole,
)
from marketplace.services import inventory_service, notification_service
from marketplace.services.audit_service import log_audit
from marketplace.services.payment_service import (
    PaymentGatewayError,
    get_gateway,
)
from marketplace.services.reconciliation_service import adjust_sales_counters
from marketplace.utils import commit_or_raise, persistence_errors
import logging

logger = logging.getLogger(__name__)

UNSHIPPED_ITEM_STATUSES = (
    OrderItemStatus.PENDING,
    OrderItemStatus.PROCESSING,
    OrderItemStatus.CANCELLED,
)


def process_refund(actor, order_id, reason=None) -> RefundEntry:
    actor.require(UserRole.ADMIN)
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError('Order', order_id)

    current = order.status
    if current == OrderStatus.REFUNDED or order.refund is not None:
        raise AlreadyProcessedError(
            f'Order {order.order_number} is already refunded')
    if order.payment_status != PaymentStatus.SUCCEEDED:
        raise InvalidTransitionError(
            current, OrderStatus.REFUNDED, 'order has no captured payment')

    counted = []
    if current not in EXCLUDED_ORDER_STATUSES:
        counted = [item for item in order.items
                   if item.status != OrderItemStatus.CANCELLED]

    now = datetime.utcnow()
    with persistence_errors('refund'):
        updated = Order.query.filter(
            Order.id == order.id,
            Order.status == current,
            Order.payment_status == PaymentStatus.SUCCEEDED,
        ).update(
            {
                Order.status: OrderStatus.REFUNDED,
                Order.refunded_at: now,
                Order.payment_status: PaymentStatus.REFUNDED,
            },
            synchronize_session='fetch',
        )
    if not updated:
        db.session.rollback()
        raise AlreadyProcessedError(
            f'Order {order.order_number} was changed by another request')

    entry = RefundEntry(
        order_id=order.id,
        amount=order.grand_total,
        currency=order.currency,
        reason=reason,
        status=RefundStatus.PENDING,
    )
    db.session.add(entry)
    with persistence_errors('refund'):
        for item in order.items:
            if item.status in UNSHIPPED_ITEM_STATUSES:
                inventory_service.restore_line(item)
        adjust_sales_counters(counted, -1)
    commit_or_raise('refund')
    logger.info(
        "Order %s refunded for %s %s",
        order.order_number, entry.amount, entry.currency)

    gateway = get_gateway()
    try:
        entry.provider_reference = gateway.request_refund(order, entry.amount)
        entry.status = RefundStatus.SUCCEEDED
    except PaymentGatewayError as e:
        logger.error(
            "Refund request to %s failed for order %s: %s",
            gateway.name, order.order_number, e, exc_info=True)
        entry.status = RefundStatus.FAILED
        entry.failure_reason = str(e)
    entry.processed_at = datetime.utcnow()
    commit_or_raise('refund result')

    log_audit(
        actor=actor,
        action='REFUND_PROCESS',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'from': current.value,
            'amount': str(entry.amount),
            'reason': reason,
            'refund_status': entry.status.value,
            'provider_reference': entry.provider_reference,
        },
    )
    notification_service.emit(notification_service.ORDER_REFUNDED, {
        'order_id': order.id,
        'order_number': order.order_number,
        'user_id': order.user_id,
        'amount': str(entry.amount),
        'refund_status': entry.status.value,
    })
    return entry
