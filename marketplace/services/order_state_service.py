"""Order and order-line lifecycles.

Two coupled state machines. The order moves
pending -> confirmed -> processing -> shipped -> delivered, with cancelled
and refunded as side exits from any non-terminal state and returned only
after delivery. Each line moves pending -> processing -> shipped ->
delivered on its own, owned by its seller, and may be cancelled only
before it ships.

Every transition is a conditional UPDATE on (id, expected status), so two
racing requests can't both win. The change is committed before any
notification goes out.
"""
from datetime import datetime

from sqlalchemy import func

from marketplace.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import (
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    UserRole,
)
from marketplace.services import inventory_service, notification_service
from marketplace.services.audit_service import log_audit
from marketplace.services.reconciliation_service import adjust_sales_counters
from marketplace.utils import commit_or_raise, persistence_errors
import logging

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.DELIVERED: {OrderStatus.RETURNED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
    OrderStatus.RETURNED: set(),
}

TERMINAL_ORDER_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
    OrderStatus.RETURNED,
})

ITEM_TRANSITIONS = {
    OrderItemStatus.PENDING: {
        OrderItemStatus.PROCESSING,
        OrderItemStatus.CANCELLED,
    },
    OrderItemStatus.PROCESSING: {
        OrderItemStatus.SHIPPED,
        OrderItemStatus.CANCELLED,
    },
    OrderItemStatus.SHIPPED: {OrderItemStatus.DELIVERED},
    OrderItemStatus.DELIVERED: set(),
    OrderItemStatus.CANCELLED: set(),
}

# Forward order of line progress, used by derived_status.
ITEM_PROGRESS = [
    OrderItemStatus.PENDING,
    OrderItemStatus.PROCESSING,
    OrderItemStatus.SHIPPED,
    OrderItemStatus.DELIVERED,
]

ORDER_TIMESTAMPS = {
    OrderStatus.CONFIRMED: 'confirmed_at',
    OrderStatus.PROCESSING: 'processing_at',
    OrderStatus.SHIPPED: 'shipped_at',
    OrderStatus.DELIVERED: 'delivered_at',
    OrderStatus.CANCELLED: 'cancelled_at',
    OrderStatus.REFUNDED: 'refunded_at',
    OrderStatus.RETURNED: 'returned_at',
}

ITEM_TIMESTAMPS = {
    OrderItemStatus.PROCESSING: 'processing_at',
    OrderItemStatus.SHIPPED: 'shipped_at',
    OrderItemStatus.DELIVERED: 'delivered_at',
    OrderItemStatus.CANCELLED: 'cancelled_at',
}

# Lines can only be fulfilled once the order is paid and confirmed.
FULFILLABLE_ORDER_STATUSES = frozenset({
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
})

CANCELLABLE_ITEM_STATUSES = (
    OrderItemStatus.PENDING,
    OrderItemStatus.PROCESSING,
)


def can_transition_order(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, ())


def can_transition_item(current: OrderItemStatus,
                        target: OrderItemStatus) -> bool:
    return target in ITEM_TRANSITIONS.get(current, ())


def parse_status(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    raw = (value or '').strip().lower() if isinstance(value, str) else value
    try:
        return enum_cls(raw)
    except ValueError:
        raise ValidationError(f'Invalid status: {value}', field='status')


def _get_order(order_id) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError('Order', order_id)
    return order


def _get_item(item_id) -> OrderItem:
    item = db.session.get(OrderItem, item_id)
    if item is None:
        raise NotFoundError('Order item', item_id)
    return item


def _conditional_update(model, row_id, expected, values) -> bool:
    with persistence_errors('status change'):
        updated = model.query.filter(
            model.id == row_id,
            model.status == expected,
        ).update(values, synchronize_session='fetch')
    return bool(updated)


def _claim_order(order: Order, target: OrderStatus, now, extra=None) -> None:
    current = order.status
    values = {
        Order.status: target,
        getattr(Order, ORDER_TIMESTAMPS[target]): now,
    }
    if extra:
        values.update(extra)
    if not _conditional_update(Order, order.id, current, values):
        db.session.rollback()
        raise InvalidTransitionError(
            current, target, 'order was changed by another request')


def _cancel_open_items(order: Order, now) -> list:
    """Cancel lines that haven't shipped and give their stock back."""
    cancelled = []
    for item in order.items:
        if item.status not in CANCELLABLE_ITEM_STATUSES:
            continue
        with persistence_errors('order cancellation'):
            updated = OrderItem.query.filter(
                OrderItem.id == item.id,
                OrderItem.status.in_(CANCELLABLE_ITEM_STATUSES),
            ).update(
                {
                    OrderItem.status: OrderItemStatus.CANCELLED,
                    OrderItem.cancelled_at: now,
                },
                synchronize_session='fetch',
            )
            if updated:
                inventory_service.restore_line(item)
                cancelled.append(item.id)
    return cancelled


def _counted_items(order: Order) -> list:
    return [item for item in order.items
            if item.status != OrderItemStatus.CANCELLED]


def _status_payload(order: Order, old_status, new_status) -> dict:
    return {
        'order_id': order.id,
        'order_number': order.order_number,
        'user_id': order.user_id,
        'from': old_status.value,
        'to': new_status.value,
    }


def confirm_order(order_id, actor=None) -> Order:
    """Move a pending order to confirmed and take its stock.

    Each line's reservation is released and turned into a decrement in the
    same transaction as the status change; if any line is short the whole
    confirmation is rolled back.
    """
    order = _get_order(order_id)
    current = order.status
    if current != OrderStatus.PENDING:
        raise InvalidTransitionError(current, OrderStatus.CONFIRMED)

    now = datetime.utcnow()
    _claim_order(order, OrderStatus.CONFIRMED, now)
    try:
        with persistence_errors('order confirmation'):
            for item in _counted_items(order):
                inventory_service.commit_line(item)
    except Exception:
        db.session.rollback()
        raise
    commit_or_raise('order confirmation')

    logger.info("Order %s confirmed", order.order_number)
    log_audit(
        actor=actor,
        action='ORDER_CONFIRM',
        target_type='ORDER',
        target_id=order.id,
        payload={'grand_total': str(order.grand_total)},
    )
    notification_service.emit(
        notification_service.ORDER_CONFIRMED,
        _status_payload(order, current, OrderStatus.CONFIRMED))
    return order


def transition_order(actor, order_id, new_status, note=None) -> Order:
    """Admin override of the order-level status."""
    actor.require(UserRole.ADMIN)
    target = parse_status(OrderStatus, new_status)
    if target == OrderStatus.REFUNDED:
        raise ValidationError(
            'Refunds must go through the refund operation', field='status')
    if target == OrderStatus.CONFIRMED:
        return confirm_order(order_id, actor=actor)

    order = _get_order(order_id)
    current = order.status
    if not can_transition_order(current, target):
        raise InvalidTransitionError(current, target)

    if target == OrderStatus.DELIVERED:
        statuses = [item.status for item in order.items]
        active = [s for s in statuses if s != OrderItemStatus.CANCELLED]
        undelivered = [s for s in active if s != OrderItemStatus.DELIVERED]
        if not active or undelivered:
            raise InvalidTransitionError(
                current, target,
                f'{len(undelivered)} order line(s) not delivered')

    now = datetime.utcnow()
    extra = None
    if note:
        stamped = f'[{now.isoformat(timespec="seconds")}] {note}'
        existing = order.internal_notes
        extra = {
            Order.internal_notes: (
                f'{existing}\n{stamped}' if existing else stamped),
        }
    counted = _counted_items(order)
    _claim_order(order, target, now, extra)

    cancelled_items = []
    if target == OrderStatus.CANCELLED:
        cancelled_items = _cancel_open_items(order, now)
        adjust_sales_counters(counted, -1)
    commit_or_raise('order status')

    logger.info(
        "Order %s moved from %s to %s",
        order.order_number, current.value, target.value)
    log_audit(
        actor=actor,
        action='ORDER_STATUS_UPDATE',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'from': current.value,
            'to': target.value,
            'note': note,
            'cancelled_items': cancelled_items,
        },
    )
    notification_service.emit(
        notification_service.ORDER_STATUS_CHANGED,
        _status_payload(order, current, target))
    return order


def cancel_order_by_customer(actor, order_id, reason=None) -> Order:
    """The buyer may cancel until the order is paid and confirmed."""
    actor.require(UserRole.CUSTOMER)
    order = _get_order(order_id)
    if order.user_id != actor.id:
        raise AuthorizationError('You do not own this order')
    current = order.status
    if current != OrderStatus.PENDING:
        raise InvalidTransitionError(
            current, OrderStatus.CANCELLED,
            'only unconfirmed orders can be cancelled by the customer')

    now = datetime.utcnow()
    counted = _counted_items(order)
    _claim_order(order, OrderStatus.CANCELLED, now)
    cancelled_items = _cancel_open_items(order, now)
    adjust_sales_counters(counted, -1)
    commit_or_raise('order cancellation')

    log_audit(
        actor=actor,
        action='ORDER_CANCEL_USER',
        target_type='ORDER',
        target_id=order.id,
        payload={'reason': reason, 'cancelled_items': cancelled_items},
    )
    notification_service.emit(
        notification_service.ORDER_STATUS_CHANGED,
        _status_payload(order, current, OrderStatus.CANCELLED))
    return order


def transition_order_item(actor, item_id, new_status,
                          tracking_number=None, carrier=None) -> OrderItem:
    """Advance one seller's order line.

    Sellers may only touch their own lines; admins may touch any. A missing
    tracking number on shipment is recorded as null.
    """
    actor.require(UserRole.SELLER, UserRole.ADMIN)
    target = parse_status(OrderItemStatus, new_status)
    item = _get_item(item_id)
    if actor.is_seller and item.seller_id != actor.seller_id:
        raise AuthorizationError('You do not own this order line')

    current = item.status
    if not can_transition_item(current, target):
        raise InvalidTransitionError(current, target)

    order = item.order
    if (target != OrderItemStatus.CANCELLED
            and order.status not in FULFILLABLE_ORDER_STATUSES):
        raise InvalidTransitionError(
            current, target, f'order is {order.status.value}')
    if (target == OrderItemStatus.CANCELLED
            and order.status in TERMINAL_ORDER_STATUSES):
        raise InvalidTransitionError(
            current, target, f'order is {order.status.value}')

    now = datetime.utcnow()
    values = {
        OrderItem.status: target,
        getattr(OrderItem, ITEM_TIMESTAMPS[target]): now,
    }
    tracking = (tracking_number or '').strip() or None
    carrier = (carrier or '').strip() or None
    if target == OrderItemStatus.SHIPPED:
        values[OrderItem.tracking_number] = tracking
        values[OrderItem.shipping_carrier] = carrier

    if not _conditional_update(OrderItem, item.id, current, values):
        db.session.rollback()
        raise InvalidTransitionError(
            current, target, 'order line was changed by another request')

    with persistence_errors('order line status'):
        if target == OrderItemStatus.CANCELLED:
            inventory_service.restore_line(item)
            adjust_sales_counters([item], -1)
        if target == OrderItemStatus.SHIPPED and tracking:
            order.tracking_number = tracking
            if carrier:
                order.shipping_carrier = carrier
    commit_or_raise('order line status')

    logger.info(
        "Order line %s of order %s moved from %s to %s",
        item.id, order.order_number, current.value, target.value)
    log_audit(
        actor=actor,
        action='ORDER_ITEM_STATUS_UPDATE',
        target_type='ORDER_ITEM',
        target_id=item.id,
        payload={
            'order_id': order.id,
            'from': current.value,
            'to': target.value,
            'tracking_number': tracking,
        },
    )
    payload = {
        'order_id': order.id,
        'order_number': order.order_number,
        'order_item_id': item.id,
        'seller_id': item.seller_id,
        'user_id': order.user_id,
        'from': current.value,
        'to': target.value,
    }
    notification_service.emit(
        notification_service.ORDER_ITEM_STATUS_CHANGED, payload)
    if target == OrderItemStatus.SHIPPED:
        notification_service.emit(
            notification_service.ORDER_ITEM_SHIPPED,
            dict(payload, tracking_number=tracking))
    return item


def derived_status(order: Order):
    """Aggregate line progress: the least advanced non-cancelled line.

    Returns OrderItemStatus.CANCELLED when every line is cancelled and None
    for an order without lines. This is a read; it never writes the order.
    """
    statuses = [item.status for item in order.items]
    if not statuses:
        return None
    active = [s for s in statuses if s != OrderItemStatus.CANCELLED]
    if not active:
        return OrderItemStatus.CANCELLED
    return min(active, key=ITEM_PROGRESS.index)


def status_counts(actor) -> dict:
    """Orders per status for admins, own order lines per status for sellers."""
    actor.require(UserRole.SELLER, UserRole.ADMIN)
    if actor.is_admin:
        counts = {s.value: 0 for s in OrderStatus}
        rows = db.session.query(
            Order.status, func.count(Order.id)
        ).group_by(Order.status).all()
    else:
        counts = {s.value: 0 for s in OrderItemStatus}
        rows = db.session.query(
            OrderItem.status, func.count(OrderItem.id)
        ).filter(
            OrderItem.seller_id == actor.seller_id
        ).group_by(OrderItem.status).all()

    for status, count in rows:
        counts[status.value] = count
    return counts
