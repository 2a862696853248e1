"""Per-variant stock ledger.

Every mutation is a single conditional UPDATE so concurrent requests can't
oversell. These functions don't commit; they run inside the caller's unit
of work (checkout, confirmation, cancellation, refund).
"""
from sqlalchemy import case

from marketplace.errors import (
    InsufficientStockError,
    PersistenceError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import Inventory
import logging

logger = logging.getLogger(__name__)

MAX_BACKORDER_RETRIES = 3


def _validate_qty(qty) -> None:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ValidationError('Quantity must be a positive integer',
                              field='quantity')


def get_inventory(variant_id):
    return Inventory.query.filter_by(variant_id=variant_id).first()


def _is_tracked(inv) -> bool:
    return inv is not None and inv.track_inventory


def reserve(variant_id, qty: int) -> int:
    """Hold ``qty`` units for an unconfirmed order.

    Returns the number of units held, 0 when the variant isn't tracked.
    """
    _validate_qty(qty)
    inv = get_inventory(variant_id)
    if not _is_tracked(inv):
        return 0

    conditions = [Inventory.id == inv.id]
    if not inv.allow_backorder:
        conditions.append(
            Inventory.quantity - Inventory.reserved_quantity >= qty)

    updated = Inventory.query.filter(*conditions).update(
        {Inventory.reserved_quantity: Inventory.reserved_quantity + qty},
        synchronize_session=False,
    )
    db.session.refresh(inv)
    if not updated:
        raise InsufficientStockError(variant_id, qty, inv.available)
    return qty


def release(variant_id, qty: int) -> None:
    """Drop a reservation; reserved_quantity never goes below zero."""
    if qty <= 0:
        return
    inv = get_inventory(variant_id)
    if inv is None:
        return

    Inventory.query.filter(Inventory.id == inv.id).update(
        {
            Inventory.reserved_quantity: case(
                (Inventory.reserved_quantity >= qty,
                 Inventory.reserved_quantity - qty),
                else_=0,
            )
        },
        synchronize_session=False,
    )
    db.session.expire(inv)


def decrement(variant_id, qty: int) -> int:
    """Take ``qty`` units out of stock on order confirmation.

    Returns the units actually taken. Untracked variants take nothing;
    backorder variants take at most what is on hand so quantity stays >= 0.
    """
    _validate_qty(qty)
    inv = get_inventory(variant_id)
    if not _is_tracked(inv):
        return 0

    if inv.allow_backorder:
        taken = _decrement_backorder(inv, qty)
    else:
        updated = Inventory.query.filter(
            Inventory.id == inv.id,
            Inventory.quantity - Inventory.reserved_quantity >= qty,
        ).update(
            {Inventory.quantity: Inventory.quantity - qty},
            synchronize_session=False,
        )
        db.session.refresh(inv)
        if not updated:
            raise InsufficientStockError(variant_id, qty, inv.available)
        taken = qty

    if inv.is_low_stock:
        logger.warning(
            "Low stock for variant %s: %s left (threshold %s)",
            variant_id, inv.quantity, inv.low_stock_threshold)
    return taken


def _decrement_backorder(inv, qty: int) -> int:
    for _ in range(MAX_BACKORDER_RETRIES):
        db.session.refresh(inv)
        on_hand = inv.quantity
        taken = min(qty, on_hand)
        if taken == 0:
            return 0
        updated = Inventory.query.filter(
            Inventory.id == inv.id,
            Inventory.quantity == on_hand,
        ).update(
            {Inventory.quantity: Inventory.quantity - taken},
            synchronize_session=False,
        )
        if updated:
            db.session.refresh(inv)
            return taken
    raise PersistenceError(
        f'Concurrent stock updates on variant {inv.variant_id}')


def restore(variant_id, qty: int) -> None:
    """Put back units previously returned by ``decrement``."""
    if qty <= 0:
        return
    inv = get_inventory(variant_id)
    if inv is None:
        return

    Inventory.query.filter(Inventory.id == inv.id).update(
        {Inventory.quantity: Inventory.quantity + qty},
        synchronize_session=False,
    )
    db.session.expire(inv)


def release_line(item) -> None:
    """Release an order line's reservation and forget it."""
    if item.stock_reserved:
        release(item.variant_id, item.stock_reserved)
        item.stock_reserved = 0


def commit_line(item) -> None:
    """Turn an order line's reservation into a stock decrement."""
    release_line(item)
    item.stock_committed = decrement(item.variant_id, item.quantity)


def restore_line(item) -> None:
    """Undo whatever stock an order line still holds. Safe to repeat."""
    release_line(item)
    if item.stock_committed:
        restore(item.variant_id, item.stock_committed)
        item.stock_committed = 0
