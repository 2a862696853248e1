from contextlib import contextmanager
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from marketplace.extensions import db
from marketplace.errors import PersistenceError, ValidationError
import logging

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')


def to_decimal(value, field='amount') -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f'{field} must be a number', field=field)
    if not isinstance(value, Decimal):
        try:
            # str() keeps 0.1 as Decimal('0.1') rather than its binary expansion
            value = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f'{field} must be a number', field=field)
    if not value.is_finite():
        raise ValidationError(f'{field} must be a finite number', field=field)
    return value


def round_money(value) -> Decimal:
    """Round half-up to two decimal places."""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def _fail(context: str, e: SQLAlchemyError):
    db.session.rollback()
    logger.error("Database error during %s: %s", context, e, exc_info=True)
    return PersistenceError(f'Failed to save {context}')


@contextmanager
def persistence_errors(context: str):
    """Roll back and re-raise database errors as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as e:
        raise _fail(context, e) from e


def commit_or_raise(context: str) -> None:
    """Commit the session; on failure roll back and raise PersistenceError.

    Nothing from the failed unit of work stays in the session, so callers
    never observe a half-applied change.
    """
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        raise _fail(context, e) from e


def error_response(exc):
    return jsonify(exc.to_dict()), exc.status_code


def paginate_query(query, page=1, per_page=20):
    pagination = query.paginate(
        page=page,
        per_page=per_page,
        error_out=False
    )
    return {
        'items': pagination.items,
        'page': pagination.page,
        'pages': pagination.pages,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }


def money_str(value):
    if value is None:
        return None
    return str(round_money(value))


def isoformat(value):
    return value.isoformat() if value else None


def serialize_order_item(item):
    return {
        'id': item.id,
        'order_id': item.order_id,
        'seller_id': item.seller_id,
        'product_id': item.product_id,
        'variant_id': item.variant_id,
        'product_name': item.product_name,
        'variant_options': item.variant_options,
        'sku': item.sku,
        'quantity': item.quantity,
        'unit_price': money_str(item.unit_price),
        'subtotal': money_str(item.subtotal),
        'tax_amount': money_str(item.tax_amount),
        'discount_amount': money_str(item.discount_amount),
        'total': money_str(item.total),
        'commission_rate': str(item.commission_rate),
        'commission_amount': money_str(item.commission_amount),
        'seller_amount': money_str(item.seller_amount),
        'status': item.status.value,
        'tracking_number': item.tracking_number,
        'shipping_carrier': item.shipping_carrier,
        'shipped_at': isoformat(item.shipped_at),
        'delivered_at': isoformat(item.delivered_at),
        'created_at': isoformat(item.created_at),
    }


def serialize_order(order, include_items=False, derived=None):
    data = {
        'id': order.id,
        'order_number': order.order_number,
        'status': order.status.value,
        'payment_status': order.payment_status.value,
        'subtotal': money_str(order.subtotal),
        'tax_total': money_str(order.tax_total),
        'shipping_total': money_str(order.shipping_total),
        'discount_total': money_str(order.discount_total),
        'grand_total': money_str(order.grand_total),
        'currency': order.currency,
        'tracking_number': order.tracking_number,
        'shipping_carrier': order.shipping_carrier,
        'created_at': isoformat(order.created_at),
        'confirmed_at': isoformat(order.confirmed_at),
        'cancelled_at': isoformat(order.cancelled_at),
        'refunded_at': isoformat(order.refunded_at),
    }
    if derived is not None:
        data['derived_status'] = derived.value
    if include_items:
        data['shipping_address'] = order.shipping_address
        data['billing_address'] = order.billing_address
        data['notes'] = order.notes
        data['items'] = [serialize_order_item(i) for i in order.items]
    return data
