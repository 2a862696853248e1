"""Turn a customer's cart into a pending order.

Prices come from the current variant price, never from the client. The
order, its lines and the stock reservations are written in one
transaction; payment confirmation happens later through a provider event.
"""
from collections import OrderedDict
from datetime import datetime
import secrets
import string

from flask import current_app

from marketplace.errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ProductStatus,
    ProductVariant,
    SellerStatus,
    UserRole,
)
from marketplace.services import inventory_service, notification_service
from marketplace.services.audit_service import log_audit
from marketplace.services.commission_service import split_commission
from marketplace.services.pricing_service import (
    CartLine,
    calculate_line_totals,
    calculate_order_totals,
    configured_shipping_rule,
    configured_tax_rate,
)
from marketplace.services.reconciliation_service import adjust_sales_counters
from marketplace.utils import commit_or_raise, persistence_errors
import logging

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = (
    'recipient_name',
    'line1',
    'city',
    'postal_code',
    'country',
)
OPTIONAL_ADDRESS_FIELDS = ('line2', 'state', 'phone')

_BASE36 = string.digits + string.ascii_uppercase


def _base36(number: int) -> str:
    if number == 0:
        return '0'
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return ''.join(reversed(digits))


def generate_order_number() -> str:
    timestamp = int(datetime.utcnow().timestamp() * 1000)
    suffix = ''.join(secrets.choice(_BASE36) for _ in range(4))
    return f'ORD-{_base36(timestamp)}-{suffix}'


def validate_address(address, field='shipping_address') -> dict:
    if not isinstance(address, dict):
        raise ValidationError('Address is required', field=field)
    cleaned = {}
    for key in REQUIRED_ADDRESS_FIELDS:
        value = address.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(
                f'{key} is required', field=f'{field}.{key}')
        cleaned[key] = value.strip()
    for key in OPTIONAL_ADDRESS_FIELDS:
        value = address.get(key)
        if isinstance(value, str) and value.strip():
            cleaned[key] = value.strip()
    return cleaned


def merge_cart_items(items):
    """Collapse ``(variant_id, quantity)`` pairs by variant, keeping order."""
    if not items:
        raise EmptyCartError()
    merged = OrderedDict()
    for entry in items:
        if isinstance(entry, dict):
            variant_id = entry.get('variant_id')
            quantity = entry.get('quantity')
        else:
            try:
                variant_id, quantity = entry
            except (TypeError, ValueError):
                raise ValidationError(
                    'Cart lines must be (variant_id, quantity) pairs',
                    field='items')
        if isinstance(variant_id, bool) or not isinstance(variant_id, int):
            raise ValidationError('variant_id must be an integer',
                                  field='variant_id')
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError('Quantity must be an integer',
                                  field='quantity')
        if quantity <= 0:
            raise InvalidQuantityError(quantity, variant_id)
        merged[variant_id] = merged.get(variant_id, 0) + quantity
    return list(merged.items())


def _load_variant(variant_id) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFoundError('Product variant', variant_id)
    product = variant.product
    if product.status != ProductStatus.ACTIVE:
        raise ValidationError(
            f'{product.name} is not available for sale', field='items')
    if product.seller.status != SellerStatus.APPROVED:
        raise ValidationError(
            f'{product.name} is not available from this seller',
            field='items')
    return variant


def _add_line(order, variant, quantity, tax_rate) -> OrderItem:
    """Price one line, stamp its commission and hold its stock."""
    product = variant.product
    seller = product.seller
    line_totals = calculate_line_totals(variant.price, quantity, tax_rate)
    split = split_commission(
        line_totals.subtotal, line_totals.total, seller.commission_rate)
    item = OrderItem(
        order=order,
        seller_id=seller.id,
        product_id=product.id,
        variant_id=variant.id,
        product_name=product.name,
        variant_options=variant.options,
        sku=variant.sku,
        quantity=quantity,
        unit_price=variant.price,
        subtotal=line_totals.subtotal,
        tax_amount=line_totals.tax_amount,
        discount_amount=line_totals.discount_amount,
        total=line_totals.total,
        commission_rate=split.commission_rate,
        commission_amount=split.commission_amount,
        seller_amount=split.seller_amount,
    )
    db.session.add(item)
    item.stock_reserved = inventory_service.reserve(variant.id, quantity)
    return item


def place_order(actor, items, shipping_address, billing_address=None,
                notes=None) -> Order:
    actor.require(UserRole.CUSTOMER)
    shipping = validate_address(shipping_address)
    billing = (
        validate_address(billing_address, field='billing_address')
        if billing_address else None
    )
    merged = merge_cart_items(items)

    variants = [(_load_variant(variant_id), quantity)
                for variant_id, quantity in merged]
    lines = [
        CartLine(variant_id=variant.id, quantity=quantity,
                 unit_price=variant.price)
        for variant, quantity in variants
    ]
    tax_rate = configured_tax_rate()
    totals = calculate_order_totals(
        lines, configured_shipping_rule(), tax_rate)

    order = Order(
        order_number=generate_order_number(),
        user_id=actor.id,
        shipping_address=shipping,
        billing_address=billing,
        subtotal=totals.subtotal,
        tax_total=totals.tax,
        shipping_total=totals.shipping,
        discount_total=totals.discount,
        grand_total=totals.grand_total,
        currency=current_app.config['CURRENCY'],
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        notes=(notes or '').strip() or None,
    )
    db.session.add(order)

    order_items = []
    try:
        with persistence_errors('order'):
            for variant, quantity in variants:
                order_items.append(
                    _add_line(order, variant, quantity, tax_rate))
            adjust_sales_counters(order_items, 1)
    except (InsufficientStockError, ValidationError):
        db.session.rollback()
        raise

    commit_or_raise('order')

    logger.info(
        "Order %s placed by user %s: %s lines, total %s",
        order.order_number, actor.id, len(variants), order.grand_total)
    log_audit(
        actor=actor,
        action='ORDER_PLACE',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'order_number': order.order_number,
            'grand_total': str(order.grand_total),
            'lines': len(variants),
        },
    )
    notification_service.emit(notification_service.ORDER_PLACED, {
        'order_id': order.id,
        'order_number': order.order_number,
        'user_id': order.user_id,
        'seller_ids': sorted({v.product.seller_id for v, _ in variants}),
        'grand_total': str(order.grand_total),
    })
    return order
