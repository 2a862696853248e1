"""Checkout pricing.

Pure functions: nothing here touches the database. Amounts are Decimals
rounded half-up to cents.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List

from flask import current_app

from marketplace.errors import (
    EmptyCartError,
    InvalidQuantityError,
    ValidationError,
)
from marketplace.utils import round_money, to_decimal

ZERO = Decimal('0.00')


@dataclass(frozen=True)
class CartLine:
    variant_id: int
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class ShippingRule:
    """Flat fee, waived once the subtotal reaches ``free_threshold``."""

    flat_fee: Decimal
    free_threshold: Decimal

    def cost_for(self, subtotal: Decimal) -> Decimal:
        if subtotal >= self.free_threshold:
            return ZERO
        return round_money(self.flat_fee)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal
    grand_total: Decimal


@dataclass(frozen=True)
class LineTotals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal


def configured_shipping_rule() -> ShippingRule:
    return ShippingRule(
        flat_fee=to_decimal(current_app.config['SHIPPING_FLAT_FEE']),
        free_threshold=to_decimal(
            current_app.config['FREE_SHIPPING_THRESHOLD']),
    )


def configured_tax_rate() -> Decimal:
    return to_decimal(current_app.config['TAX_RATE'], field='tax_rate')


def _validate_line(line: CartLine) -> None:
    if isinstance(line.quantity, bool) or not isinstance(line.quantity, int):
        raise ValidationError('Quantity must be an integer', field='quantity')
    if line.quantity <= 0:
        raise InvalidQuantityError(line.quantity, line.variant_id)
    if to_decimal(line.unit_price, field='unit_price') < 0:
        raise ValidationError('Unit price cannot be negative',
                              field='unit_price')


def _validate_tax_rate(tax_rate) -> Decimal:
    rate = to_decimal(tax_rate, field='tax_rate')
    if rate < 0:
        raise ValidationError('Tax rate cannot be negative', field='tax_rate')
    return rate


def calculate_line_totals(unit_price, quantity: int, tax_rate,
                          discount=ZERO) -> LineTotals:
    rate = _validate_tax_rate(tax_rate)
    if quantity <= 0:
        raise InvalidQuantityError(quantity)
    subtotal = round_money(to_decimal(unit_price, field='unit_price')
                           * quantity)
    tax_amount = round_money(subtotal * rate)
    discount_amount = round_money(discount)
    if discount_amount < 0 or discount_amount > subtotal + tax_amount:
        raise ValidationError('Discount is out of range', field='discount')
    return LineTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total=subtotal + tax_amount - discount_amount,
    )


def calculate_order_totals(lines: Iterable[CartLine],
                           shipping_rule: ShippingRule,
                           tax_rate,
                           discount_total=ZERO) -> OrderTotals:
    lines: List[CartLine] = list(lines)
    if not lines:
        raise EmptyCartError()
    for line in lines:
        _validate_line(line)
    rate = _validate_tax_rate(tax_rate)

    # Order figures are sums of the rounded line figures so the lines
    # always add up to what the customer is charged.
    line_totals = [
        calculate_line_totals(line.unit_price, line.quantity, rate)
        for line in lines
    ]
    subtotal = sum((t.subtotal for t in line_totals), ZERO)
    shipping = shipping_rule.cost_for(subtotal)
    tax = sum((t.tax_amount for t in line_totals), ZERO)
    discount = round_money(discount_total)
    if discount < 0:
        raise ValidationError('Discount cannot be negative',
                              field='discount_total')
    if discount > subtotal + shipping + tax:
        raise ValidationError('Discount exceeds order total',
                              field='discount_total')

    return OrderTotals(
        subtotal=subtotal,
        shipping=shipping,
        tax=tax,
        discount=discount,
        grand_total=subtotal + shipping + tax - discount,
    )
