"""Payment provider boundary.

The provider captures money on its own; we only receive confirmation
events and ask it for refunds.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from flask import current_app

from marketplace.errors import (
    AlreadyProcessedError,
    NotFoundError,
    ValidationError,
)
from marketplace.extensions import db
from marketplace.models import Order, PaymentStatus
from marketplace.services.audit_service import log_audit
from marketplace.services.order_state_service import confirm_order
from marketplace.utils import commit_or_raise, round_money
import logging

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised by a gateway when the provider rejects a request."""


class PaymentGateway:
    name = 'base'

    def request_refund(self, order: Order, amount: Decimal) -> str:
        """Ask the provider to refund ``amount``; return its reference."""
        raise NotImplementedError


class MockPaymentGateway(PaymentGateway):
    name = 'mock'

    def __init__(self):
        self.refunds = []

    def request_refund(self, order, amount):
        reference = (
            f"MOCK_REFUND_{order.id}_{int(datetime.utcnow().timestamp())}"
        )
        self.refunds.append((order.id, amount, reference))
        return reference


def get_gateway() -> PaymentGateway:
    return current_app.extensions['payment_gateway']


@dataclass(frozen=True)
class PaymentEvent:
    order_id: int
    amount: Decimal
    succeeded: bool
    provider: str = 'mock'
    reference: Optional[str] = None
    failure_reason: Optional[str] = None


def apply_payment_event(event: PaymentEvent, actor=None) -> Order:
    """Record a provider confirmation and confirm the order on success.

    The payment record is committed before confirmation runs, so a stock
    failure during confirmation still leaves the payment visible.
    """
    order = db.session.get(Order, event.order_id)
    if order is None:
        raise NotFoundError('Order', event.order_id)
    if order.payment_status in (PaymentStatus.SUCCEEDED,
                                PaymentStatus.REFUNDED):
        raise AlreadyProcessedError(
            f'Payment for order {order.order_number} already recorded')
    if round_money(event.amount) != round_money(order.grand_total):
        raise ValidationError(
            f'Payment amount {event.amount} does not match order total '
            f'{order.grand_total}',
            field='amount')

    order.payment_provider = event.provider
    order.payment_reference = event.reference
    if not event.succeeded:
        order.payment_status = PaymentStatus.FAILED
        commit_or_raise('payment failure')
        logger.warning(
            "Payment failed for order %s: %s",
            order.order_number, event.failure_reason)
        log_audit(
            actor=actor,
            action='PAYMENT_FAILED',
            target_type='ORDER',
            target_id=order.id,
            payload={'reason': event.failure_reason},
        )
        return order

    order.payment_status = PaymentStatus.SUCCEEDED
    commit_or_raise('payment')
    log_audit(
        actor=actor,
        action='PAYMENT_SUCCESS',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'amount': str(order.grand_total),
            'provider': event.provider,
            'reference': event.reference,
        },
    )
    return confirm_order(order.id, actor=actor)
