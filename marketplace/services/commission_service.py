from dataclasses import dataclass
from decimal import Decimal

from marketplace.errors import NotFoundError, ValidationError
from marketplace.extensions import db
from marketplace.models import SellerProfile, UserRole
from marketplace.services.audit_service import log_audit
from marketplace.utils import commit_or_raise, round_money, to_decimal
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommissionSplit:
    commission_rate: Decimal
    commission_amount: Decimal
    seller_amount: Decimal


def validate_rate(rate) -> Decimal:
    value = to_decimal(rate, field='commission_rate')
    if value < 0 or value > 100:
        raise ValidationError(
            'Commission rate must be between 0 and 100',
            field='commission_rate')
    return value


def split_commission(subtotal, total, commission_rate) -> CommissionSplit:
    """Split one order line between the platform and the seller.

    Commission is taken from the line subtotal; the seller gets the rest of
    the line total, so ``commission_amount + seller_amount == total``.
    """
    rate = validate_rate(commission_rate)
    commission_amount = round_money(
        to_decimal(subtotal, field='subtotal') * rate / 100)
    total = round_money(total)
    return CommissionSplit(
        commission_rate=rate,
        commission_amount=commission_amount,
        seller_amount=total - commission_amount,
    )


def update_commission_rate(actor, seller_id: int, rate) -> SellerProfile:
    """Change a seller's rate. Existing order lines keep their snapshot."""
    actor.require(UserRole.ADMIN)
    new_rate = validate_rate(rate)

    seller = db.session.get(SellerProfile, seller_id)
    if seller is None:
        raise NotFoundError('Seller', seller_id)

    old_rate = seller.commission_rate
    seller.commission_rate = new_rate
    commit_or_raise('commission rate')

    logger.info(
        "Commission rate for seller %s changed from %s to %s",
        seller.id, old_rate, new_rate)
    log_audit(
        actor=actor,
        action='SELLER_COMMISSION_RATE_UPDATE',
        target_type='SELLER',
        target_id=seller.id,
        payload={'from': str(old_rate), 'to': str(new_rate)},
    )
    return seller
