from flask import Blueprint, request, jsonify, current_app
from marketplace.actor import Actor
from marketplace.errors import AlreadyProcessedError, ValidationError
from marketplace.services.payment_service import (
    PaymentEvent,
    apply_payment_event,
)
from marketplace.utils import to_decimal
import hmac
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('webhooks', __name__)

PAYMENT_STATUSES = {'succeeded': True, 'failed': False}


def _secret_matches(provided, expected) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


@bp.route('/api/webhooks/payment', methods=['POST'])
def payment_webhook():
    if not _secret_matches(
            request.headers.get('X-Webhook-Secret'),
            current_app.config.get('PAYMENT_WEBHOOK_SECRET')):
        logger.warning(
            "Rejected payment webhook from %s: bad secret",
            request.remote_addr)
        return jsonify({'error': 'Unauthorized'}), 401

    data = request.get_json(silent=True) or {}
    order_id = data.get('order_id')
    if isinstance(order_id, bool) or not isinstance(order_id, int):
        raise ValidationError('order_id must be an integer', field='order_id')
    status = (data.get('status') or '').strip().lower()
    if status not in PAYMENT_STATUSES:
        raise ValidationError('Unknown payment status', field='status')

    event = PaymentEvent(
        order_id=order_id,
        amount=to_decimal(data.get('amount'), field='amount'),
        succeeded=PAYMENT_STATUSES[status],
        provider=(data.get('provider') or 'mock'),
        reference=data.get('reference'),
        failure_reason=data.get('failure_reason'),
    )
    try:
        order = apply_payment_event(event, actor=Actor.system())
    except AlreadyProcessedError as e:
        # Providers redeliver; a repeat is acknowledged, not retried.
        logger.info("Duplicate payment webhook for order %s: %s",
                    order_id, e.message)
        return jsonify({'ok': True, 'duplicate': True})

    return jsonify({
        'ok': True,
        'order_id': order.id,
        'status': order.status.value,
        'payment_status': order.payment_status.value,
    })
