from datetime import datetime

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from marketplace.actor import Actor
from marketplace.errors import ValidationError
from marketplace.models import UserRole
from marketplace.middleware import role_required
from marketplace.services.commission_service import update_commission_rate
from marketplace.services.order_state_service import (
    derived_status,
    status_counts,
    transition_order,
    transition_order_item,
)
from marketplace.services.payout_service import (
    create_payout,
    mark_payout_processed,
)
from marketplace.services.reconciliation_service import run_nightly_jobs
from marketplace.services.refund_service import process_refund
from marketplace.utils import (
    isoformat,
    money_str,
    serialize_order,
    serialize_order_item,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__)


def _parse_datetime(value, field):
    if not value:
        raise ValidationError(f'{field} is required', field=field)
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an ISO date', field=field)


def _serialize_payout(payout):
    return {
        'id': payout.id,
        'seller_id': payout.seller_id,
        'amount': money_str(payout.amount),
        'currency': payout.currency,
        'order_item_ids': payout.order_item_ids,
        'period_start': isoformat(payout.period_start),
        'period_end': isoformat(payout.period_end),
        'status': payout.status.value,
        'transfer_reference': payout.transfer_reference,
        'failure_reason': payout.failure_reason,
        'processed_at': isoformat(payout.processed_at),
    }


@bp.route('/api/admin/orders/<int:order_id>/status', methods=['PATCH'])
@login_required
@role_required(UserRole.ADMIN)
def update_order_status(order_id):
    data = request.get_json(silent=True) or {}
    note = (data.get('note') or '').strip() or None
    order = transition_order(
        Actor.from_user(current_user), order_id, data.get('status'),
        note=note)
    return jsonify({
        'ok': True,
        'order': serialize_order(order, derived=derived_status(order)),
    })


@bp.route('/api/admin/order-items/<int:item_id>/status', methods=['PATCH'])
@login_required
@role_required(UserRole.ADMIN)
def update_order_item_status(item_id):
    data = request.get_json(silent=True) or {}
    item = transition_order_item(
        Actor.from_user(current_user),
        item_id,
        data.get('status'),
        tracking_number=data.get('tracking_number'),
        carrier=data.get('carrier'),
    )
    return jsonify({'ok': True, 'item': serialize_order_item(item)})


@bp.route('/api/admin/orders/<int:order_id>/refund', methods=['POST'])
@login_required
@role_required(UserRole.ADMIN)
def refund_order(order_id):
    data = request.get_json(silent=True) or {}
    reason = (data.get('reason') or '').strip() or None
    entry = process_refund(Actor.from_user(current_user), order_id, reason)
    return jsonify({
        'ok': True,
        'refund': {
            'id': entry.id,
            'order_id': entry.order_id,
            'amount': money_str(entry.amount),
            'currency': entry.currency,
            'status': entry.status.value,
            'provider_reference': entry.provider_reference,
            'failure_reason': entry.failure_reason,
        },
    })


@bp.route('/api/admin/sellers/<int:seller_id>/commission-rate',
          methods=['PATCH'])
@login_required
@role_required(UserRole.ADMIN)
def update_seller_commission(seller_id):
    data = request.get_json(silent=True) or {}
    if 'commission_rate' not in data:
        raise ValidationError('commission_rate is required',
                              field='commission_rate')
    seller = update_commission_rate(
        Actor.from_user(current_user), seller_id, data['commission_rate'])
    return jsonify({
        'ok': True,
        'seller_id': seller.id,
        'commission_rate': str(seller.commission_rate),
    })


@bp.route('/api/admin/order-status-counts', methods=['GET'])
@login_required
@role_required(UserRole.ADMIN)
def order_status_counts():
    return jsonify({
        'ok': True,
        'counts': status_counts(Actor.from_user(current_user)),
    })


@bp.route('/api/admin/maintenance/reconcile-sales', methods=['POST'])
@login_required
@role_required(UserRole.ADMIN)
def reconcile_sales():
    summary = run_nightly_jobs(
        actor=Actor.from_user(current_user), triggered_by='admin')
    result = summary['results']['reconcile_sales_counts']
    return jsonify(dict(result, ok=result['success']))


@bp.route('/api/admin/payouts', methods=['POST'])
@login_required
@role_required(UserRole.ADMIN)
def create_seller_payout():
    data = request.get_json(silent=True) or {}
    seller_id = data.get('seller_id')
    if isinstance(seller_id, bool) or not isinstance(seller_id, int):
        raise ValidationError('seller_id must be an integer',
                              field='seller_id')
    payout = create_payout(
        Actor.from_user(current_user),
        seller_id,
        _parse_datetime(data.get('period_start'), 'period_start'),
        _parse_datetime(data.get('period_end'), 'period_end'),
    )
    return jsonify({'ok': True, 'payout': _serialize_payout(payout)}), 201


@bp.route('/api/admin/payouts/<int:payout_id>/processed', methods=['POST'])
@login_required
@role_required(UserRole.ADMIN)
def payout_processed(payout_id):
    data = request.get_json(silent=True) or {}
    succeeded = data.get('succeeded')
    if not isinstance(succeeded, bool):
        raise ValidationError('succeeded must be true or false',
                              field='succeeded')
    payout = mark_payout_processed(
        Actor.from_user(current_user),
        payout_id,
        succeeded,
        transfer_reference=data.get('transfer_reference'),
        failure_reason=data.get('failure_reason'),
    )
    return jsonify({'ok': True, 'payout': _serialize_payout(payout)})
