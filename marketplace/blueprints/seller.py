from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from marketplace.actor import Actor
from marketplace.errors import AuthorizationError
from marketplace.models import OrderItem, OrderItemStatus, UserRole
from marketplace.middleware import role_required
from marketplace.services.order_state_service import (
    parse_status,
    status_counts,
    transition_order_item,
)
from marketplace.services.payout_service import seller_earnings
from marketplace.utils import paginate_query, serialize_order_item
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('seller', __name__)


def _seller_actor() -> Actor:
    actor = Actor.from_user(current_user)
    if actor.seller_id is None:
        raise AuthorizationError('No seller profile for this account')
    return actor


@bp.route('/api/seller/order-items', methods=['GET'])
@login_required
@role_required(UserRole.SELLER)
def list_order_items():
    actor = _seller_actor()
    page = request.args.get('page', 1, type=int)
    query = OrderItem.query.filter_by(seller_id=actor.seller_id)

    status = request.args.get('status')
    if status:
        query = query.filter(
            OrderItem.status == parse_status(OrderItemStatus, status))

    result = paginate_query(
        query.order_by(OrderItem.created_at.desc(), OrderItem.id.desc()),
        page=page,
        per_page=current_app.config['ITEMS_PER_PAGE'])
    return jsonify({
        'ok': True,
        'items': [serialize_order_item(i) for i in result['items']],
        'page': result['page'],
        'pages': result['pages'],
        'total': result['total'],
    })


@bp.route('/api/seller/order-items/<int:item_id>/status', methods=['PATCH'])
@login_required
@role_required(UserRole.SELLER)
def update_order_item_status(item_id):
    data = request.get_json(silent=True) or {}
    item = transition_order_item(
        _seller_actor(),
        item_id,
        data.get('status'),
        tracking_number=data.get('tracking_number'),
        carrier=data.get('carrier'),
    )
    return jsonify({'ok': True, 'item': serialize_order_item(item)})


@bp.route('/api/seller/order-status-counts', methods=['GET'])
@login_required
@role_required(UserRole.SELLER)
def order_status_counts():
    return jsonify({'ok': True, 'counts': status_counts(_seller_actor())})


@bp.route('/api/seller/earnings', methods=['GET'])
@login_required
@role_required(UserRole.SELLER)
def earnings():
    actor = _seller_actor()
    return jsonify({
        'ok': True,
        'earnings': seller_earnings(actor.seller_id).to_dict(),
    })
