from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from marketplace.actor import Actor
from marketplace.errors import NotFoundError, ValidationError
from marketplace.models import Order, OrderStatus, UserRole
from marketplace.middleware import role_required
from marketplace.services.checkout_service import place_order
from marketplace.services.order_state_service import (
    cancel_order_by_customer,
    derived_status,
    parse_status,
)
from marketplace.utils import paginate_query, serialize_order
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('orders', __name__)


@bp.route('/api/checkout', methods=['POST'])
@login_required
@role_required(UserRole.CUSTOMER)
def checkout():
    data = request.get_json(silent=True) or {}
    items = data.get('items')
    if not isinstance(items, list):
        raise ValidationError('items must be a list', field='items')

    order = place_order(
        Actor.from_user(current_user),
        items,
        data.get('shipping_address'),
        billing_address=data.get('billing_address'),
        notes=data.get('notes'),
    )
    return jsonify({
        'ok': True,
        'order': serialize_order(order, include_items=True),
    }), 201


@bp.route('/api/orders', methods=['GET'])
@login_required
@role_required(UserRole.CUSTOMER)
def list_orders():
    page = request.args.get('page', 1, type=int)
    per_page = current_app.config['ITEMS_PER_PAGE']
    query = Order.query.filter_by(user_id=current_user.id)

    status = request.args.get('status')
    if status:
        query = query.filter(Order.status == parse_status(OrderStatus, status))

    result = paginate_query(
        query.order_by(Order.created_at.desc(), Order.id.desc()),
        page=page,
        per_page=per_page)
    return jsonify({
        'ok': True,
        'orders': [serialize_order(o) for o in result['items']],
        'page': result['page'],
        'pages': result['pages'],
        'total': result['total'],
    })


@bp.route('/api/orders/<int:order_id>', methods=['GET'])
@login_required
@role_required(UserRole.CUSTOMER)
def get_order(order_id):
    order = Order.query.filter_by(
        id=order_id, user_id=current_user.id).first()
    if order is None:
        raise NotFoundError('Order', order_id)
    return jsonify({
        'ok': True,
        'order': serialize_order(
            order, include_items=True, derived=derived_status(order)),
    })


@bp.route('/api/orders/<int:order_id>/cancel', methods=['POST'])
@login_required
@role_required(UserRole.CUSTOMER)
def cancel_order(order_id):
    data = request.get_json(silent=True) or {}
    reason = (data.get('reason') or '').strip() or None
    order = cancel_order_by_customer(
        Actor.from_user(current_user), order_id, reason=reason)
    return jsonify({'ok': True, 'status': order.status.value})
