from flask import Blueprint, request, abort, g
from flask_jwt_extended import get_jwt, jwt_required
from sqlalchemy import select

from storefront import get_db
from storefront.authz.scope import build_read_filter
from storefront.decorators.auth import require_permission
from storefront.models.order import Order
from storefront.models.product import Product
from storefront.services import orders as order_service
from storefront.services.policy import current_actor_id, current_conditions, get_gate, order_fsm
from storefront.utils.filters import apply_filters, as_datetime, csv_list, eq_filter, in_filter, since_filter, until_filter
from storefront.utils.listing import paginate, list_response
from storefront.utils.sorting import apply_multi_sort
from storefront.utils.validation import json_body, parse_int, require_fields, validate_choice

orders_bp = Blueprint('orders', __name__)

ORDER_FILTERS = {
    'status': {'op': in_filter(Order.status), 'coerce': csv_list},
    'priority': {'op': eq_filter(Order.priority), 'validate': lambda v: v in Order.PRIORITIES},
    'branch_id': {'op': eq_filter(Order.branch_id)},
    'assigned_to': {'op': eq_filter(Order.assigned_to), 'coerce': int},
    'user_id': {'op': eq_filter(Order.user_id), 'coerce': int},
    'since': {'op': since_filter(Order.created_at), 'coerce': as_datetime},
    'until': {'op': until_filter(Order.created_at), 'coerce': as_datetime},
}

ORDER_SORTS = {
    'created_at': Order.created_at,
    'status_changed_at': Order.status_changed_at,
    'total_cents': Order.total_cents,
    'priority': Order.priority,
    'status': Order.status,
    'id': Order.id,
}


def _mutation_kwargs():
    return {
        'fsm': order_fsm(),
        'actor_id': g.actor_id,
        'conditions': current_conditions(),
        'author_name': get_jwt().get('name'),
    }


def _scoped_order(order_id: int) -> Order:
    """Load one order through the caller's read scope; out-of-scope looks like missing."""
    stmt = build_read_filter(select(Order).where(Order.id == order_id), Order, current_conditions(), g.actor_id)
    order = get_db().execute(stmt).scalar_one_or_none()
    if order is None:
        abort(404, description='Order not found')
    return order


@orders_bp.post('')
@jwt_required()
def checkout():
    """Authenticated checkout: the caller owns the new pending order."""
    data = json_body()
    require_fields(data, 'items')
    items = data.get('items')
    if not isinstance(items, list) or not items:
        abort(400, description='items must be a non-empty list')
    session = get_db()
    lines = []
    total = 0
    for raw in items:
        if not isinstance(raw, dict):
            abort(400, description='each item must be an object')
        product_id = parse_int(raw.get('product_id'), 'product_id')
        quantity = parse_int(raw.get('quantity', 1), 'quantity', minimum=1)
        product = session.get(Product, product_id)
        if product is None:
            abort(400, description=f'product {product_id} not found')
        if product.stock < quantity:
            abort(400, description=f'insufficient stock for product {product_id}')
        product.stock -= quantity
        lines.append({'product_id': product.id, 'name': product.name, 'quantity': quantity, 'price_cents': product.price_cents})
        total += product.price_cents * quantity
    branch_id = data.get('branch_id')
    order = order_service.create_order(
        session,
        user_id=current_actor_id(),
        total_cents=total,
        branch_id=str(branch_id) if branch_id is not None else None,
        items=lines,
        shipping_address=data.get('shipping_address'),
    )
    return order_service.order_json(order), 201


@orders_bp.get('')
@require_permission('orders', 'read')
def list_orders():
    session = get_db()
    stmt = build_read_filter(select(Order), Order, current_conditions(), g.actor_id)
    stmt = apply_filters(stmt, ORDER_FILTERS, request.args)
    stmt = apply_multi_sort(stmt, request.args.get('sort'), ORDER_SORTS, Order.id, default='-created_at')
    rows, total, limit, offset = paginate(session, stmt)
    latest_ts = max((o.updated_at for o in rows if o.updated_at), default=None)
    return list_response([order_service.order_json(o) for o in rows], total, limit, offset, latest_ts)


@orders_bp.get('/mine')
@jwt_required()
def list_my_orders():
    session = get_db()
    stmt = select(Order).where(Order.user_id == current_actor_id()).order_by(Order.created_at.desc(), Order.id.desc())
    rows, total, limit, offset = paginate(session, stmt)
    return list_response([order_service.order_json(o) for o in rows], total, limit, offset)


@orders_bp.get('/<int:order_id>')
@jwt_required()
def get_order(order_id: int):
    actor_id = current_actor_id()
    decision = get_gate().decide(actor_id, 'orders', 'read')
    if decision.allowed:
        g.actor_id = actor_id
        g.permission = decision
        return order_service.order_json(_scoped_order(order_id), with_notes=True)
    order = get_db().get(Order, order_id)
    if order is None or actor_id is None or order.user_id != actor_id:
        abort(404, description='Order not found')
    return order_service.order_json(order)


@orders_bp.get('/<int:order_id>/tracking')
@jwt_required()
def get_tracking(order_id: int):
    actor_id = current_actor_id()
    decision = get_gate().decide(actor_id, 'orders', 'read')
    session = get_db()
    if decision.allowed:
        g.actor_id = actor_id
        g.permission = decision
        order = _scoped_order(order_id)
    else:
        order = session.get(Order, order_id)
        if order is None or actor_id is None or order.user_id != actor_id:
            abort(404, description='Order not found')
    events = order_service.tracking_events(session, order.id)
    return {'order_id': order.id, 'status': order.status, 'events': [order_service.event_json(e) for e in events]}


@orders_bp.patch('/<int:order_id>')
@require_permission('orders', 'update')
def update_order(order_id: int):
    data = json_body()
    note = data.pop('note', None)
    if not data and not note:
        abort(400, description='no changes supplied')
    if 'status' in data:
        validate_choice(data['status'], Order.ALL_STATUSES)
    if isinstance(data.get('branch_id'), int) and not isinstance(data['branch_id'], bool):
        data['branch_id'] = str(data['branch_id'])
    session = get_db()
    if data:
        order, _ = order_service.update_order(session, order_id, data, note=note, **_mutation_kwargs())
    else:
        order_service.add_note(session, order_id, note, actor_id=g.actor_id, author_name=get_jwt().get('name'),
                               conditions=current_conditions())
        order = order_service.load_order(session, order_id)
    return order_service.order_json(order, with_notes=True)


@orders_bp.post('/<int:order_id>/status')
@require_permission('orders', 'update')
def change_status(order_id: int):
    data = json_body()
    require_fields(data, 'status')
    target = validate_choice(data['status'], Order.ALL_STATUSES)
    order, result = order_service.change_status(get_db(), order_id, target, note=data.get('note'), **_mutation_kwargs())
    body = order_service.order_json(order)
    body['changed'] = bool(result and result.changed)
    return body


@orders_bp.post('/bulk/status')
@require_permission('orders', 'update')
def bulk_status():
    data = json_body()
    require_fields(data, 'order_ids', 'status')
    ids = data['order_ids']
    if not isinstance(ids, list):
        abort(400, description='order_ids must be a list')
    target = validate_choice(data['status'], Order.ALL_STATUSES)
    results = order_service.bulk_change_status(get_db(), ids, target, note=data.get('note'), **_mutation_kwargs())
    return {
        'status': target,
        'results': results,
        'updated': sum(1 for r in results if r['success']),
        'failed': sum(1 for r in results if not r['success']),
    }


@orders_bp.patch('/<int:order_id>/assign')
@require_permission('orders', 'update')
def assign_order(order_id: int):
    data = json_body()
    if 'assigned_to' not in data:
        abort(400, description='assigned_to required')
    assignee = data['assigned_to']
    if assignee is not None:
        assignee = parse_int(assignee, 'assigned_to')
    order, _ = order_service.update_order(get_db(), order_id, {'assigned_to': assignee}, **_mutation_kwargs())
    return order_service.order_json(order)


@orders_bp.patch('/<int:order_id>/priority')
@require_permission('orders', 'update')
def set_priority(order_id: int):
    data = json_body()
    require_fields(data, 'priority')
    priority = validate_choice(data['priority'], Order.PRIORITIES, 'priority')
    order, _ = order_service.update_order(get_db(), order_id, {'priority': priority}, **_mutation_kwargs())
    return order_service.order_json(order)


@orders_bp.post('/<int:order_id>/notes')
@require_permission('orders', 'update')
def add_note(order_id: int):
    data = json_body()
    note = order_service.add_note(get_db(), order_id, data.get('text'), actor_id=g.actor_id,
                                  author_name=get_jwt().get('name'), conditions=current_conditions())
    return order_service.note_json(note), 201


@orders_bp.post('/<int:order_id>/cancel')
@require_permission('orders', 'update')
def cancel_order(order_id: int):
    data = json_body()
    reason = data.get('reason')
    order, _ = order_service.change_status(
        get_db(), order_id, Order.STATUS_CANCELLED,
        note=f'Cancelled: {reason}' if reason else None, **_mutation_kwargs())
    return order_service.order_json(order)


@orders_bp.post('/<int:order_id>/refund')
@require_permission('orders', 'update')
def refund_order(order_id: int):
    data = json_body()
    reason = data.get('reason')
    order, _ = order_service.change_status(
        get_db(), order_id, Order.STATUS_REFUNDED,
        note=f'Refunded: {reason}' if reason else None, **_mutation_kwargs())
    return order_service.order_json(order)
