from sqlalchemy import select

from storefront import get_db
from storefront.models.audit import AuditLog
from storefront.models.order import Order
from storefront.services.orders import load_order
from tests.test_lifecycle_helpers import actor_with_headers, assert_transition, jwt_headers
from tests.test_utils_seed import ensure_user, make_order, make_product, tracking_count, unique

MANAGER = [{'resource': 'orders', 'actions': ['read', 'update']}]


def _branch_actor(branch_id, **extra):
    conditions = {'branchIds': [branch_id], **extra}
    return actor_with_headers([{'resource': 'orders', 'actions': ['read', 'update'], 'conditions': conditions}], 'branch')


def test_checkout_creates_pending_order_with_event(client, app_context):
    buyer = ensure_user(f"{unique('buyer')}@example.com")
    product = make_product(price_cents=250, stock=5)
    resp = client.post('/orders', json={
        'items': [{'product_id': product.id, 'quantity': 2}],
        'branch_id': 'B1',
        'shipping_address': {'city': 'Lisbon'},
    }, headers=jwt_headers(buyer.id, buyer.name))
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['status'] == 'pending'
    assert body['total_cents'] == 500
    assert body['user_id'] == buyer.id
    assert len(body['order_number']) == 9
    assert tracking_count(body['id']) == 1
    assert get_db().get(type(product), product.id).stock == 3

    mine = client.get('/orders/mine', headers=jwt_headers(buyer.id, buyer.name)).get_json()
    assert [o['id'] for o in mine['data']] == [body['id']]


def test_checkout_rejects_bad_items(client, app_context):
    buyer = ensure_user(f"{unique('buyer')}@example.com")
    headers = jwt_headers(buyer.id, buyer.name)
    product = make_product(stock=1)
    assert client.post('/orders', json={'items': []}, headers=headers).status_code == 400
    assert client.post('/orders', json={'items': [{'product_id': product.id, 'quantity': 2}]}, headers=headers).status_code == 400
    assert client.post('/orders', json={'items': [{'product_id': 99999999}]}, headers=headers).status_code == 400


def test_status_change_appends_event_and_audit(client, app_context):
    actor, headers = actor_with_headers(MANAGER, 'mgr')
    order = make_order(branch_id='B1')
    body = assert_transition(client, order.id, 'confirmed', headers)
    assert body['changed'] is True
    assert tracking_count(order.id) == 2
    entry = get_db().execute(
        select(AuditLog).where(AuditLog.action == 'ORDER.STATUS', AuditLog.entity_id == str(order.id))
    ).scalar_one()
    assert entry.actor_user_id == actor.id

    events = client.get(f'/orders/{order.id}/tracking', headers=headers).get_json()['events']
    assert [e['status'] for e in events] == ['pending', 'confirmed']


def test_same_status_is_not_a_change(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'mgr')
    order = make_order()
    body = assert_transition(client, order.id, 'pending', headers)
    assert body['changed'] is False
    assert tracking_count(order.id) == 1


def test_branch_scope_violation_on_update(client, app_context):
    _, headers = _branch_actor('B1')
    order = make_order(branch_id='B2')
    resp = client.patch(f'/orders/{order.id}', json={'priority': 'high'}, headers=headers)
    assert resp.status_code == 403
    assert resp.get_json()['error']['kind'] == 'scope_violation'
    assert_transition(client, order.id, 'confirmed', headers, 403, 'scope_violation')
    assert load_order(get_db(), order.id).priority == 'normal'
    assert load_order(get_db(), order.id).status == 'pending'


def test_moving_order_out_of_scope_is_rejected(client, app_context):
    _, headers = _branch_actor('B1')
    order = make_order(branch_id='B1')
    resp = client.patch(f'/orders/{order.id}', json={'branch_id': 'B2'}, headers=headers)
    assert resp.status_code == 403
    assert load_order(get_db(), order.id).branch_id == 'B1'


def test_backwards_transition_rejected_without_event(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'mgr')
    order = make_order(status=Order.STATUS_SHIPPED)
    body = assert_transition(client, order.id, 'processing', headers, 400, 'invalid_transition')
    assert body['error']['from'] == 'shipped'
    assert load_order(get_db(), order.id).status == 'shipped'
    assert tracking_count(order.id) == 1


def test_terminal_order_rejects_edits_but_takes_notes(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'mgr')
    order = make_order(status=Order.STATUS_CANCELLED)
    assert_transition(client, order.id, 'pending', headers, 409, 'terminal_state')
    resp = client.patch(f'/orders/{order.id}/priority', json={'priority': 'urgent'}, headers=headers)
    assert resp.status_code == 409
    note = client.post(f'/orders/{order.id}/notes', json={'text': 'customer called'}, headers=headers)
    assert note.status_code == 201
    detail = client.get(f'/orders/{order.id}', headers=headers).get_json()
    assert [n['text'] for n in detail['internal_notes']] == ['customer called']


def test_delivered_order_is_final(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'mgr')
    order = make_order(status=Order.STATUS_DELIVERED)
    resp = client.post(f'/orders/{order.id}/refund', json={'reason': 'damaged'}, headers=headers)
    assert resp.status_code == 409
    assert resp.get_json()['error']['kind'] == 'terminal_state'
    assert_transition(client, order.id, 'returned', headers, 409, 'terminal_state')
    assert load_order(get_db(), order.id).status == 'delivered'
    assert tracking_count(order.id) == 1
    detail = client.get(f'/orders/{order.id}', headers=headers).get_json()
    assert detail['internal_notes'] == []


def test_shipped_order_can_be_refunded(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'mgr')
    order = make_order(status=Order.STATUS_SHIPPED)
    resp = client.post(f'/orders/{order.id}/refund', json={'reason': 'lost in transit'}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'refunded'
    assert tracking_count(order.id) == 2
    detail = client.get(f'/orders/{order.id}', headers=headers).get_json()
    assert detail['internal_notes'][0]['text'] == 'Refunded: lost in transit'


def test_cancel_live_order(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'mgr')
    order = make_order(status=Order.STATUS_CONFIRMED)
    resp = client.post(f'/orders/{order.id}/cancel', json={}, headers=headers)
    assert resp.get_json()['status'] == 'cancelled'
    assert tracking_count(order.id) == 2


def test_max_amount_caps_writes(client, app_context):
    _, headers = actor_with_headers(
        [{'resource': 'orders', 'actions': ['read', 'update'], 'conditions': {'maxAmount': 500}}], 'capped')
    small = make_order(total_cents=400)
    big = make_order(total_cents=900)
    assert_transition(client, small.id, 'confirmed', headers)
    assert_transition(client, big.id, 'confirmed', headers, 403, 'scope_violation')
    # reads are not capped
    assert client.get(f'/orders/{big.id}', headers=headers).status_code == 200


def test_list_is_scoped_and_out_of_scope_get_is_404(client, app_context):
    branch = unique('B')
    _, headers = _branch_actor(branch)
    inside = make_order(branch_id=branch)
    outside = make_order(branch_id=unique('B'))
    listing = client.get('/orders?limit=200', headers=headers).get_json()
    ids = {o['id'] for o in listing['data']}
    assert inside.id in ids and outside.id not in ids
    assert all(o['branch_id'] == branch for o in listing['data'])
    assert client.get(f'/orders/{outside.id}', headers=headers).status_code == 404
    assert client.get(f'/orders/{outside.id}/tracking', headers=headers).status_code == 404


def test_list_filters_by_status(client, app_context):
    branch = unique('B')
    _, headers = _branch_actor(branch)
    make_order(branch_id=branch)
    shipped = make_order(branch_id=branch, status=Order.STATUS_SHIPPED)
    body = client.get('/orders?status=shipped,delivered', headers=headers).get_json()
    assert [o['id'] for o in body['data']] == [shipped.id]


def test_owner_sees_own_order_without_grants(client, app_context):
    owner = ensure_user(f"{unique('owner')}@example.com")
    stranger = ensure_user(f"{unique('stranger')}@example.com")
    order = make_order(user_id=owner.id)
    assert client.get(f'/orders/{order.id}', headers=jwt_headers(owner.id)).status_code == 200
    assert client.get(f'/orders/{order.id}/tracking', headers=jwt_headers(owner.id)).status_code == 200
    assert client.get(f'/orders/{order.id}', headers=jwt_headers(stranger.id)).status_code == 404
    assert client.get('/orders', headers=jwt_headers(owner.id)).status_code == 403


def test_owned_by_self_scope(client, app_context):
    actor, headers = actor_with_headers(
        [{'resource': 'orders', 'actions': ['read', 'update'], 'conditions': {'ownedBy': 'self'}}], 'own')
    mine = make_order(user_id=actor.id)
    other = make_order(user_id=ensure_user(f"{unique('x')}@example.com").id)
    assert_transition(client, mine.id, 'confirmed', headers)
    assert_transition(client, other.id, 'confirmed', headers, 403, 'scope_violation')


def test_bulk_status_reports_each_order(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'bulk')
    a = make_order()
    b = make_order(status=Order.STATUS_SHIPPED)
    resp = client.post('/orders/bulk/status', json={'order_ids': [a.id, b.id, 'x', 99999999], 'status': 'confirmed'},
                       headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['updated'] == 1
    assert body['failed'] == 3
    by_id = {r['order_id']: r for r in body['results']}
    assert by_id[a.id]['success'] is True
    assert by_id[b.id]['kind'] == 'invalid_transition'
    assert load_order(get_db(), a.id).status == 'confirmed'


def test_assign_and_priority(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'assign')
    packer = ensure_user(f"{unique('packer')}@example.com")
    order = make_order()
    resp = client.patch(f'/orders/{order.id}/assign', json={'assigned_to': packer.id}, headers=headers)
    assert resp.get_json()['assigned_to'] == packer.id
    assert client.patch(f'/orders/{order.id}/assign', json={'assigned_to': 99999999}, headers=headers).status_code == 400
    assert client.patch(f'/orders/{order.id}/priority', json={'priority': 'urgent'}, headers=headers).get_json()['priority'] == 'urgent'
    assert client.patch(f'/orders/{order.id}/priority', json={'priority': 'asap'}, headers=headers).status_code == 400


def test_patch_with_status_and_carrier_snapshots_event(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'ship')
    order = make_order(status=Order.STATUS_PROCESSING)
    resp = client.patch(f'/orders/{order.id}', json={
        'status': 'shipped', 'carrier': 'UPS', 'tracking_number': '1Z999', 'note': 'handed over',
    }, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    events = client.get(f'/orders/{order.id}/tracking', headers=headers).get_json()['events']
    assert events[-1]['status'] == 'shipped'
    assert events[-1]['carrier'] == 'UPS'
    assert events[-1]['tracking_number'] == '1Z999'
    assert [n['text'] for n in resp.get_json()['internal_notes']] == ['handed over']


def test_unknown_field_rejected(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'mgr')
    order = make_order()
    assert client.patch(f'/orders/{order.id}', json={'total_cents': 1}, headers=headers).status_code == 400


def test_lost_status_race_is_a_conflict(client, app_context, monkeypatch):
    import storefront.services.orders as order_service
    _, headers = actor_with_headers(MANAGER, 'race')
    order = make_order()
    monkeypatch.setattr(order_service, 'compare_and_swap_status', lambda *a, **k: False)
    body = assert_transition(client, order.id, 'confirmed', headers, 409, 'concurrent_modification')
    assert body['error']['record_id'] == order.id
    assert load_order(get_db(), order.id).status == 'pending'
    assert tracking_count(order.id) == 1


def test_missing_permission_denied(client, app_context):
    _, headers = actor_with_headers([{'resource': 'orders', 'actions': ['read']}], 'ro')
    order = make_order()
    assert_transition(client, order.id, 'confirmed', headers, 403, 'denied')


def test_failed_commit_does_not_poison_next_request(client, app_context, monkeypatch):
    import storefront.services.orders as order_service
    _, headers = actor_with_headers(MANAGER, 'poison')
    order = make_order()

    def broken_audit(session, *args, **kwargs):
        entry = AuditLog(action=None, actor_user_id=0)
        session.add(entry)
        return entry

    monkeypatch.setattr(order_service, 'add_audit', broken_audit)
    resp = client.post(f'/orders/{order.id}/status', json={'status': 'confirmed'}, headers=headers)
    assert resp.status_code == 500
    assert resp.get_json()['error']['detail'] == 'Unexpected error'

    monkeypatch.undo()
    assert_transition(client, order.id, 'confirmed', headers)
    assert client.get('/orders', headers=headers).status_code == 200
    assert tracking_count(order.id) == 2


def test_patch_rejects_wrong_json_types(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'types')
    order = make_order(branch_id='B1')
    bad_bodies = [
        {'status': ['confirmed']},
        {'carrier': {'x': 1}},
        {'tracking_number': 42},
        {'shipping_address': 'Lisbon'},
        {'priority': ['high']},
        {'assigned_to': 'abc'},
        {'assigned_to': True},
        {'assigned_to': 99999999},
        {'carrier': 'UPS', 'note': {'text': 'x'}},
    ]
    for body in bad_bodies:
        resp = client.patch(f'/orders/{order.id}', json=body, headers=headers)
        assert resp.status_code == 400, body
    fresh = load_order(get_db(), order.id)
    assert fresh.status == 'pending'
    assert fresh.carrier is None
    assert fresh.assigned_to is None
    assert tracking_count(order.id) == 1


def test_patch_assigns_existing_user(client, app_context):
    _, headers = actor_with_headers(MANAGER, 'assignee')
    packer = ensure_user(f"{unique('packer')}@example.com")
    order = make_order()
    resp = client.patch(f'/orders/{order.id}', json={'assigned_to': packer.id, 'carrier': None}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json()['assigned_to'] == packer.id
