from tests.test_lifecycle_helpers import actor_with_headers
from tests.test_utils_seed import make_product, unique


def _category_editor(category, **extra):
    conditions = {'categoryIds': [category], **extra}
    return actor_with_headers(
        [{'resource': 'products', 'actions': ['create', 'read', 'update', 'delete'], 'conditions': conditions}], 'cat')


def test_list_is_scoped_to_categories(client, app_context):
    category = unique('cat')
    _, headers = _category_editor(category)
    inside = make_product(category_id=category)
    outside = make_product(category_id=unique('cat'))
    body = client.get('/products?limit=200', headers=headers).get_json()
    ids = {p['id'] for p in body['data']}
    assert inside.id in ids
    assert outside.id not in ids


def test_create_inside_scope(client, app_context):
    category = unique('cat')
    actor, headers = _category_editor(category)
    resp = client.post('/products', json={'name': 'Mug', 'sku': unique('SKU'), 'category_id': category,
                                          'price_cents': 900, 'stock': 4}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    assert resp.get_json()['created_by'] == actor.id


def test_create_outside_scope_rejected(client, app_context):
    _, headers = _category_editor(unique('cat'))
    resp = client.post('/products', json={'name': 'Mug', 'sku': unique('SKU'), 'category_id': 'elsewhere',
                                          'price_cents': 900}, headers=headers)
    assert resp.status_code == 403
    assert resp.get_json()['error']['kind'] == 'scope_violation'


def test_price_ceiling_applies_to_writes(client, app_context):
    category = unique('cat')
    _, headers = _category_editor(category, maxAmount=1000)
    product = make_product(category_id=category, price_cents=500)
    ok = client.patch(f'/products/{product.id}', json={'price_cents': 1000}, headers=headers)
    assert ok.status_code == 200
    too_much = client.patch(f'/products/{product.id}', json={'price_cents': 1001}, headers=headers)
    assert too_much.status_code == 403


def test_delete_out_of_scope_rejected(client, app_context):
    _, headers = _category_editor(unique('cat'))
    product = make_product(category_id=unique('cat'))
    assert client.delete(f'/products/{product.id}', headers=headers).status_code == 403
    assert client.delete('/products/99999999', headers=headers).status_code == 404


def test_owned_by_self_uses_creator(client, app_context):
    actor, headers = actor_with_headers(
        [{'resource': 'products', 'actions': ['read', 'update'], 'conditions': {'ownedBy': 'self'}}], 'own')
    mine = make_product(created_by=actor.id)
    other = make_product()
    assert client.patch(f'/products/{mine.id}', json={'stock': 1}, headers=headers).status_code == 200
    assert client.patch(f'/products/{other.id}', json={'stock': 1}, headers=headers).status_code == 403


def test_duplicate_sku_rejected(client, app_context):
    _, headers = actor_with_headers([{'resource': 'products', 'actions': ['*']}], 'sku')
    sku = unique('SKU')
    assert client.post('/products', json={'name': 'A', 'sku': sku}, headers=headers).status_code == 201
    assert client.post('/products', json={'name': 'B', 'sku': sku}, headers=headers).status_code == 400
