from tests.test_lifecycle_helpers import actor_with_headers
from tests.test_utils_seed import make_order, unique


def test_orders_multi_sort(client, app_context):
    branch = unique('B')
    _, headers = actor_with_headers(
        [{'resource': 'orders', 'actions': ['read'], 'conditions': {'branchIds': [branch]}}], 'sorter')
    small = make_order(branch_id=branch, total_cents=100)
    big_a = make_order(branch_id=branch, total_cents=900)
    big_b = make_order(branch_id=branch, total_cents=900)
    resp = client.get('/orders?sort=-total_cents,id', headers=headers)
    assert resp.status_code == 200
    assert [o['id'] for o in resp.get_json()['data']] == [big_a.id, big_b.id, small.id]


def test_unknown_sort_field_rejected(client, app_context):
    _, headers = actor_with_headers([{'resource': 'orders', 'actions': ['read']}], 'sorter')
    resp = client.get('/orders?sort=password', headers=headers)
    assert resp.status_code == 400
