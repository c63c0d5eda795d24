from sqlalchemy import select

from storefront import get_db
from storefront.models.audit import AuditLog
from storefront.models.authz import Role, UserRole
from tests.test_lifecycle_helpers import actor_with_headers, jwt_headers
from tests.test_utils_seed import ensure_role, ensure_user, unique

ROLE_ADMIN = [
    {'resource': 'roles', 'actions': ['*']},
    {'resource': 'users', 'actions': ['read', 'update']},
    {'resource': 'audit', 'actions': ['read']},
]


def _admin():
    return actor_with_headers(ROLE_ADMIN, 'iam-admin')


def test_create_list_update_role(client, app_context):
    _, headers = _admin()
    name = unique('Packer')
    resp = client.post('/iam/roles', json={
        'name': name,
        'description': 'packs boxes',
        'grants': [{'resource': 'orders', 'actions': ['read'], 'conditions': {'branchIds': ['B1']}}],
    }, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    role = resp.get_json()
    assert role['grants'] == [{'resource': 'orders', 'actions': ['read'], 'conditions': {'branchIds': ['B1']}}]
    assert not role['is_system']

    listing = client.get('/iam/roles?limit=200', headers=headers)
    assert listing.status_code == 200
    assert 'ETag' in listing.headers
    assert name in [r['name'] for r in listing.get_json()['data']]

    upd = client.put(f"/iam/roles/{role['id']}", json={'grants': [{'resource': 'orders', 'actions': ['read', 'update']}]},
                     headers=headers)
    assert upd.status_code == 200
    assert upd.get_json()['grants'] == [{'resource': 'orders', 'actions': ['read', 'update']}]

    got = client.get(f"/iam/roles/{role['id']}", headers=headers)
    assert got.get_json()['name'] == name


def test_duplicate_role_name_rejected(client, app_context):
    _, headers = _admin()
    name = unique('Dup')
    assert client.post('/iam/roles', json={'name': name}, headers=headers).status_code == 201
    assert client.post('/iam/roles', json={'name': name}, headers=headers).status_code == 400


def test_malformed_grants_rejected(client, app_context):
    _, headers = _admin()
    for grants in (
        [{'resource': 'orders', 'actions': []}],
        [{'resource': 'ord*', 'actions': ['read']}],
        [{'actions': ['read']}],
        'orders:read',
    ):
        resp = client.post('/iam/roles', json={'name': unique('Bad'), 'grants': grants}, headers=headers)
        assert resp.status_code == 400, grants


def test_role_update_takes_effect_immediately(client, app_context):
    _, admin_headers = _admin()
    clerk = ensure_user(f"{unique('clerk')}@example.com")
    role = ensure_role(unique('Clerk'), [{'resource': 'products', 'actions': ['read']}])
    assign = client.post(f'/iam/users/{clerk.id}/roles', json={'role_id': role.id}, headers=admin_headers)
    assert assign.status_code == 201
    clerk_headers = jwt_headers(clerk.id, clerk.name)
    assert client.get('/orders', headers=clerk_headers).status_code == 403

    client.put(f'/iam/roles/{role.id}', json={'grants': [{'resource': 'orders', 'actions': ['read']}]}, headers=admin_headers)
    assert client.get('/orders', headers=clerk_headers).status_code == 200


def test_assign_is_idempotent_and_remove_revokes(client, app_context):
    _, admin_headers = _admin()
    user = ensure_user(f"{unique('assignee')}@example.com")
    role = ensure_role(unique('Reader'), [{'resource': 'orders', 'actions': ['read']}])
    assert client.post(f'/iam/users/{user.id}/roles', json={'role_id': role.id}, headers=admin_headers).status_code == 201
    assert client.post(f'/iam/users/{user.id}/roles', json={'role_id': role.id}, headers=admin_headers).status_code == 200

    roles = client.get(f'/iam/users/{user.id}/roles', headers=admin_headers).get_json()['roles']
    assert [r['id'] for r in roles] == [role.id]
    headers = jwt_headers(user.id, user.name)
    assert client.get('/orders', headers=headers).status_code == 200

    resp = client.delete(f'/iam/users/{user.id}/roles/{role.id}', headers=admin_headers)
    assert resp.status_code == 200
    assert client.get('/orders', headers=headers).status_code == 403
    assert client.delete(f'/iam/users/{user.id}/roles/{role.id}', headers=admin_headers).status_code == 404


def test_assign_unknown_role_or_user(client, app_context):
    _, admin_headers = _admin()
    user = ensure_user(f"{unique('ghost')}@example.com")
    assert client.post(f'/iam/users/{user.id}/roles', json={'role_id': 99999999}, headers=admin_headers).status_code == 404
    assert client.post('/iam/users/99999999/roles', json={'role_id': 1}, headers=admin_headers).status_code == 404


def test_delete_role_removes_assignments(client, app_context):
    _, admin_headers = _admin()
    user = ensure_user(f"{unique('holder')}@example.com")
    role = ensure_role(unique('Temp'), [{'resource': 'orders', 'actions': ['read']}])
    client.post(f'/iam/users/{user.id}/roles', json={'role_id': role.id}, headers=admin_headers)
    headers = jwt_headers(user.id, user.name)
    assert client.get('/orders', headers=headers).status_code == 200

    resp = client.delete(f'/iam/roles/{role.id}', headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json() == {'deleted': role.id, 'assignments_removed': 1}
    session = get_db()
    assert session.execute(select(UserRole).where(UserRole.role_id == role.id)).first() is None
    assert client.get('/orders', headers=headers).status_code == 403


def test_system_role_cannot_be_deleted(client, app_context):
    _, admin_headers = _admin()
    client.post('/iam/roles/bootstrap', headers=admin_headers)
    role = get_db().execute(select(Role).where(Role.name == 'SuperAdmin')).scalar_one()
    resp = client.delete(f'/iam/roles/{role.id}', headers=admin_headers)
    assert resp.status_code == 400


def test_bootstrap_is_idempotent(client, app_context):
    _, admin_headers = _admin()
    client.post('/iam/roles/bootstrap', headers=admin_headers)
    second = client.post('/iam/roles/bootstrap', headers=admin_headers)
    assert second.status_code == 200
    assert second.get_json() == {'created': []}
    names = set(get_db().execute(select(Role.name)).scalars())
    assert {'SuperAdmin', 'OrderManager', 'BranchClerk', 'CatalogEditor', 'Auditor'} <= names


def test_effective_permissions(client, app_context):
    _, admin_headers = _admin()
    user, headers = actor_with_headers([{'resource': 'orders', 'actions': ['read'], 'conditions': {'ownedBy': 'self'}}], 'eff')
    body = client.get(f'/iam/users/{user.id}/effective-permissions', headers=admin_headers).get_json()
    assert body['user_id'] == user.id
    assert body['override'] is False
    assert body['grants'] == [{'resource': 'orders', 'actions': ['read'], 'conditions': {'ownedBy': 'self'}}]
    mine = client.get('/iam/me/permissions', headers=headers).get_json()
    assert mine['grants'] == body['grants']


def test_mutations_are_audited(client, app_context):
    admin, headers = _admin()
    name = unique('Audited')
    role_id = client.post('/iam/roles', json={'name': name}, headers=headers).get_json()['id']
    entry = get_db().execute(
        select(AuditLog).where(AuditLog.action == 'ROLE.CREATE', AuditLog.entity_id == str(role_id))
    ).scalar_one()
    assert entry.actor_user_id == admin.id
    assert entry.meta == {'name': name}

    logs = client.get(f'/iam/audit/logs?action=ROLE.CREATE&actor_user_id={admin.id}', headers=headers)
    assert logs.status_code == 200
    assert [row['entity_id'] for row in logs.get_json()['data']] == [str(role_id)]


def test_failed_mutation_is_not_audited(client, app_context):
    admin, headers = _admin()
    client.post('/iam/roles', json={'name': unique('Bad'), 'grants': [{'resource': 'x', 'actions': []}]}, headers=headers)
    rows = get_db().execute(
        select(AuditLog).where(AuditLog.action == 'ROLE.CREATE', AuditLog.actor_user_id == admin.id)
    ).scalars().all()
    assert rows == []


def test_login_and_me(client, app_context):
    email = f"{unique('login')}@example.com"
    ensure_user(email, name='Login User', password='secret')
    bad = client.post('/iam/auth/login', json={'email': email, 'password': 'wrong'})
    assert bad.status_code == 401
    token = client.post('/iam/auth/login', json={'email': email, 'password': 'secret'}).get_json()['access_token']
    me = client.get('/iam/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    assert me.get_json()['email'] == email
    assert me.get_json()['roles'] == []


def test_resources_catalog(client, app_context):
    _, headers = actor_with_headers([], 'catalog')
    body = client.get('/iam/resources', headers=headers).get_json()
    assert body['wildcard'] == '*'
    assert 'branchIds' in body['condition_keys']
    assert any(r['resource'] == 'orders' for r in body['resources'])
