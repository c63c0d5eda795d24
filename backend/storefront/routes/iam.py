from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required
from sqlalchemy import select
from storefront.models.authz import User, Role, UserRole
from storefront.models.audit import AuditLog
from storefront import get_db
from storefront.authz.conditions import KNOWN_KEYS
from storefront.authz.grants import GrantFormatError, parse_grants
from storefront.constants.permissions import RESOURCE_ACTIONS, WILDCARD
from storefront.services.roles import ensure_preset_roles
from storefront.services.policy import current_actor_id, effective_permissions, invalidate_actor, invalidate_all
from storefront.decorators.audit import audit_log
from storefront.decorators.auth import require_permission
from storefront.utils.filters import apply_filters, eq_filter, since_filter, until_filter, as_datetime
from storefront.utils.listing import paginate, list_response
from storefront.utils.timeutil import iso
from storefront.utils.validation import json_body, parse_int, require_fields

iam_bp = Blueprint('iam', __name__)


def _role_json(r: Role):
    return {
        'id': r.id,
        'name': r.name,
        'description': r.description,
        'is_system': r.is_system,
        'grants': r.grants or [],
    }


def _clean_grants(raw):
    try:
        return [g.to_dict() for g in parse_grants(raw, strict=True)]
    except GrantFormatError as e:
        abort(400, description=str(e))


def _get_role(session, role_id: int) -> Role:
    role = session.get(Role, role_id)
    if not role:
        abort(404, description='Role not found')
    return role


def _get_user(session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        abort(404, description='User not found')
    return user


@iam_bp.post('/auth/login')
def login():
    data = json_body()
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        abort(401, description='invalid credentials')
    # Permissions are resolved server-side per request; the token only carries identity
    token = create_access_token(identity=str(user.id), additional_claims={'name': user.name})
    return {'access_token': token}


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    session = get_db()
    user = session.get(User, current_actor_id()) if current_actor_id() is not None else None
    if not user:
        abort(404)
    eff = effective_permissions(user.id)
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'roles': eff['roles'],
        'override': eff['override'],
    }


@iam_bp.get('/resources')
@jwt_required()
def list_resources():
    return {
        'wildcard': WILDCARD,
        'resources': [{'resource': res, 'actions': acts} for res, acts in RESOURCE_ACTIONS.items()],
        'condition_keys': sorted(KNOWN_KEYS),
    }


# --- Roles ---

@iam_bp.get('/roles')
@require_permission('roles', 'read')
def list_roles():
    session = get_db()
    rows, total, limit, offset = paginate(session, select(Role).order_by(Role.name.asc(), Role.id.asc()))
    latest_ts = max((r.updated_at for r in rows if r.updated_at), default=None)
    return list_response([_role_json(r) for r in rows], total, limit, offset, latest_ts)


@iam_bp.get('/roles/<int:role_id>')
@require_permission('roles', 'read')
def get_role(role_id: int):
    return _role_json(_get_role(get_db(), role_id))


@iam_bp.post('/roles')
@require_permission('roles', 'create')
@audit_log('ROLE.CREATE', entity='Role', entity_id_key='id', meta_keys=['name'])
def create_role():
    data = json_body()
    require_fields(data, 'name')
    name = str(data['name']).strip()
    session = get_db()
    if session.execute(select(Role).where(Role.name == name)).scalar_one_or_none():
        abort(400, description='role exists')
    role = Role(name=name, description=str(data.get('description') or '').strip(),
                is_system=False, grants=_clean_grants(data.get('grants') or []))
    session.add(role)
    session.commit()
    return _role_json(role), 201


@iam_bp.put('/roles/<int:role_id>')
@require_permission('roles', 'update')
@audit_log('ROLE.UPDATE', entity='Role', entity_id_key='id',
           meta_builder=lambda data, args, kwargs: {'name': data.get('name'), 'grants': len(data.get('grants') or [])})
def update_role(role_id: int):
    data = json_body()
    session = get_db()
    role = _get_role(session, role_id)
    if 'name' in data:
        name = str(data.get('name') or '').strip()
        if not name:
            abort(400, description='name required')
        clash = session.execute(select(Role).where(Role.name == name, Role.id != role.id)).scalar_one_or_none()
        if clash:
            abort(400, description='role exists')
        role.name = name
    if 'description' in data:
        role.description = str(data.get('description') or '').strip()
    if 'grants' in data:
        role.grants = _clean_grants(data.get('grants') or [])
    session.commit()
    # any actor holding this role may now resolve differently
    invalidate_all()
    return _role_json(role)


@iam_bp.delete('/roles/<int:role_id>')
@require_permission('roles', 'delete')
@audit_log('ROLE.DELETE', entity='Role', entity_id_arg='role_id')
def delete_role(role_id: int):
    session = get_db()
    role = _get_role(session, role_id)
    if role.is_system:
        abort(400, description='system roles cannot be deleted')
    removed = len(role.user_roles)
    session.delete(role)
    session.commit()
    invalidate_all()
    return {'deleted': role_id, 'assignments_removed': removed}


@iam_bp.post('/roles/bootstrap')
@require_permission('roles', 'create')
@audit_log('ROLE.BOOTSTRAP', entity='Role', meta_keys=['created'])
def bootstrap_roles():
    """Create any missing preset role; existing roles are left untouched."""
    session = get_db()
    created = ensure_preset_roles(session)
    session.commit()
    return {'created': created}


# --- User role assignments ---

@iam_bp.get('/users/<int:user_id>/roles')
@require_permission('users', 'read')
def list_user_roles(user_id: int):
    session = get_db()
    _get_user(session, user_id)
    roles = session.execute(
        select(Role).join(UserRole, UserRole.role_id == Role.id).where(UserRole.user_id == user_id).order_by(Role.id.asc())
    ).scalars().all()
    return {'user_id': user_id, 'roles': [_role_json(r) for r in roles]}


@iam_bp.post('/users/<int:user_id>/roles')
@require_permission('users', 'update')
@audit_log('USER.ROLE.ASSIGN', entity='User', entity_id_arg='user_id', meta_keys=['role_id'])
def assign_user_role(user_id: int):
    data = json_body()
    require_fields(data, 'role_id')
    role_id = parse_int(data['role_id'], 'role_id')
    session = get_db()
    _get_user(session, user_id)
    _get_role(session, role_id)
    existing = session.execute(
        select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
    ).scalar_one_or_none()
    if existing is None:
        session.add(UserRole(user_id=user_id, role_id=role_id))
        session.commit()
    invalidate_actor(user_id)
    return {'user_id': user_id, 'role_id': role_id}, (200 if existing else 201)


@iam_bp.delete('/users/<int:user_id>/roles/<int:role_id>')
@require_permission('users', 'update')
@audit_log('USER.ROLE.REMOVE', entity='User', entity_id_arg='user_id', meta_keys=['role_id'])
def remove_user_role(user_id: int, role_id: int):
    session = get_db()
    link = session.execute(
        select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
    ).scalar_one_or_none()
    if link is None:
        abort(404, description='Assignment not found')
    session.delete(link)
    session.commit()
    invalidate_actor(user_id)
    return {'user_id': user_id, 'role_id': role_id, 'removed': True}


@iam_bp.get('/users/<int:user_id>/effective-permissions')
@require_permission('users', 'read')
def user_effective_permissions(user_id: int):
    _get_user(get_db(), user_id)
    return effective_permissions(user_id)


@iam_bp.get('/me/permissions')
@jwt_required()
def my_permissions():
    actor_id = current_actor_id()
    if actor_id is None:
        abort(401, description='unknown actor')
    return effective_permissions(actor_id)


# --- Audit trail ---

AUDIT_FILTERS = {
    'action': {'op': eq_filter(AuditLog.action)},
    'entity': {'op': eq_filter(AuditLog.entity)},
    'actor_user_id': {'op': eq_filter(AuditLog.actor_user_id), 'coerce': int},
    'since': {'op': since_filter(AuditLog.created_at), 'coerce': as_datetime},
    'until': {'op': until_filter(AuditLog.created_at), 'coerce': as_datetime},
}


@iam_bp.get('/audit/logs')
@require_permission('audit', 'read')
def list_audit_logs():
    session = get_db()
    stmt = apply_filters(select(AuditLog), AUDIT_FILTERS, request.args)
    rows, total, limit, offset = paginate(session, stmt.order_by(AuditLog.id.desc()))
    data = [
        {
            'id': a.id,
            'actor_user_id': a.actor_user_id,
            'action': a.action,
            'entity': a.entity,
            'entity_id': a.entity_id,
            'meta': a.meta,
            'created_at': iso(a.created_at),
        }
        for a in rows
    ]
    latest_ts = rows[0].created_at if rows else None
    return list_response(data, total, limit, offset, latest_ts)
