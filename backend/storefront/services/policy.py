from __future__ import annotations
from typing import Any, Dict, Optional
from flask import current_app, g
from flask_jwt_extended import get_jwt_identity
from sqlalchemy import select

from storefront.authz import AuthorizationGate, ConditionSet, Decision
from storefront.authz.cache import PermissionCache
from storefront.errors import PermissionDenied
from storefront.models.authz import Role, UserRole
from storefront.utils.fsm import TransitionValidator
from storefront import get_db


def get_gate() -> AuthorizationGate:
    return current_app.extensions['authz_gate']


def get_permission_cache() -> PermissionCache:
    return current_app.extensions['permission_cache']


def order_fsm() -> TransitionValidator:
    return current_app.extensions['order_fsm']


def current_actor_id() -> Optional[int]:
    """Numeric id of the bearer token subject; None when absent or not numeric."""
    identity = get_jwt_identity()
    try:
        return int(identity) if identity is not None else None
    except (TypeError, ValueError):
        return None


def authorize(resource: str, action: str) -> Decision:
    """Decide for the current actor; raise PermissionDenied or stash the decision on ``g``."""
    actor_id = current_actor_id()
    decision = get_gate().decide(actor_id, resource, action)
    if not decision.allowed:
        raise PermissionDenied(resource, action)
    g.actor_id = actor_id
    g.permission = decision
    return decision


def current_conditions() -> ConditionSet:
    decision: Optional[Decision] = getattr(g, 'permission', None)
    if decision is None or decision.conditions is None:
        return ConditionSet()
    return decision.conditions


def invalidate_actor(actor_id: Any):
    get_permission_cache().invalidate(actor_id)


def invalidate_all():
    get_permission_cache().invalidate()


def effective_permissions(user_id: int) -> Dict[str, Any]:
    """Roles and flattened grants an actor currently holds (resolved through the cache)."""
    session = get_db()
    roles = session.execute(
        select(Role).join(UserRole, UserRole.role_id == Role.id).where(UserRole.user_id == user_id).order_by(Role.id.asc())
    ).scalars().all()
    gate = get_gate()
    grants = gate.resolver.resolve(user_id)
    return {
        'user_id': user_id,
        'roles': [{'id': r.id, 'name': r.name} for r in roles],
        'grants': [gr.to_dict() for gr in grants],
        'override': gate.is_override(user_id),
    }


__all__ = [
    'get_gate', 'get_permission_cache', 'order_fsm', 'current_actor_id', 'authorize', 'current_conditions',
    'invalidate_actor', 'invalidate_all', 'effective_permissions',
]
