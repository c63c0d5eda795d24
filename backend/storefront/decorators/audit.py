from __future__ import annotations
"""Audit logging decorator for administrative route handlers.

Usage examples:

@audit_log('ROLE.CREATE', entity='Role', entity_id_key='id', meta_keys=['name'])
def create_role():
    ... return {'id': role.id, 'name': role.name}, 201

@audit_log('USER.ROLE.ASSIGN', entity='User', entity_id_arg='user_id',
           meta_builder=lambda data, args, kwargs: {'role_id': data.get('role_id')})
def assign_role(user_id): ...

Parameters:
  action: required audit action code (e.g. ROLE.CREATE)
  entity: optional entity label (Role, User, Order)
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: path parameter to use for entity_id (fallback if entity_id_key absent).
  meta_keys: keys to project from the returned JSON into meta.
  meta_builder: callable returning meta; receives (data, args, kwargs). Overrides meta_keys.

Only successful responses (status < 400) are audited. The entry is written after the
handler committed its own change, in a separate commit; a failing audit write is logged
and rolled back without altering the response.
"""
import logging
from functools import wraps
from typing import Any, Callable, Iterable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from storefront.services.audit import add_audit
from storefront.services.policy import current_actor_id
from storefront import get_db

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any) -> Tuple[Any, int]:
    """Return (data, status) for dict / (dict, status) / (dict, status, headers) returns."""
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    return rv, 200


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, tuple, dict], dict]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            rv = fn(*args, **kwargs)
            data, status = _extract_payload(rv)
            if status >= 400:
                return rv
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            if meta_builder:
                meta = meta_builder(data, args, kwargs)
            elif meta_keys:
                meta = {k: data.get(k) for k in meta_keys if k in data}
            else:
                meta = None
            session = get_db()
            try:
                add_audit(session, action, entity, entity_id, meta, actor_id=current_actor_id())
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.exception('audit write failed for %s', action)
            return rv
        return wrapper
    return outer
