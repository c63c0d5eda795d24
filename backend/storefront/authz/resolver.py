from __future__ import annotations
import logging
from typing import Any, Callable, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.authz.cache import PermissionCache
from storefront.authz.grants import Grant, parse_grants
from storefront.models.authz import Role, UserRole

logger = logging.getLogger(__name__)


class PermissionResolver:
    """Collects every grant from every role assigned to an actor, cache first."""

    def __init__(self, session_factory: Callable[[], Session], cache: PermissionCache):
        self._session_factory = session_factory
        self.cache = cache

    def resolve(self, actor_id: Any) -> List[Grant]:
        cached = self.cache.get(actor_id)
        if cached is not None:
            return cached
        generation = self.cache.generation()
        grants = self._load(actor_id)
        if not self.cache.set(actor_id, grants, generation=generation):
            logger.debug('permission cache invalidated during resolution of actor %s; not stored', actor_id)
        return grants

    def _load(self, actor_id: Any) -> List[Grant]:
        try:
            user_id = int(actor_id)
        except (TypeError, ValueError):
            return []
        session = self._session_factory()
        stmt = (
            select(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
            .order_by(Role.id.asc())
            .execution_options(populate_existing=True)
        )
        roles = session.execute(stmt).scalars().all()
        grants: List[Grant] = []
        for role in roles:
            grants.extend(parse_grants(role.grants))
        return grants

    def invalidate(self, actor_id: Any = None) -> None:
        self.cache.invalidate(actor_id)


__all__ = ['PermissionResolver']
