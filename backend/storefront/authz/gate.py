from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, Optional, Sequence

from storefront.authz.conditions import ConditionSet, merge_conditions
from storefront.authz.grants import matching
from storefront.authz.resolver import PermissionResolver

logger = logging.getLogger(__name__)

MAX_OVERRIDE_IDENTITIES = 2


@dataclass(frozen=True)
class Decision:
    allowed: bool
    conditions: Optional[ConditionSet] = None
    override: bool = False

    def to_dict(self):
        out = {'allowed': self.allowed}
        if self.conditions is not None:
            out['conditions'] = self.conditions.to_dict()
        return out


DENIED = Decision(allowed=False)


class AuthorizationGate:
    """Request-facing allow/deny decision plus the merged conditions of every matching grant.

    ``override_emails`` name the break-glass identities (at most two). They are mapped to
    actor ids through ``lookup_ids`` on first use and kept for the process lifetime.
    """

    def __init__(self, resolver: PermissionResolver, override_emails: Sequence[str] = (),
                 lookup_ids: Optional[Callable[[Sequence[str]], Iterable[Any]]] = None):
        emails = tuple(dict.fromkeys(e.strip().lower() for e in override_emails if e and e.strip()))
        if len(emails) > MAX_OVERRIDE_IDENTITIES:
            raise ValueError(f'at most {MAX_OVERRIDE_IDENTITIES} break-glass identities may be configured')
        if emails and lookup_ids is None:
            raise ValueError('lookup_ids is required when break-glass identities are configured')
        self.resolver = resolver
        self.override_emails = emails
        self._lookup_ids = lookup_ids
        self._override_ids: Optional[FrozenSet[str]] = None if emails else frozenset()
        self._override_lock = threading.Lock()

    def _override_id_set(self) -> FrozenSet[str]:
        if self._override_ids is not None:
            return self._override_ids
        with self._override_lock:
            if self._override_ids is None:
                # a store failure propagates and leaves the set unprimed for the next call
                ids = frozenset(str(i) for i in self._lookup_ids(self.override_emails))
                if not ids:
                    logger.warning('break-glass identities %s matched no users', list(self.override_emails))
                self._override_ids = ids
        return self._override_ids

    def is_override(self, actor_id: Any) -> bool:
        if actor_id is None or not self.override_emails:
            return False
        return str(actor_id) in self._override_id_set()

    def decide(self, actor_id: Any, resource: str, action: str) -> Decision:
        if self.is_override(actor_id):
            logger.warning('break-glass access used by actor %s for %s:%s', actor_id, resource, action)
            return Decision(allowed=True, conditions=ConditionSet(), override=True)
        if actor_id is None:
            return DENIED
        matched = matching(self.resolver.resolve(actor_id), resource, action)
        if not matched:
            return DENIED
        return Decision(allowed=True, conditions=merge_conditions(g.conditions for g in matched))


__all__ = ['AuthorizationGate', 'Decision', 'DENIED', 'MAX_OVERRIDE_IDENTITIES']
