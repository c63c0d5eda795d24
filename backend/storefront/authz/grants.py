from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from storefront.authz.conditions import ConditionSet
from storefront.constants.permissions import WILDCARD, is_reserved_name

logger = logging.getLogger(__name__)


class GrantFormatError(ValueError):
    pass


@dataclass(frozen=True)
class Grant:
    resource: str
    actions: FrozenSet[str]
    conditions: Optional[ConditionSet] = field(default=None)

    @property
    def any_resource(self) -> bool:
        return self.resource == WILDCARD

    @property
    def any_action(self) -> bool:
        return WILDCARD in self.actions

    def matches(self, resource: str, action: str) -> bool:
        return (self.any_resource or self.resource == resource) and (self.any_action or action in self.actions)

    @classmethod
    def from_dict(cls, raw: Any) -> 'Grant':
        """Parse one stored grant; raises GrantFormatError when resource/actions are unusable."""
        if not isinstance(raw, dict):
            raise GrantFormatError('grant must be an object')
        resource = raw.get('resource')
        if not isinstance(resource, str) or not resource.strip():
            raise GrantFormatError('grant.resource must be a non-empty string')
        resource = resource.strip()
        if is_reserved_name(resource):
            raise GrantFormatError(f'grant.resource {resource!r} uses the reserved wildcard')
        actions = raw.get('actions')
        if not isinstance(actions, list) or not actions or any(not isinstance(a, str) or not a.strip() for a in actions):
            raise GrantFormatError('grant.actions must be a non-empty list of strings')
        names = frozenset(a.strip() for a in actions)
        reserved = sorted(a for a in names if is_reserved_name(a))
        if reserved:
            raise GrantFormatError(f'grant.actions {reserved} use the reserved wildcard')
        cond_raw = raw.get('conditions')
        conditions = ConditionSet.from_dict(cond_raw) if cond_raw is not None else None
        return cls(resource=resource, actions=names, conditions=conditions)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {'resource': self.resource, 'actions': sorted(self.actions)}
        if self.conditions is not None:
            out['conditions'] = self.conditions.to_dict()
        return out


def parse_grants(raw_list: Any, *, strict: bool = False) -> List[Grant]:
    """Parse a role's stored grant list.

    strict=True is used when validating admin input; resolution uses the lenient mode and
    skips unusable entries so one broken grant does not void the whole role.
    """
    if raw_list is None:
        return []
    if not isinstance(raw_list, list):
        if strict:
            raise GrantFormatError('grants must be a list')
        logger.warning('ignoring non-list grants payload %r', raw_list)
        return []
    out: List[Grant] = []
    for idx, raw in enumerate(raw_list):
        try:
            out.append(Grant.from_dict(raw))
        except GrantFormatError as e:
            if strict:
                raise GrantFormatError(f'grants[{idx}]: {e}') from e
            logger.warning('skipping malformed grant #%s: %s', idx, e)
    return out


def matching(grants: Iterable[Grant], resource: str, action: str) -> List[Grant]:
    return [g for g in grants if g.matches(resource, action)]


__all__ = ['Grant', 'GrantFormatError', 'parse_grants', 'matching']
