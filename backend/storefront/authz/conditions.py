from __future__ import annotations
"""Condition sets attached to grants and the permissive merge across grants.

Wire format (as stored in ``Role.grants[*].conditions``)::

    {"branchIds": [...], "categoryIds": [...], "status": [...],
     "dateRange": {"from": iso, "to": iso}, "ownedBy": "self", "maxAmount": 500}

Parsing is tolerant: a malformed value means "no restriction" on that dimension and
unknown keys are ignored, so a bad admin edit never locks everyone out.
"""
import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from storefront.utils.timeutil import iso, parse_datetime

logger = logging.getLogger(__name__)

OWNED_BY_SELF = 'self'

# wire key -> attribute name
LIST_KEYS = {
    'branchIds': 'branch_ids',
    'categoryIds': 'category_ids',
    'status': 'status',
}
KNOWN_KEYS = set(LIST_KEYS) | {'dateRange', 'ownedBy', 'maxAmount'}


@dataclass(frozen=True)
class DateRange:
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def is_empty(self) -> bool:
        return self.start is None and self.end is None

    def merged_with(self, later: 'DateRange') -> 'DateRange':
        # shallow merge, later non-null fields win
        return DateRange(
            start=later.start if later.start is not None else self.start,
            end=later.end if later.end is not None else self.end,
        )


@dataclass(frozen=True)
class ConditionSet:
    """One optional field per known condition key. ``None`` means unrestricted."""
    branch_ids: Optional[Tuple[Any, ...]] = None
    category_ids: Optional[Tuple[Any, ...]] = None
    status: Optional[Tuple[str, ...]] = None
    date_range: Optional[DateRange] = None
    owned_by: Optional[str] = None
    max_amount: Optional[float] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def present_keys(self) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(self) if getattr(self, f.name) is not None)

    @classmethod
    def from_dict(cls, raw: Any) -> 'ConditionSet':
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            logger.warning('ignoring non-object condition set: %r', raw)
            return cls()
        values: Dict[str, Any] = {}
        for key, val in raw.items():
            if key not in KNOWN_KEYS:
                logger.debug('ignoring unknown condition key %s', key)
                continue
            if key in LIST_KEYS:
                parsed = _parse_list(key, val)
                if parsed is not None:
                    values[LIST_KEYS[key]] = parsed
            elif key == 'dateRange':
                rng = _parse_date_range(val)
                if rng is not None:
                    values['date_range'] = rng
            elif key == 'ownedBy':
                if val == OWNED_BY_SELF:
                    values['owned_by'] = OWNED_BY_SELF
                elif val is not None:
                    logger.warning('ignoring unsupported ownedBy value %r', val)
            elif key == 'maxAmount':
                amount = _parse_amount(val)
                if amount is not None:
                    values['max_amount'] = amount
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for wire, attr in LIST_KEYS.items():
            val = getattr(self, attr)
            if val is not None:
                out[wire] = list(val)
        if self.date_range is not None:
            rng = {}
            if self.date_range.start is not None:
                rng['from'] = iso(self.date_range.start)
            if self.date_range.end is not None:
                rng['to'] = iso(self.date_range.end)
            out['dateRange'] = rng
        if self.owned_by is not None:
            out['ownedBy'] = self.owned_by
        if self.max_amount is not None:
            out['maxAmount'] = self.max_amount
        return out


def _parse_list(key: str, val: Any) -> Optional[Tuple[Any, ...]]:
    if val is None:
        return None
    if not isinstance(val, (list, tuple)):
        logger.warning('condition %s expected a list, got %r; treating as unrestricted', key, val)
        return None
    items = _dedupe(v for v in val if isinstance(v, (str, int)) and not isinstance(v, bool))
    return items or None


def _parse_date_range(val: Any) -> Optional[DateRange]:
    if not isinstance(val, dict):
        if val is not None:
            logger.warning('condition dateRange expected an object, got %r', val)
        return None
    rng = DateRange(start=parse_datetime(val.get('from')), end=parse_datetime(val.get('to')))
    return None if rng.is_empty() else rng


def _parse_amount(val: Any) -> Optional[float]:
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        if val is not None:
            logger.warning('condition maxAmount expected a number, got %r', val)
        return None
    return float(val)


def _dedupe(items: Iterable[Any]) -> Tuple[Any, ...]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return tuple(seen)


def merge_conditions(sets: Iterable[Optional[ConditionSet]]) -> ConditionSet:
    """Combine the condition sets of every matching grant into one.

    Lists are unioned (deduplicated, first-seen order), ``date_range`` is shallow merged
    with later non-null bounds winning, scalars are overwritten by the later grant. The
    result is a superset of what any single grant permits on list-valued keys.
    """
    merged = ConditionSet()
    for cond in sets:
        if cond is None:
            continue
        changes: Dict[str, Any] = {}
        for attr in LIST_KEYS.values():
            incoming = getattr(cond, attr)
            if incoming is None:
                continue
            existing = getattr(merged, attr)
            changes[attr] = incoming if existing is None else _dedupe(existing + incoming)
        if cond.date_range is not None:
            changes['date_range'] = cond.date_range if merged.date_range is None else merged.date_range.merged_with(cond.date_range)
        if cond.owned_by is not None:
            changes['owned_by'] = cond.owned_by
        if cond.max_amount is not None:
            changes['max_amount'] = cond.max_amount
        if changes:
            merged = replace(merged, **changes)
    return merged


__all__ = ['ConditionSet', 'DateRange', 'merge_conditions', 'OWNED_BY_SELF']
