from __future__ import annotations
"""Record-level scoping from merged condition sets.

build_read_filter narrows a SELECT for list/get; validate_write / check_write guard
create/update/delete. Both look a dimension up by a short list of conventional field
names so any model (or plain mapping) with e.g. ``branch_id`` participates.

maxAmount is write-only: a reader may see records above the ceiling they could not
have written.
"""
import logging
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import false, inspect as sa_inspect
from sqlalchemy.sql import Select

from storefront.authz.conditions import ConditionSet, OWNED_BY_SELF
from storefront.errors import ScopeViolation

logger = logging.getLogger(__name__)

SCOPE_FIELDS = {
    'branch': ('branch_id', 'branch'),
    'category': ('category_id', 'category'),
    'owner': ('user_id', 'owner_id', 'owner', 'created_by'),
    'amount': ('amount', 'total', 'total_cents', 'price_cents'),
    'created': ('created_at',),
    'status': ('status',),
}


def _column(model, dimension: str):
    attrs = sa_inspect(model).column_attrs
    for name in SCOPE_FIELDS[dimension]:
        if name in attrs:
            return getattr(model, name)
    return None


def _coerce_ids(column, ids: Sequence[Any]):
    try:
        py_type = column.type.python_type
    except NotImplementedError:
        return list(ids)
    out = []
    for v in ids:
        try:
            out.append(py_type(v))
        except (TypeError, ValueError):
            continue  # cannot match this column anyway
    return out


def build_read_filter(stmt: Select, model, conditions: Optional[ConditionSet], actor_id: Any = None) -> Select:
    """Return ``stmt`` with one AND clause per present condition.

    Never widens the caller's statement. Dimensions the model has no column for are
    skipped. ``owned_by='self'`` without a known actor matches nothing.
    """
    if conditions is None or conditions.is_empty():
        return stmt
    if conditions.branch_ids is not None:
        col = _column(model, 'branch')
        if col is not None:
            stmt = stmt.where(col.in_(_coerce_ids(col, conditions.branch_ids)))
    if conditions.category_ids is not None:
        col = _column(model, 'category')
        if col is not None:
            stmt = stmt.where(col.in_(_coerce_ids(col, conditions.category_ids)))
    if conditions.status is not None:
        col = _column(model, 'status')
        if col is not None:
            stmt = stmt.where(col.in_(list(conditions.status)))
    if conditions.date_range is not None:
        col = _column(model, 'created')
        if col is not None:
            if conditions.date_range.start is not None:
                stmt = stmt.where(col >= conditions.date_range.start)
            if conditions.date_range.end is not None:
                stmt = stmt.where(col <= conditions.date_range.end)
    if conditions.owned_by == OWNED_BY_SELF:
        col = _column(model, 'owner')
        if col is not None:
            if actor_id is None:
                stmt = stmt.where(false())
            else:
                owner_ids = _coerce_ids(col, [actor_id])
                stmt = stmt.where(col == owner_ids[0]) if owner_ids else stmt.where(false())
    return stmt


def _value(record: Any, dimension: str) -> Any:
    for name in SCOPE_FIELDS[dimension]:
        if isinstance(record, Mapping):
            val = record.get(name)
        else:
            val = getattr(record, name, None)
        if val is not None:
            return val
    return None


def validate_write(record: Any, conditions: Optional[ConditionSet], actor_id: Any) -> bool:
    """False when any present condition is violated by ``record``; absent conditions allow."""
    if conditions is None or conditions.is_empty():
        return True
    if record is None:
        return False
    if conditions.branch_ids is not None:
        branch = _value(record, 'branch')
        if branch is None or str(branch) not in {str(b) for b in conditions.branch_ids}:
            return False
    if conditions.category_ids is not None:
        category = _value(record, 'category')
        if category is None or str(category) not in {str(c) for c in conditions.category_ids}:
            return False
    if conditions.owned_by == OWNED_BY_SELF:
        owner = _value(record, 'owner')
        if owner is None or actor_id is None or str(owner) != str(actor_id):
            return False
    if conditions.max_amount is not None:
        amount = _value(record, 'amount')
        try:
            if amount is not None and float(amount) > conditions.max_amount:
                return False
        except (TypeError, ValueError):
            return False
    return True


def check_write(before: Any, after: Any, conditions: Optional[ConditionSet], actor_id: Any,
                resource: Optional[str] = None, record_id: Any = None) -> None:
    """Raise ScopeViolation unless both the stored record and the proposed state pass.

    ``before`` is None for creates, ``after`` is None for deletes.
    """
    for label, candidate in (('current', before), ('proposed', after)):
        if candidate is None:
            continue
        if not validate_write(candidate, conditions, actor_id):
            logger.info('scope violation on %s record %s (%s state) for actor %s', resource, record_id, label, actor_id)
            raise ScopeViolation(resource=resource, record_id=record_id)


__all__ = ['build_read_filter', 'validate_write', 'check_write', 'SCOPE_FIELDS']
