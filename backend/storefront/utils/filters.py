from __future__ import annotations
from typing import Any, Callable, Dict, Mapping
from flask import abort
from sqlalchemy.sql import Select

from storefront.utils.timeutil import parse_datetime


def csv_list(raw: Any) -> list:
    return [v.strip() for v in str(raw).split(',') if v.strip()]


def in_filter(column) -> Callable[[Select, list], Select]:
    return lambda stmt, values: stmt.where(column.in_(values))


def eq_filter(column) -> Callable[[Select, Any], Select]:
    return lambda stmt, value: stmt.where(column == value)


def since_filter(column) -> Callable[[Select, Any], Select]:
    return lambda stmt, value: stmt.where(column >= value)


def until_filter(column) -> Callable[[Select, Any], Select]:
    return lambda stmt, value: stmt.where(column <= value)


def as_datetime(raw: Any):
    dt = parse_datetime(raw)
    if dt is None:
        raise ValueError(raw)
    return dt


def apply_filters(stmt: Select, specs: Dict[str, Dict[str, Any]], params: Mapping[str, Any]) -> Select:
    """Client-requested narrowing of a list statement.

    specs: { param_name: { 'op': callable(stmt, value)->stmt, 'coerce': callable, 'validate': callable } }
    Runs after (and independently of) permission scoping, so it can only narrow further.
    """
    for name, meta in specs.items():
        if name not in params or params[name] in (None, ''):
            continue
        val = params[name]
        if 'coerce' in meta:
            try:
                val = meta['coerce'](val)
            except (TypeError, ValueError):
                abort(400, description=f'{name} invalid')
        if 'validate' in meta and not meta['validate'](val):
            abort(400, description=f'{name} invalid')
        stmt = meta['op'](stmt, val)
    return stmt


__all__ = ['apply_filters', 'csv_list', 'in_filter', 'eq_filter', 'since_filter', 'until_filter', 'as_datetime']
