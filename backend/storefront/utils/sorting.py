from __future__ import annotations
from typing import Dict, Optional
from flask import abort
from sqlalchemy.sql import Select


def apply_multi_sort(stmt: Select, sort_expr: Optional[str], allowed: Dict[str, object], tie_breaker, default: Optional[str] = None) -> Select:
    """Order ``stmt`` by ``sort_expr`` (comma separated keys, '-' prefix for descending).

    Unknown keys abort 400. ``tie_breaker`` is always appended so paging is deterministic;
    ``default`` applies when the client sends nothing.
    """
    sort_expr = sort_expr or default
    clauses = []
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token[1:] if desc else token
        col = allowed.get(key)
        if col is None:
            abort(400, description=f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(tie_breaker.asc())
    return stmt.order_by(*clauses)
