"""Page window for list endpoints.

Query strings carry ``limit``/``offset`` as text. A missing value falls back to the
default; an oversized ``limit`` is clamped to the ceiling rather than rejected.
"""
from __future__ import annotations
from typing import Any, Optional, Tuple

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def _as_int(raw: Any, name: str, fallback: int) -> int:
    if raw is None or raw == '':
        return fallback
    if isinstance(raw, bool):
        raise ValueError(f'{name} must be an integer')
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f'{name} must be an integer')


def page_window(limit_raw: Optional[Any], offset_raw: Optional[Any],
                default_limit: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT) -> Tuple[int, int]:
    """Return ``(limit, offset)`` with ``1 <= limit <= max_limit`` and ``offset >= 0``."""
    limit = _as_int(limit_raw, 'limit', default_limit)
    offset = _as_int(offset_raw, 'offset', 0)
    return max(1, min(limit, max_limit)), max(0, offset)


__all__ = ['page_window', 'DEFAULT_LIMIT', 'MAX_LIMIT']
