"""Request payload helpers with consistent 400 error semantics."""
from __future__ import annotations
from typing import Any, Dict, Iterable
from flask import abort, request


def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description='JSON object body required')
    return data


def require_fields(data: Dict[str, Any], *names: str):
    missing = [n for n in names if data.get(n) in (None, '')]
    if missing:
        abort(400, description=f"{', '.join(missing)} required")


def validate_choice(value: Any, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Return value when it is a string inside ``allowed``, else abort 400."""
    if not isinstance(value, str) or value not in set(allowed):
        abort(400, description=f'{field_name} invalid')
    return value


def parse_int(value: Any, field_name: str, minimum: int = None) -> int:
    if isinstance(value, bool):
        abort(400, description=f'{field_name} must be an integer')
    try:
        out = int(value)
    except (TypeError, ValueError):
        abort(400, description=f'{field_name} must be an integer')
    if minimum is not None and out < minimum:
        abort(400, description=f'{field_name} must be >= {minimum}')
    return out


__all__ = ['json_body', 'require_fields', 'validate_choice', 'parse_int']
