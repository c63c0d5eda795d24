"""Role and condition based authorization core."""
from .conditions import ConditionSet, DateRange, merge_conditions
from .grants import Grant, GrantFormatError, parse_grants
from .cache import PermissionCache
from .resolver import PermissionResolver
from .gate import AuthorizationGate, Decision
from .scope import build_read_filter, validate_write, check_write

__all__ = [
    'ConditionSet', 'DateRange', 'merge_conditions', 'Grant', 'GrantFormatError', 'parse_grants',
    'PermissionCache', 'PermissionResolver', 'AuthorizationGate', 'Decision',
    'build_read_filter', 'validate_write', 'check_write',
]
