"""Environment-backed settings.

``load_settings()`` reads the process environment (after ``load_dotenv()`` in the app
package) and returns a flat dict suitable for ``app.config.update``.
"""
from __future__ import annotations
import os
from typing import Any, Dict, List, Optional

from .pagination import DEFAULT_LIMIT, MAX_LIMIT

DEFAULT_DATABASE_URL = 'sqlite:///dev.db'
DEFAULT_JWT_SECRET = 'dev-secret-change-me-32-bytes-minimum'
DEFAULT_DWELL = 'pending:120,confirmed:300,processing:600,shipped:900,out_for_delivery:1200'

_TRUE = {'1', 'true', 'yes', 'on'}


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in _TRUE


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f'{name} must be a number, got {raw!r}')


def env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f'{name} must be an integer, got {raw!r}')


def split_emails(raw: Optional[str]) -> List[str]:
    return [e.strip() for e in (raw or '').split(',') if e.strip()]


def break_glass_emails() -> List[str]:
    """BREAK_GLASS_EMAILS, else the legacy ADMIN_DEV_USER_EMAIL / ADMIN_EMAIL pair."""
    explicit = split_emails(os.getenv('BREAK_GLASS_EMAILS'))
    if explicit:
        return explicit
    return split_emails(','.join(filter(None, [os.getenv('ADMIN_DEV_USER_EMAIL'), os.getenv('ADMIN_EMAIL')])))


def load_settings() -> Dict[str, Any]:
    return {
        'DATABASE_URL': os.getenv('DATABASE_URL', DEFAULT_DATABASE_URL),
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', DEFAULT_JWT_SECRET),
        'STORE_TIMEOUT_SECONDS': env_float('STORE_TIMEOUT_SECONDS', 5.0),
        'PERMISSION_CACHE_TTL_SECONDS': env_float('PERMISSION_CACHE_TTL_SECONDS', 60.0),
        'PERMISSION_CACHE_MAX_ENTRIES': env_int('PERMISSION_CACHE_MAX_ENTRIES', None),
        'BREAK_GLASS_EMAILS': break_glass_emails(),
        'ORDER_EXTENDED_STATES': env_bool('ORDER_EXTENDED_STATES', True),
        'ORDER_AUTOMATION_ENABLED': env_bool('ORDER_AUTOMATION_ENABLED', True),
        'ORDER_AUTOMATION_INTERVAL_SECONDS': env_float('ORDER_AUTOMATION_INTERVAL_SECONDS', 60.0),
        'ORDER_AUTOMATION_DWELL': os.getenv('ORDER_AUTOMATION_DWELL', DEFAULT_DWELL),
        'LIST_DEFAULT_LIMIT': env_int('LIST_DEFAULT_LIMIT', DEFAULT_LIMIT),
        'LIST_MAX_LIMIT': env_int('LIST_MAX_LIMIT', MAX_LIMIT),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO').upper(),
    }


__all__ = ['load_settings', 'break_glass_emails', 'split_emails', 'env_bool', 'env_float', 'env_int']
