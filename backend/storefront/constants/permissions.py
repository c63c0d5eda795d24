"""Central resource/action vocabulary for grants.
Resource and action names stay open strings (role data may reference resources a newer
admin UI knows about); the wildcard is reserved and must never be used as a real name.
"""
from __future__ import annotations
from typing import Dict, List

WILDCARD = '*'

RESOURCE_ACTIONS: Dict[str, List[str]] = {
    'products': ['create', 'read', 'update', 'delete', 'export'],
    'categories': ['create', 'read', 'update', 'delete'],
    'orders': ['create', 'read', 'update', 'delete', 'export'],
    'users': ['create', 'read', 'update', 'delete', 'export'],
    'roles': ['create', 'read', 'update', 'delete'],
    'branches': ['create', 'read', 'update', 'delete'],
    'reports': ['read', 'export'],
    'settings': ['read', 'update'],
    'audit': ['read'],
}

RESOURCES = tuple(RESOURCE_ACTIONS)
ACTIONS = tuple(sorted({a for acts in RESOURCE_ACTIONS.values() for a in acts}))

# Grants per preset role, in wire format (camelCase condition keys as stored in Role.grants).
ROLE_PRESETS: Dict[str, dict] = {
    'SuperAdmin': {
        'description': 'Full access to every resource',
        'grants': [{'resource': WILDCARD, 'actions': [WILDCARD]}],
    },
    'OrderManager': {
        'description': 'Fulfillment: read and progress every order',
        'grants': [
            {'resource': 'orders', 'actions': ['read', 'update', 'export']},
            {'resource': 'products', 'actions': ['read']},
        ],
    },
    'BranchClerk': {
        'description': 'Orders for the assigned branches, refunds capped',
        'grants': [
            {'resource': 'orders', 'actions': ['read', 'update'], 'conditions': {'branchIds': [], 'maxAmount': 50000}},
        ],
    },
    'CatalogEditor': {
        'description': 'Maintain products and categories',
        'grants': [
            {'resource': 'products', 'actions': ['create', 'read', 'update', 'delete']},
            {'resource': 'categories', 'actions': ['create', 'read', 'update', 'delete']},
        ],
    },
    'Auditor': {
        'description': 'Read-only access to reports, orders and the audit trail',
        'grants': [
            {'resource': 'orders', 'actions': ['read', 'export']},
            {'resource': 'reports', 'actions': ['read', 'export']},
            {'resource': 'audit', 'actions': ['read']},
        ],
    },
}


def is_reserved_name(name: str) -> bool:
    """True when a resource/action name embeds the wildcard without being the wildcard itself."""
    return name != WILDCARD and WILDCARD in name
