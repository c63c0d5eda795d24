from __future__ import annotations
from typing import Dict, List, Tuple
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.authz.grants import GrantFormatError, parse_grants
from storefront.constants.permissions import ROLE_PRESETS
from storefront.models.authz import Role


def ensure_preset_roles(session: Session) -> List[str]:
    """Add any missing preset role (flagged as system). Existing roles keep their grants. No commit."""
    existing = set(session.execute(select(Role.name)).scalars().all())
    created = []
    for name, preset in ROLE_PRESETS.items():
        if name in existing:
            continue
        session.add(Role(
            name=name,
            description=preset['description'],
            is_system=True,
            grants=[g.to_dict() for g in parse_grants(preset['grants'], strict=True)],
        ))
        created.append(name)
    session.flush()
    return created


def validate_stored_grants(session: Session) -> List[Tuple[str, str]]:
    """(role name, problem) for every stored grant list that strict parsing rejects."""
    problems = []
    for role in session.execute(select(Role).order_by(Role.id.asc())).scalars().all():
        try:
            parse_grants(role.grants, strict=True)
        except GrantFormatError as e:
            problems.append((role.name, str(e)))
    return problems


def role_grant_map(session: Session) -> Dict[str, list]:
    return {r.name: list(r.grants or []) for r in session.execute(select(Role).order_by(Role.name.asc())).scalars().all()}


__all__ = ['ensure_preset_roles', 'validate_stored_grants', 'role_grant_map']
