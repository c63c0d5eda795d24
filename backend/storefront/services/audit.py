from __future__ import annotations
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from storefront.models.audit import AuditLog

SYSTEM_ACTOR = 0


def add_audit(session: Session, action: str, entity: Optional[str] = None, entity_id: Any = None,
              meta: Optional[Dict[str, Any]] = None, actor_id: Any = None) -> AuditLog:
    """Stage an audit log entry in ``session``.

    Parameters:
      action: short action code e.g. ROLE.CREATE, USER.ROLE.ASSIGN, ORDER.STATUS
      entity: optional entity name (Role, User, Order)
      entity_id: optional primary key (stored as string)
      meta: additional JSON-safe dictionary (shallow copied)
      actor_id: acting user id; None records the system actor

    No commit here; the caller's transaction boundary controls durability, so an audit row
    never outlives a rolled back change.
    """
    log = AuditLog(
        actor_user_id=int(actor_id) if actor_id is not None else SYSTEM_ACTOR,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    return log
