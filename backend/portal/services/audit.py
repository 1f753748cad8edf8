from __future__ import annotations
from typing import Any, Dict, Optional
from portal.models.audit import AuditLog


def add_audit(session, action: str, actor_user_id: Optional[str], actor_role: Optional[str] = None, entity: Optional[str] = None, entity_id: Optional[Any] = None, meta: Optional[Dict[str, Any]] = None):
    """Persist an audit log entry within the given DB session.

    Parameters:
      action: short action code e.g. TICKET.CREATE, TICKET.STATUS, USER.ROLE.SET
      actor_user_id: identity of the acting user (explicit, never read from request state here)
      actor_role: role resolved for the actor when known
      entity: optional entity name (ServiceTicket, UserRole, RolePermission)
      entity_id: optional primary key
      meta: additional JSON-safe dictionary (will be shallow copied)
    """
    log = AuditLog(
        actor_user_id=str(actor_user_id) if actor_user_id is not None else '',
        actor_role=actor_role,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
