from __future__ import annotations
"""Audit logging decorator for IAM route handlers.

Usage examples:

@audit_log('USER.ROLE.SET', entity='UserRole', entity_id_key='user_id', meta_keys=['role'])
def set_user_role(user_id): ...

@audit_log('ROLE.PERM.UPDATE', entity='RolePermission', entity_id_key='role',
           meta_builder=lambda data, rv, args, kwargs: {'count': len(data.get('changed', []))})
def update_role_permissions(role): ...

Parameters:
  action: required audit action code (e.g. USER.ROLE.SET)
  entity: optional entity label (UserRole, RolePermission, Profile)
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: name of the path parameter to use for entity_id (fallback if entity_id_key absent).
  meta_keys: list of keys to project from returned JSON into meta dict (shallow copy).
  meta_builder: callable returning a meta dict; receives (data, original_return_value, args, kwargs).
  diff_keys / pre_fetch: record before/after values of the given keys under meta['changes'].

The actor is the JWT identity of the request. Ticket mutations do not use this decorator;
the ticket gateway writes its own audit rows with the explicit actor.
"""

import logging
from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict

from flask_jwt_extended import get_jwt_identity
from portal.services.audit import add_audit
from portal import get_db

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return (data, original_rv) where data is the JSON-able dict for inspection."""
    if isinstance(rv, tuple) and rv:
        data = rv[0]
        return data, rv
    return rv, rv


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = None
            if diff_keys and pre_fetch:
                before_snapshot = pre_fetch(args, kwargs)
            rv = fn(*args, **kwargs)
            data, _ = _extract_payload(rv)
            if not isinstance(data, dict):  # nothing to inspect
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            meta = None
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs)
            elif meta_keys:
                meta = {k: data.get(k) for k in meta_keys if k in data}
            if diff_keys and isinstance(before_snapshot, dict):
                changes = {}
                for k in diff_keys:
                    if k in before_snapshot and k in data and before_snapshot.get(k) != data.get(k):
                        changes[k] = {'before': before_snapshot.get(k), 'after': data.get(k)}
                if changes:
                    meta = dict(meta or {})
                    meta['changes'] = changes
            session = get_db()
            try:
                add_audit(session, action, get_jwt_identity(), entity=entity, entity_id=entity_id, meta=meta)
                session.commit()
            except Exception:
                # The mutation is already committed; audit failures are only logged.
                session.rollback()
                logger.exception('Failed to write audit entry %s', action)
            return rv
        return wrapper
    return outer
