"""Per-role permission matrix.

A row of role_permissions is translated once, at load time, into a PermissionMatrix whose
per-status flags are total mappings keyed by TicketStatus. Evaluation code never builds
flag names; only this module and the constants module know about them.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from portal.models.authz import RolePermission
from portal.constants.permissions import (
    AppRole, TicketStatus, ALL_STATUSES, ALL_ROLES, ALL_FLAG_NAMES, CRUD_FLAGS,
    CHANGE_TO_FLAGS, CHANGE_FROM_FLAGS, DELETE_FLAGS,
)
from portal.errors import MatrixConfigurationError, PermissionLookupError, ValidationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionMatrix:
    role: AppRole
    can_create_service_ticket: bool
    can_view_own_tickets: bool
    can_view_all_tickets: bool
    can_edit_own_tickets: bool
    can_edit_all_tickets: bool
    can_change_to: Mapping[TicketStatus, bool]
    can_change_from: Mapping[TicketStatus, bool]
    can_delete_in: Mapping[TicketStatus, bool]

    def __post_init__(self):
        expected = set(ALL_STATUSES)
        for field_name in ('can_change_to', 'can_change_from', 'can_delete_in'):
            keys = set(getattr(self, field_name))
            if keys != expected:
                missing = sorted(s.value for s in expected - keys)
                extra = sorted(str(k) for k in keys - expected)
                raise MatrixConfigurationError(
                    f'Matrix for role {self.role.value} is not total over statuses ({field_name})',
                    details={'missing': missing, 'unexpected': extra},
                )

    @classmethod
    def from_flags(cls, role: AppRole, flags: Mapping[str, Any]) -> 'PermissionMatrix':
        missing = [name for name in ALL_FLAG_NAMES if name not in flags or flags[name] is None]
        if missing:
            raise MatrixConfigurationError(
                f'Matrix for role {role.value} is missing flags',
                details={'missing': missing},
            )
        return cls(
            role=role,
            can_create_service_ticket=bool(flags['can_create_service_ticket']),
            can_view_own_tickets=bool(flags['can_view_own_tickets']),
            can_view_all_tickets=bool(flags['can_view_all_tickets']),
            can_edit_own_tickets=bool(flags['can_edit_own_tickets']),
            can_edit_all_tickets=bool(flags['can_edit_all_tickets']),
            can_change_to={s: bool(flags[name]) for s, name in CHANGE_TO_FLAGS.items()},
            can_change_from={s: bool(flags[name]) for s, name in CHANGE_FROM_FLAGS.items()},
            can_delete_in={s: bool(flags[name]) for s, name in DELETE_FLAGS.items()},
        )

    @classmethod
    def from_row(cls, row: RolePermission) -> 'PermissionMatrix':
        return cls.from_flags(AppRole(row.role), {name: getattr(row, name) for name in ALL_FLAG_NAMES})

    def to_flags(self) -> Dict[str, bool]:
        """Canonical {flag_name: bool} form, as stored and as exposed to matrix editors."""
        flags = {name: bool(getattr(self, name)) for name in CRUD_FLAGS}
        for status in ALL_STATUSES:
            flags[CHANGE_TO_FLAGS[status]] = self.can_change_to[status]
            flags[CHANGE_FROM_FLAGS[status]] = self.can_change_from[status]
            flags[DELETE_FLAGS[status]] = self.can_delete_in[status]
        return flags


def load_matrix(session, role: AppRole) -> PermissionMatrix:
    """Load the matrix row for role.

    A missing row is a configuration error and is never defaulted. Lookup failures raise
    PermissionLookupError so the caller can fail closed.
    """
    try:
        stmt = select(RolePermission).where(RolePermission.role==role.value).execution_options(populate_existing=True)
        row = session.execute(stmt).scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.warning('Permission matrix lookup failed for role %s: %s', role.value, e)
        raise PermissionLookupError('Permission lookup failed') from e
    if row is None:
        logger.error('No permission matrix row configured for role %s', role.value)
        raise MatrixConfigurationError(f'No permission matrix configured for role {role.value}')
    return PermissionMatrix.from_row(row)


def validate_matrices(session) -> Dict[AppRole, PermissionMatrix]:
    """Load every defined role's matrix; raises on the first missing or partial row."""
    return {role: load_matrix(session, role) for role in ALL_ROLES}


def update_matrix(session, role: AppRole, flags: Mapping[str, Any]) -> PermissionMatrix:
    """Apply a partial flag update by canonical names. Creates the row if absent. Caller commits."""
    unknown = sorted(set(flags) - set(ALL_FLAG_NAMES))
    if unknown:
        raise ValidationFailed('Unknown permission flags', details={'unknown': unknown})
    not_bool = sorted(k for k, v in flags.items() if not isinstance(v, bool))
    if not_bool:
        raise ValidationFailed('Permission flags must be booleans', details={'invalid': not_bool})
    row = session.execute(select(RolePermission).where(RolePermission.role==role.value)).scalar_one_or_none()
    if row is None:
        row = RolePermission(role=role.value, **{name: False for name in ALL_FLAG_NAMES})
        session.add(row)
    for name, value in flags.items():
        setattr(row, name, value)
    session.flush()
    return PermissionMatrix.from_row(row)


__all__ = ['PermissionMatrix', 'load_matrix', 'validate_matrices', 'update_matrix']
