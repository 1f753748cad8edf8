from __future__ import annotations
import logging
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from portal.models.authz import UserRole
from portal.constants.permissions import AppRole
from portal.errors import RoleLookupError, ValidationFailed

logger = logging.getLogger(__name__)


def resolve_role(session, user_id) -> AppRole:
    """Return the role assigned to user_id, defaulting to USER when no row exists.

    Raises RoleLookupError when the lookup fails or the stored value is not a known role.
    Callers must treat that as 'unknown' and withhold elevated capabilities.
    """
    try:
        stmt = select(UserRole).where(UserRole.user_id==str(user_id)).execution_options(populate_existing=True)
        row = session.execute(stmt).scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.warning('Role lookup failed for user %s: %s', user_id, e)
        raise RoleLookupError('Role lookup failed') from e
    if row is None:
        return AppRole.USER
    try:
        return AppRole(row.role)
    except ValueError:
        logger.warning('User %s has unknown role %r', user_id, row.role)
        raise RoleLookupError(f'Unknown role {row.role!r}')


def assign_role(session, user_id, role: AppRole) -> UserRole:
    """Update the user's role row, inserting it when absent. Caller commits."""
    row = session.execute(select(UserRole).where(UserRole.user_id==str(user_id))).scalar_one_or_none()
    if row is None:
        row = UserRole(user_id=str(user_id), role=role.value)
        session.add(row)
    else:
        row.role = role.value
    session.flush()
    return row


def count_admins(session) -> int:
    return session.execute(
        select(func.count()).select_from(UserRole).where(UserRole.role==AppRole.ADMIN.value)
    ).scalar_one()


def assert_not_removing_last_admin(session, target_user_id, new_role: AppRole):
    """Ensure that after giving target_user_id new_role at least one admin remains."""
    if new_role == AppRole.ADMIN:
        return
    current = session.execute(select(UserRole).where(UserRole.user_id==str(target_user_id))).scalar_one_or_none()
    was_admin = current is not None and current.role == AppRole.ADMIN.value
    if was_admin and count_admins(session) <= 1:
        raise ValidationFailed('Cannot remove last admin role')


__all__ = ['resolve_role', 'assign_role', 'count_admins', 'assert_not_removing_last_admin']
