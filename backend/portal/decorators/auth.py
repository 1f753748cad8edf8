from functools import wraps
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from portal import get_db
from portal.constants.permissions import AppRole
from portal.errors import AccessDenied, RoleLookupError
from portal.services.roles import resolve_role


def current_user_id() -> str:
    """Identity asserted by the identity provider's token (JWT 'sub')."""
    return str(get_jwt_identity())


def require_role(*roles: AppRole):
    """Allow only users whose resolved role is in roles. Role lookup failures deny."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            try:
                role = resolve_role(get_db(), current_user_id())
            except RoleLookupError as e:
                get_db().rollback()
                raise AccessDenied('Unable to verify permissions') from e
            if role not in roles:
                raise AccessDenied('Missing role')
            return fn(*args, **kwargs)
        return wrapper
    return outer


def require_admin(fn):
    return require_role(AppRole.ADMIN)(fn)
