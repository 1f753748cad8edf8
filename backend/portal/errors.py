"""Portal error hierarchy.

Authorization and validation problems are raised as typed errors and rendered by the
application error handler; infrastructure failures (database, storage) are left to
propagate as generic 500s.
"""
from typing import Any, Dict, Optional


class PortalError(Exception):
    """Base error - every domain error extends this"""

    error_code: str = "PORTAL_ERROR"
    http_status: int = 400
    title: str = "Bad Request"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'error': {
                'status': self.http_status,
                'title': self.title,
                'detail': self.message,
                'code': self.error_code,
            }
        }
        if self.details:
            payload['error']['details'] = self.details
        return payload


class AccessDenied(PortalError):
    """Actor lacks the capability for the requested action"""
    error_code = "ACCESS_DENIED"
    http_status = 403
    title = "Forbidden"


class TicketNotFound(PortalError):
    error_code = "TICKET_NOT_FOUND"
    http_status = 404
    title = "Not Found"


class ValidationFailed(PortalError):
    error_code = "VALIDATION_FAILED"
    http_status = 400
    title = "Bad Request"


class MatrixConfigurationError(PortalError):
    """A defined role has no (or an incomplete) permission matrix row"""
    error_code = "CONFIGURATION_ERROR"
    http_status = 500
    title = "Internal Server Error"


class RoleLookupError(PortalError):
    """Role could not be determined; callers must fail closed"""
    error_code = "ROLE_LOOKUP_FAILED"
    http_status = 503
    title = "Service Unavailable"


class PermissionLookupError(PortalError):
    """Matrix row could not be read; callers must fail closed"""
    error_code = "PERMISSION_LOOKUP_FAILED"
    http_status = 503
    title = "Service Unavailable"


class AttachmentStoreError(Exception):
    """Blob storage failure. Not a PortalError: surfaces as a generic failure."""

    def __init__(self, message: str, failed_paths=None):
        super().__init__(message)
        self.failed_paths = list(failed_paths or [])


__all__ = [
    'PortalError', 'AccessDenied', 'TicketNotFound', 'ValidationFailed',
    'MatrixConfigurationError', 'RoleLookupError', 'PermissionLookupError',
    'AttachmentStoreError',
]
