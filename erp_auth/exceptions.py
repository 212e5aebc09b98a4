"""Typed failures raised by the access core and mapped to HTTP status codes."""

from typing import Dict, Optional


class ERPError(Exception):
    """Base exception for the access core."""

    status_code = 500

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class AuthenticationError(ERPError):
    """Bad credentials, invalid/expired token, inactive or unverified account."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class InvalidTokenError(AuthenticationError):
    """Raised when JWT validation fails."""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class AuthorizationError(ERPError):
    """Authenticated caller lacks the required permission."""

    status_code = 403

    def __init__(self, permission: str, message: str = "Insufficient permissions"):
        self.permission = permission
        super().__init__(message)


class ValidationError(ERPError):
    """Malformed input. `fields` maps field names to problems."""

    status_code = 422

    def __init__(self, message: str = "Validation error", fields: Optional[Dict[str, str]] = None):
        self.fields = fields or {}
        super().__init__(message)


class ConflictError(ERPError):
    """Duplicate name or attempt to change a protected record."""

    status_code = 409


class NotFoundError(ERPError):
    """Referenced role/permission/session/token does not exist."""

    status_code = 404


class InfrastructureError(ERPError):
    """The backing store is unavailable."""

    status_code = 503
