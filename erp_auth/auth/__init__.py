"""
ERP Access Core - Authentication Package

Authentication and session lifecycle with:
- Signed access/refresh tokens bound to server-side sessions
- bcrypt password and backup-code hashing
- TOTP two-factor authentication
- Token-version revocation on password change, reset and deactivation

FastAPI dependencies live in erp_auth.auth.dependencies and are not
re-exported here; they depend on the resolver, which imports the models.
"""

from erp_auth.auth.models import Permission, Role, RolePermission, Session, User
from erp_auth.auth.tokens import create_access_token, verify_access_token

__all__ = [
    "User",
    "Session",
    "Role",
    "Permission",
    "RolePermission",
    "create_access_token",
    "verify_access_token",
]
