"""
ERP Access Core - Security Dependencies

FastAPI dependencies for authentication and authorization.
Every protected request validates both the JWT and its server-side session.

Usage:
    @router.get("/employees")
    async def list_employees(
        auth: AuthContext = Depends(require_permission("view_employees")),
    ):
        ...

Security:
- RBAC is deny-by-default
- Denials are logged with the permission name; the client only sees
  "Insufficient permissions"
"""

import logging
from typing import Iterator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session as DBSession

from erp_auth.auth.service import AuthContext, authenticate_access_token
from erp_auth.exceptions import AuthenticationError, AuthorizationError
from erp_auth.gateway.rbac import rbac_service


logger = logging.getLogger(__name__)

# HTTP Bearer scheme for JWT extraction
security = HTTPBearer(auto_error=False)

MANAGE_ROLES = "manage_roles"


def get_db(request: Request) -> Iterator[DBSession]:
    """Yield a database session from the factory on app state."""
    db = request.app.state.db_session_factory()
    try:
        yield db
    finally:
        db.close()


def get_mailer(request: Request):
    return request.app.state.mailer


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "unknown")[:512]


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: DBSession = Depends(get_db),
) -> AuthContext:
    """
    Validate the bearer token and return the authenticated context.

    Raises:
        AuthenticationError: Missing/invalid token, expired session or
            inactive user
    """
    if credentials is None:
        raise AuthenticationError("Authentication required")

    return await authenticate_access_token(db, credentials.credentials)


def require_permission(permission_name: str):
    """
    Dependency factory enforcing a named permission.

    The super role passes every check.
    """
    async def checker(
        auth: AuthContext = Depends(get_current_user),
        db: DBSession = Depends(get_db),
    ) -> AuthContext:
        if not await rbac_service.has_permission(db, auth.user, permission_name):
            logger.warning("Permission denied: user %s lacks %s", auth.user.id, permission_name)
            raise AuthorizationError(permission_name)
        return auth

    return checker


async def require_role_manager(
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
) -> AuthContext:
    """
    Gate for the RBAC administration routes.

    Passes for the super role, a role flagged `can_manage_roles`, or a
    role (or ancestor) granted `manage_roles`.
    """
    role = auth.user.role
    if role is not None and (role.is_super_role or role.can_manage_roles):
        return auth

    if await rbac_service.has_permission(db, auth.user, MANAGE_ROLES):
        return auth

    logger.warning("Role administration denied for user %s", auth.user.id)
    raise AuthorizationError(MANAGE_ROLES)
