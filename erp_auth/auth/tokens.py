"""
ERP Access Core - JWT Token Management

Creates and validates signed tokens:
- Access tokens (short-lived) carry user ID (sub), session ID (sid), jti
- Refresh tokens (7 days, 30 with "remember") also carry the user's
  token version (ver); bumping the version invalidates them all at once

Also issues the opaque one-time tokens used for password reset and
e-mail verification links.

Security:
- Every signed token is bound to a server-side session
- The `type` claim prevents using a refresh token as an access token
- jti makes every token unique and enables audit correlation
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID
import hashlib
import secrets

from jose import jwt, JWTError
from pydantic import BaseModel, Field

from erp_auth.config import settings
from erp_auth.exceptions import InvalidTokenError


ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenPayload(BaseModel):
    """
    JWT access token payload.

    Attributes:
        sub: Subject (user ID)
        sid: Session ID for server-side validation
        jti: Unique token ID
        type: "access" or "refresh"
    """
    sub: str = Field(..., description="User ID")
    sid: str = Field(..., description="Session ID")
    jti: str = Field(..., description="Token ID for audit")
    type: str = Field(..., description="Token type")
    exp: datetime = Field(..., description="Expiration time")
    iat: datetime = Field(..., description="Issued at time")


class RefreshTokenPayload(TokenPayload):
    """Refresh token payload; `ver` must match the user's token version."""
    ver: int = Field(..., description="User token version at issue time")


def _encode(claims: dict, lifetime: timedelta) -> tuple[str, str]:
    now = datetime.utcnow()
    token_id = secrets.token_hex(16)

    payload = {
        **claims,
        "jti": token_id,
        "iat": now,
        "exp": now + lifetime,
    }

    encoded = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return encoded, token_id


def _decode(token: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise InvalidTokenError(f"Token validation failed: {e}")

    if payload.get("type") != expected_type:
        raise InvalidTokenError("Token validation failed: wrong token type")

    return payload


def create_access_token(
    user_id: UUID,
    session_id: UUID,
    expires_delta: Optional[timedelta] = None
) -> tuple[str, str]:
    """
    Create a new access token.

    Returns:
        Tuple of (encoded JWT string, token ID)
    """
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode(
        {"sub": str(user_id), "sid": str(session_id), "type": ACCESS_TOKEN_TYPE},
        lifetime,
    )


def create_refresh_token(
    user_id: UUID,
    session_id: UUID,
    token_version: int,
    remember: bool = False,
) -> tuple[str, str]:
    """
    Create a refresh token embedding the user's current token version.

    Args:
        remember: Use the long "remember me" lifetime

    Returns:
        Tuple of (encoded JWT string, token ID)
    """
    days = settings.REFRESH_TOKEN_REMEMBER_DAYS if remember else settings.REFRESH_TOKEN_EXPIRE_DAYS
    return _encode(
        {
            "sub": str(user_id),
            "sid": str(session_id),
            "ver": token_version,
            "type": REFRESH_TOKEN_TYPE,
        },
        timedelta(days=days),
    )


def verify_access_token(token: str) -> TokenPayload:
    """
    Verify and decode an access token.

    Raises:
        InvalidTokenError: If token is invalid, expired, malformed or not an access token
    """
    try:
        return TokenPayload(**_decode(token, ACCESS_TOKEN_TYPE))
    except (TypeError, ValueError) as e:
        raise InvalidTokenError(f"Token validation failed: {e}")


def verify_refresh_token(token: str) -> RefreshTokenPayload:
    """
    Verify and decode a refresh token.

    Signature and expiry only; version and session checks are the
    caller's job since they need the store.
    """
    try:
        return RefreshTokenPayload(**_decode(token, REFRESH_TOKEN_TYPE))
    except (TypeError, ValueError) as e:
        raise InvalidTokenError(f"Token validation failed: {e}")


def get_token_expiry_seconds() -> int:
    """Get access token lifetime in seconds for responses."""
    return settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60


def generate_one_time_token() -> str:
    """Opaque URL-safe token for reset/verification links."""
    return secrets.token_urlsafe(32)


def hash_one_time_token(token: str) -> str:
    """SHA-256 digest stored in place of the one-time token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
