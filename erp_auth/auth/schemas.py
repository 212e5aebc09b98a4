"""
ERP Access Core - Authentication Request/Response Schemas

Pydantic models for API request validation and response serialization.
Separates API contracts from database models.
"""

import re
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, validator

from erp_auth.auth.password import check_password_strength


EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")


def _email(v: str) -> str:
    """Basic email format validation (allows .local for development)."""
    v = v.strip()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email format")
    return v.lower()


class UserResponse(BaseModel):
    """Response body for GET /auth/me."""
    id: UUID
    email: str
    name: str
    employee_id: Optional[str] = None
    role: Optional[str] = None
    is_active: bool
    is_email_verified: bool
    two_factor_enabled: bool = False
    last_login: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_user(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            employee_id=user.employee_id,
            role=user.role.name if user.role else None,
            is_active=user.is_active,
            is_email_verified=user.is_email_verified,
            two_factor_enabled=bool(user.two_factor_secret),
            last_login=user.last_login,
            created_at=user.created_at,
        )


class LoginRequest(BaseModel):
    """
    Request body for POST /auth/login.

    `identifier` is an e-mail address or an employee ID.
    """
    identifier: str = Field(..., min_length=1, description="Email or employee ID")
    password: str = Field(..., min_length=1)
    remember: bool = Field(default=False, description="Issue a 30-day refresh token")
    otp_code: Optional[str] = Field(default=None, description="TOTP code when 2FA is enabled")
    backup_code: Optional[str] = Field(default=None, description="Single-use 2FA backup code")


class LoginResponse(BaseModel):
    """Response body for login. Tokens are absent while a second factor is pending."""
    requires_2fa: bool = False
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    session_id: Optional[UUID] = None
    user: Optional[UserResponse] = None


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""
    email: str
    password: str
    name: str = Field(..., min_length=1, max_length=255)
    employee_id: Optional[str] = Field(default=None, max_length=50)

    @validator("email")
    def email_format(cls, v):
        return _email(v)

    @validator("password")
    def password_strength(cls, v):
        return check_password_strength(v)


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh-token."""
    refresh_token: str = Field(..., description="Refresh token")


class RefreshResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class VerifyTokenResponse(BaseModel):
    valid: bool = True
    user: UserResponse


class EmailRequest(BaseModel):
    """Request body for forgot-password and resend-verification."""
    email: str

    @validator("email")
    def email_format(cls, v):
        return _email(v)


class ResetPasswordRequest(BaseModel):
    password: str

    @validator("password")
    def password_strength(cls, v):
        return check_password_strength(v)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @validator("new_password")
    def password_strength(cls, v):
        return check_password_strength(v)


class SessionInfo(BaseModel):
    """Session information for user display."""
    session_id: UUID
    created_at: datetime
    last_activity: datetime
    ip_address: Optional[str]
    user_agent: Optional[str]
    is_current: bool = False

    class Config:
        from_attributes = True


class ActiveSessionsResponse(BaseModel):
    """Response body for GET /auth/sessions."""
    sessions: List[SessionInfo]
    total: int


class TerminateSessionsResponse(BaseModel):
    message: str
    sessions_terminated: int


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=8)


class TwoFactorEnableResponse(BaseModel):
    secret: str
    provisioning_uri: str


class BackupCodesResponse(BaseModel):
    backup_codes: List[str]


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    fields: Optional[dict] = None
    request_id: Optional[str] = None

