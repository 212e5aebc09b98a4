"""
ERP Access Core - Authentication Routes

API endpoints for authentication:
- POST   /auth/login                 - Authenticate and create session
- POST   /auth/register              - Create an unverified account
- POST   /auth/logout                - Delete the current session
- POST   /auth/refresh-token         - Mint a new access token
- POST   /auth/verify-token          - Validate the bearer token
- POST   /auth/forgot-password       - Mail a reset link
- POST   /auth/reset-password/{t}    - Reset with a one-time token
- POST   /auth/change-password       - Change password (authenticated)
- POST   /auth/verify-email/{t}      - Confirm an e-mail address
- POST   /auth/resend-verification   - Re-send the verification link
- GET    /auth/sessions              - List active sessions
- DELETE /auth/sessions/{id}         - Terminate another session
- DELETE /auth/sessions              - Terminate all other sessions
- GET    /auth/me                    - Current user
- DELETE /auth/me                    - Deactivate own account
- POST   /auth/2fa/*                 - Two-factor enrollment and codes

Handlers stay thin: the service layer raises typed errors which the
application's exception handlers turn into responses.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session as DBSession

from erp_auth.auth import service
from erp_auth.auth.dependencies import (
    get_client_ip,
    get_current_user,
    get_db,
    get_mailer,
    get_user_agent,
)
from erp_auth.auth.schemas import (
    ActiveSessionsResponse,
    BackupCodesResponse,
    ChangePasswordRequest,
    EmailRequest,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SessionInfo,
    TerminateSessionsResponse,
    TwoFactorCodeRequest,
    TwoFactorEnableResponse,
    UserResponse,
    VerifyTokenResponse,
)
from erp_auth.auth.service import AuthContext
from erp_auth.auth.tokens import get_token_expiry_seconds


router = APIRouter(prefix="/auth", tags=["authentication"])


# =============================================================================
# Login / tokens
# =============================================================================

@router.post(
    "/login",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Authenticate user and create session",
)
async def login(
    request: Request,
    credentials: LoginRequest,
    db: DBSession = Depends(get_db),
):
    """
    Authenticate with e-mail or employee ID and password.

    For accounts with 2FA enabled, a first call without a code returns
    `requires_2fa: true` and no tokens.
    """
    result = await service.login(
        db,
        identifier=credentials.identifier,
        password=credentials.password,
        remember=credentials.remember,
        user_agent=get_user_agent(request),
        ip_address=get_client_ip(request),
        otp_code=credentials.otp_code,
        backup_code=credentials.backup_code,
    )

    if result.requires_2fa:
        return LoginResponse(requires_2fa=True)

    return LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=get_token_expiry_seconds(),
        session_id=result.session_id,
        user=UserResponse.from_user(result.user),
    )


@router.post("/register", response_model=UserResponse, status_code=201)
async def register(
    body: RegisterRequest,
    db: DBSession = Depends(get_db),
    mailer=Depends(get_mailer),
):
    user = await service.register_user(
        db,
        email=body.email,
        password=body.password,
        name=body.name,
        mailer=mailer,
        employee_id=body.employee_id,
    )
    return UserResponse.from_user(user)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    await service.logout(db, auth.session.session_id)
    return MessageResponse(message="Logged out successfully")


@router.post(
    "/refresh-token",
    response_model=RefreshResponse,
    responses={401: {"model": ErrorResponse}},
)
async def refresh_token(body: RefreshRequest, db: DBSession = Depends(get_db)):
    access_token = await service.refresh_access_token(db, body.refresh_token)
    return RefreshResponse(access_token=access_token, expires_in=get_token_expiry_seconds())


@router.post("/verify-token", response_model=VerifyTokenResponse)
async def verify_token(auth: AuthContext = Depends(get_current_user)):
    return VerifyTokenResponse(user=UserResponse.from_user(auth.user))


# =============================================================================
# Passwords and e-mail verification
# =============================================================================

@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: EmailRequest,
    db: DBSession = Depends(get_db),
    mailer=Depends(get_mailer),
):
    """Always answers the same way, whether or not the e-mail is registered."""
    await service.request_password_reset(db, body.email, mailer)
    return MessageResponse(message="If the email exists, a reset link has been sent")


@router.post("/reset-password/{token}", response_model=MessageResponse)
async def reset_password(
    token: str,
    body: ResetPasswordRequest,
    db: DBSession = Depends(get_db),
):
    await service.reset_password_with_token(db, token, body.password)
    return MessageResponse(message="Password reset successful")


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    await service.change_password(
        db,
        auth.user.id,
        body.current_password,
        body.new_password,
        current_session_id=auth.session.session_id,
    )
    return MessageResponse(message="Password changed successfully")


@router.post("/verify-email/{token}", response_model=MessageResponse)
async def verify_email(token: str, db: DBSession = Depends(get_db)):
    await service.verify_email(db, token)
    return MessageResponse(message="Email verified successfully")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    body: EmailRequest,
    db: DBSession = Depends(get_db),
    mailer=Depends(get_mailer),
):
    await service.request_email_verification(db, body.email, mailer)
    return MessageResponse(message="If the account needs verification, a link has been sent")


# =============================================================================
# Sessions
# =============================================================================

@router.get("/sessions", response_model=ActiveSessionsResponse)
async def list_sessions(
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    sessions = await service.list_sessions(db, auth.user.id)
    current = auth.session.session_id

    infos = [
        SessionInfo(
            session_id=s.session_id,
            created_at=s.created_at,
            last_activity=s.last_activity,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            is_current=(s.session_id == current),
        )
        for s in sessions
    ]
    return ActiveSessionsResponse(sessions=infos, total=len(infos))


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def terminate_session(
    session_id: UUID,
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    await service.terminate_session(
        db, auth.user.id, session_id, current_session_id=auth.session.session_id
    )
    return MessageResponse(message="Session terminated")


@router.delete("/sessions", response_model=TerminateSessionsResponse)
async def terminate_other_sessions(
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    count = await service.terminate_all_other_sessions(db, auth.user.id, auth.session.session_id)
    return TerminateSessionsResponse(message="Other sessions terminated", sessions_terminated=count)


# =============================================================================
# Account
# =============================================================================

@router.get("/me", response_model=UserResponse)
async def get_me(auth: AuthContext = Depends(get_current_user)):
    return UserResponse.from_user(auth.user)


@router.delete("/me", response_model=MessageResponse)
async def deactivate_me(
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    await service.deactivate_account(db, auth.user.id)
    return MessageResponse(message="Account deactivated")


# =============================================================================
# Two-factor authentication
# =============================================================================

@router.post("/2fa/enable", response_model=TwoFactorEnableResponse)
async def enable_2fa(
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    enrollment = await service.enable_2fa(db, auth.user.id)
    return TwoFactorEnableResponse(
        secret=enrollment.secret,
        provisioning_uri=enrollment.provisioning_uri,
    )


@router.post("/2fa/verify", response_model=MessageResponse)
async def verify_2fa(
    body: TwoFactorCodeRequest,
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    await service.verify_2fa(db, auth.user.id, body.code)
    return MessageResponse(message="Two-factor authentication enabled")


@router.post("/2fa/disable", response_model=MessageResponse)
async def disable_2fa(
    body: TwoFactorCodeRequest,
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    await service.disable_2fa(db, auth.user.id, body.code)
    return MessageResponse(message="Two-factor authentication disabled")


@router.post("/2fa/generate-backup-codes", response_model=BackupCodesResponse)
async def generate_backup_codes(
    body: TwoFactorCodeRequest,
    auth: AuthContext = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    codes = await service.generate_backup_codes(db, auth.user.id, body.code)
    return BackupCodesResponse(backup_codes=codes)
