"""
ERP Access Core - Session/Token Manager

Authentication flows built on the session store and signed tokens:
- Login (password, optional second factor), refresh, logout
- Session listing and termination
- Password change and reset (token-version bump)
- E-mail verification
- 2FA enrollment, verification, disable and backup codes
- Account deactivation

Every operation takes the DB session first and raises typed errors from
erp_auth.exceptions; the HTTP layer maps them to status codes.

Security:
- Unknown user and wrong password produce the same failure
- Refresh tokens are only honoured while their session row exists and the
  embedded token version matches the user's current one
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import List, Optional
from uuid import UUID

from sqlmodel import Session as DBSession, select

from erp_auth.auth import sessions as session_store
from erp_auth.auth import two_factor
from erp_auth.auth.models import BackupCode, Role, Session, Token, TokenType, User
from erp_auth.auth.password import (
    check_password_strength,
    hash_backup_code,
    hash_password,
    needs_rehash,
    verify_backup_code,
    verify_password,
)
from erp_auth.auth.tokens import (
    create_access_token,
    create_refresh_token,
    generate_one_time_token,
    hash_one_time_token,
    verify_access_token,
    verify_refresh_token,
)
from erp_auth.config import settings
from erp_auth.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidTokenError,
    NotFoundError,
    ValidationError,
)
from erp_auth.services.mail_service import send_password_reset_email, send_verification_email


logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_CODE = "Invalid verification code"


@dataclass
class LoginResult:
    """
    Outcome of a login attempt.

    When `requires_2fa` is True no tokens or session were issued; the
    caller must retry with `otp_code` or `backup_code`.
    """
    user: User
    requires_2fa: bool = False
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    session_id: Optional[UUID] = None


@dataclass
class TwoFactorEnrollment:
    """Pending 2FA secret and the otpauth URI to render as a QR code."""
    secret: str
    provisioning_uri: str


@dataclass
class AuthContext:
    """User and live session behind a verified access token."""
    user: User
    session: Session
    token_id: str = ""


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Spends bcrypt time on unknown identifiers so timing does not reveal them
    return hash_password("dummy-password-for-timing")


def _find_by_identifier(db: DBSession, identifier: str) -> Optional[User]:
    if "@" in identifier:
        statement = select(User).where(User.email == identifier.lower())
    else:
        statement = select(User).where(User.employee_id == identifier)
    return db.exec(statement).first()


async def get_user(db: DBSession, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _validate_new_password(password: str) -> None:
    try:
        check_password_strength(password)
    except ValueError as e:
        raise ValidationError(str(e), {"password": str(e)})


# =============================================================================
# Login / refresh / logout
# =============================================================================

async def login(
    db: DBSession,
    identifier: str,
    password: str,
    remember: bool = False,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
    otp_code: Optional[str] = None,
    backup_code: Optional[str] = None,
) -> LoginResult:
    """
    Authenticate by e-mail or employee ID and open a new session.

    Raises:
        AuthenticationError: Bad credentials, inactive or unverified
            account, or a wrong second factor
    """
    identifier = (identifier or "").strip()
    user = _find_by_identifier(db, identifier) if identifier else None

    if user is None:
        verify_password(password or "", _dummy_hash())
        logger.warning("Login failed: unknown identifier")
        raise AuthenticationError(INVALID_CREDENTIALS)

    if not verify_password(password, user.password_hash):
        logger.warning("Login failed: invalid password for user %s", user.id)
        raise AuthenticationError(INVALID_CREDENTIALS)

    if not user.is_active:
        logger.warning("Login failed: account inactive for user %s", user.id)
        raise AuthenticationError("Account is deactivated")

    if settings.REQUIRE_EMAIL_VERIFICATION and not user.is_email_verified:
        logger.warning("Login failed: e-mail not verified for user %s", user.id)
        raise AuthenticationError("Please verify your email first")

    if user.two_factor_secret:
        if not otp_code and not backup_code:
            return LoginResult(user=user, requires_2fa=True)

        if otp_code:
            second_factor_ok = two_factor.verify_code(otp_code, user.two_factor_secret)
        else:
            second_factor_ok = _consume_backup_code(db, user, backup_code)

        if not second_factor_ok:
            logger.warning("Login failed: invalid second factor for user %s", user.id)
            raise AuthenticationError(INVALID_CODE)

    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)

    session = await session_store.create_session(
        db,
        user_id=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
        commit=False,
    )

    user.last_login = datetime.utcnow()
    user.login_count = (user.login_count or 0) + 1
    db.add(user)
    db.commit()
    db.refresh(user)
    db.refresh(session)

    access_token, token_id = create_access_token(user.id, session.session_id)
    refresh_token, _ = create_refresh_token(
        user.id, session.session_id, user.token_version, remember=remember
    )

    logger.info("Login successful: user %s session %s token %s", user.id, session.session_id, token_id)
    return LoginResult(
        user=user,
        access_token=access_token,
        refresh_token=refresh_token,
        session_id=session.session_id,
    )


def _parse_subject(sub: str, sid: str) -> tuple[UUID, UUID]:
    try:
        return UUID(sub), UUID(sid)
    except (TypeError, ValueError):
        raise InvalidTokenError("Token validation failed: malformed claims")


async def refresh_access_token(db: DBSession, refresh_token: str) -> str:
    """
    Mint a new access token from a refresh token.

    The refresh token itself is not rotated.

    Raises:
        AuthenticationError: Invalid/expired token, session gone, user
            gone or inactive, or token version mismatch
    """
    payload = verify_refresh_token(refresh_token)
    user_id, session_id = _parse_subject(payload.sub, payload.sid)

    user = db.get(User, user_id)
    session = await session_store.get_session(db, session_id, user_id)

    if user is None or session is None or not user.is_active or user.token_version != payload.ver:
        logger.warning("Refresh rejected for user %s session %s", user_id, session_id)
        raise AuthenticationError("Invalid refresh token")

    await session_store.touch_session(db, session)
    access_token, _ = create_access_token(user.id, session.session_id)
    return access_token


async def authenticate_access_token(db: DBSession, token: str) -> AuthContext:
    """
    Resolve an access token to its user and live session.

    Touches the session's last_activity.

    Raises:
        AuthenticationError: Invalid token, session gone, or user inactive
    """
    payload = verify_access_token(token)
    user_id, session_id = _parse_subject(payload.sub, payload.sid)

    session = await session_store.get_session(db, session_id, user_id)
    if session is None:
        raise AuthenticationError("Session expired or invalid")

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("User account is inactive")

    await session_store.touch_session(db, session)
    return AuthContext(user=user, session=session, token_id=payload.jti)


async def logout(db: DBSession, session_id: UUID) -> bool:
    """Delete the given session. Other sessions and the token version are untouched."""
    deleted = await session_store.delete_session(db, session_id)
    logger.info("Logout: session %s (deleted=%s)", session_id, deleted)
    return deleted


# =============================================================================
# Sessions
# =============================================================================

async def list_sessions(db: DBSession, user_id: UUID) -> List[Session]:
    return await session_store.get_active_sessions(db, user_id)


async def terminate_session(
    db: DBSession,
    user_id: UUID,
    session_id: UUID,
    current_session_id: Optional[UUID] = None,
) -> None:
    """
    Delete one of the user's other sessions.

    Raises:
        ValidationError: Target is the current session (use logout)
        NotFoundError: No such session for this user
    """
    if current_session_id is not None and session_id == current_session_id:
        raise ValidationError(
            "Cannot terminate current session. Use logout instead.",
            {"session_id": "current session"},
        )

    if not await session_store.delete_session(db, session_id, user_id=user_id):
        raise NotFoundError("Session not found")

    logger.info("Session %s terminated by user %s", session_id, user_id)


async def terminate_all_other_sessions(db: DBSession, user_id: UUID, current_session_id: UUID) -> int:
    """Delete every session of the user except the current one."""
    count = await session_store.delete_user_sessions(db, user_id, keep_session_id=current_session_id)
    logger.info("User %s terminated %d other sessions", user_id, count)
    return count


# =============================================================================
# Passwords
# =============================================================================

async def change_password(
    db: DBSession,
    user_id: UUID,
    current_password: str,
    new_password: str,
    current_session_id: Optional[UUID] = None,
) -> int:
    """
    Change the password of an authenticated user.

    Bumps the token version (every outstanding refresh token dies) and
    deletes all sessions except the current one.

    Returns:
        Number of sessions deleted

    Raises:
        AuthenticationError: Current password is wrong
        ValidationError: New password too weak
    """
    user = await get_user(db, user_id)

    if not verify_password(current_password, user.password_hash):
        logger.warning("Password change rejected for user %s", user_id)
        raise AuthenticationError("Current password is incorrect")

    _validate_new_password(new_password)

    user.password_hash = hash_password(new_password)
    user.token_version += 1
    user.updated_at = datetime.utcnow()
    db.add(user)

    count = await session_store.delete_user_sessions(
        db, user.id, keep_session_id=current_session_id, commit=False
    )
    db.commit()

    logger.info("Password changed for user %s; %d sessions removed", user_id, count)
    return count


async def _issue_one_time_token(db: DBSession, user: User, token_type: TokenType, hours: int) -> str:
    raw = generate_one_time_token()
    db.add(Token(
        user_id=user.id,
        token_hash=hash_one_time_token(raw),
        type=token_type,
        expires_at=datetime.utcnow() + timedelta(hours=hours),
    ))
    db.commit()
    return raw


def _find_valid_token(db: DBSession, raw: str, token_type: TokenType) -> Token:
    record = db.exec(
        select(Token).where(
            Token.token_hash == hash_one_time_token(raw or ""),
            Token.type == token_type,
            Token.used == False,  # noqa: E712
            Token.expires_at > datetime.utcnow(),
        )
    ).first()
    if record is None:
        raise AuthenticationError("Invalid or expired token")
    return record


async def cleanup_expired_tokens(db: DBSession) -> int:
    """Delete one-time tokens past their expiry. Returns the number removed."""
    expired = db.exec(select(Token).where(Token.expires_at <= datetime.utcnow())).all()
    for record in expired:
        db.delete(record)
    db.commit()
    return len(expired)


async def _dispatch(send, *args) -> None:
    try:
        await send(*args)
    except Exception:
        logger.exception("Mail dispatch failed")


async def request_password_reset(db: DBSession, email: str, mailer) -> None:
    """
    Issue a password-reset token and mail the link.

    Silent when no account matches, so the response never reveals
    whether an e-mail is registered.
    """
    user = db.exec(select(User).where(User.email == (email or "").strip().lower())).first()
    if user is None:
        logger.info("Password reset requested for unknown e-mail")
        return

    raw = await _issue_one_time_token(db, user, TokenType.PASSWORD_RESET, settings.PASSWORD_RESET_EXPIRE_HOURS)
    await _dispatch(send_password_reset_email, mailer, user.email, user.name, raw)


async def reset_password_with_token(db: DBSession, token: str, new_password: str) -> None:
    """
    Set a new password using a one-time reset token.

    Bumps the token version, deletes ALL sessions and marks the token used.

    Raises:
        AuthenticationError: Token unknown, used or expired
        ValidationError: New password too weak
    """
    record = _find_valid_token(db, token, TokenType.PASSWORD_RESET)
    _validate_new_password(new_password)

    user = await get_user(db, record.user_id)
    user.password_hash = hash_password(new_password)
    user.token_version += 1
    user.updated_at = datetime.utcnow()
    record.used = True
    db.add(user)
    db.add(record)

    count = await session_store.delete_user_sessions(db, user.id, commit=False)
    db.commit()

    logger.info("Password reset completed for user %s; %d sessions removed", user.id, count)


# =============================================================================
# Registration and e-mail verification
# =============================================================================

async def register_user(
    db: DBSession,
    email: str,
    password: str,
    name: str,
    mailer,
    employee_id: Optional[str] = None,
    role_name: Optional[str] = None,
) -> User:
    """
    Create an unverified account and send the verification link.

    Raises:
        ConflictError: E-mail or employee ID already registered
        NotFoundError: Role does not exist
        ValidationError: Password too weak
    """
    email = (email or "").strip().lower()
    if db.exec(select(User).where(User.email == email)).first():
        raise ConflictError("Email already registered")
    if employee_id and db.exec(select(User).where(User.employee_id == employee_id)).first():
        raise ConflictError("Employee ID already registered")

    _validate_new_password(password)

    role_name = role_name or settings.DEFAULT_ROLE
    role = db.exec(select(Role).where(Role.name == role_name)).first()
    if role is None:
        raise NotFoundError(f"Role '{role_name}' not found")

    user = User(
        email=email,
        employee_id=employee_id,
        name=name,
        password_hash=hash_password(password),
        role_id=role.id,
        is_email_verified=False,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    raw = await _issue_one_time_token(
        db, user, TokenType.EMAIL_VERIFICATION, settings.EMAIL_VERIFICATION_EXPIRE_HOURS
    )
    await _dispatch(send_verification_email, mailer, user.email, user.name, raw)

    logger.info("User %s registered with role %s", user.id, role_name)
    return user


async def request_email_verification(db: DBSession, email: str, mailer) -> None:
    """Re-send the verification link; silent for unknown or verified accounts."""
    user = db.exec(select(User).where(User.email == (email or "").strip().lower())).first()
    if user is None or user.is_email_verified:
        return

    raw = await _issue_one_time_token(
        db, user, TokenType.EMAIL_VERIFICATION, settings.EMAIL_VERIFICATION_EXPIRE_HOURS
    )
    await _dispatch(send_verification_email, mailer, user.email, user.name, raw)


async def verify_email(db: DBSession, token: str) -> User:
    """
    Mark the account behind a verification token as verified.

    Raises:
        AuthenticationError: Token unknown, used or expired
    """
    record = _find_valid_token(db, token, TokenType.EMAIL_VERIFICATION)
    user = await get_user(db, record.user_id)

    user.is_email_verified = True
    record.used = True
    db.add(user)
    db.add(record)
    db.commit()
    db.refresh(user)
    return user


# =============================================================================
# Two-factor authentication
# =============================================================================

async def enable_2fa(db: DBSession, user_id: UUID) -> TwoFactorEnrollment:
    """Start enrollment: store a temporary secret; the active one is unchanged."""
    user = await get_user(db, user_id)

    secret, uri = two_factor.generate_secret(user.email)
    user.temp_two_factor_secret = secret
    db.add(user)
    db.commit()

    return TwoFactorEnrollment(secret=secret, provisioning_uri=uri)


async def verify_2fa(db: DBSession, user_id: UUID, code: str) -> None:
    """
    Finish enrollment: promote the temporary secret when `code` matches it.

    Raises:
        ValidationError: No pending enrollment or wrong code
    """
    user = await get_user(db, user_id)

    if not user.temp_two_factor_secret:
        raise ValidationError("No pending 2FA enrollment", {"code": "no pending enrollment"})

    if not two_factor.verify_code(code, user.temp_two_factor_secret):
        raise ValidationError(INVALID_CODE, {"code": "invalid"})

    user.two_factor_secret = user.temp_two_factor_secret
    user.temp_two_factor_secret = None
    db.add(user)
    db.commit()
    logger.info("2FA enabled for user %s", user_id)


def _require_current_code(user: User, code: str) -> None:
    if not user.two_factor_secret:
        raise ValidationError("2FA is not enabled", {"code": "2fa not enabled"})
    if not two_factor.verify_code(code, user.two_factor_secret):
        raise ValidationError(INVALID_CODE, {"code": "invalid"})


def _delete_backup_codes(db: DBSession, user_id: UUID) -> None:
    for existing in db.exec(select(BackupCode).where(BackupCode.user_id == user_id)).all():
        db.delete(existing)


async def disable_2fa(db: DBSession, user_id: UUID, code: str) -> None:
    """
    Turn 2FA off. Requires a valid code for the active secret.

    Raises:
        ValidationError: 2FA not enabled or wrong code
    """
    user = await get_user(db, user_id)
    _require_current_code(user, code)

    user.two_factor_secret = None
    user.temp_two_factor_secret = None
    db.add(user)
    _delete_backup_codes(db, user.id)
    db.commit()
    logger.info("2FA disabled for user %s", user_id)


async def generate_backup_codes(db: DBSession, user_id: UUID, code: str) -> List[str]:
    """
    Replace the user's backup codes. Requires a valid current code.

    Returns:
        The new plaintext codes (shown once; only hashes are stored)
    """
    user = await get_user(db, user_id)
    _require_current_code(user, code)

    _delete_backup_codes(db, user.id)
    codes = two_factor.generate_backup_codes()
    db.add_all([BackupCode(user_id=user.id, code_hash=hash_backup_code(c)) for c in codes])
    db.commit()

    logger.info("Backup codes regenerated for user %s", user_id)
    return codes


def _consume_backup_code(db: DBSession, user: User, code: str) -> bool:
    """Mark the matching unused backup code as used. Caller commits."""
    candidates = db.exec(
        select(BackupCode).where(BackupCode.user_id == user.id, BackupCode.used == False)  # noqa: E712
    ).all()

    for candidate in candidates:
        if verify_backup_code(code, candidate.code_hash):
            candidate.used = True
            candidate.used_at = datetime.utcnow()
            db.add(candidate)
            logger.info("Backup code consumed for user %s", user.id)
            return True

    return False


# =============================================================================
# Account
# =============================================================================

async def deactivate_account(db: DBSession, user_id: UUID) -> int:
    """
    Deactivate an account: mark inactive, bump the token version and
    delete every session.

    Returns:
        Number of sessions deleted
    """
    user = await get_user(db, user_id)

    user.is_active = False
    user.deactivated_at = datetime.utcnow()
    user.token_version += 1
    db.add(user)

    count = await session_store.delete_user_sessions(db, user.id, commit=False)
    db.commit()

    logger.info("Account %s deactivated; %d sessions removed", user_id, count)
    return count
