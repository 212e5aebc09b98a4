"""
ERP Access Core - Credential Hashing Utilities

bcrypt hashing for passwords and 2FA backup codes.
The work factor comes from settings (BCRYPT_ROUNDS, default 12).

Security:
- Never log or expose plaintext passwords or codes
- bcrypt includes salt automatically
- Supports hash upgrades on login
"""

import re

import bcrypt

from erp_auth.config import settings


def hash_password(password: str, rounds: int = None) -> str:
    """
    Hash a password using bcrypt.

    Example:
        >>> hashed = hash_password("SecureP@ss123")
        >>> hashed.startswith("$2b$")
        True
    """
    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Returns False (never raises) for a missing or malformed hash, so a
    lookup miss and a wrong password look the same to the caller.
    """
    if not plain_password or not hashed_password:
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except (ValueError, TypeError):
        return False


def needs_rehash(hashed_password: str, target_work_factor: int = None) -> bool:
    """
    Check if a password hash was produced with a lower work factor.

    bcrypt hash format: $2b$XX$... where XX is the work factor.
    """
    target = target_work_factor or settings.BCRYPT_ROUNDS
    try:
        _, work_factor_str, _ = hashed_password.split("$")[1:4]
        return int(work_factor_str) < target
    except (ValueError, IndexError, AttributeError):
        return True


def hash_backup_code(code: str) -> str:
    """Hash a 2FA backup code. Codes are compared case-insensitively."""
    return hash_password(normalize_backup_code(code))


def verify_backup_code(code: str, code_hash: str) -> bool:
    """Check a submitted backup code against its stored hash."""
    return verify_password(normalize_backup_code(code), code_hash)


def normalize_backup_code(code: str) -> str:
    return (code or "").strip().upper()


MIN_PASSWORD_LENGTH = 8

# bcrypt only reads the first 72 bytes of its input
MAX_PASSWORD_BYTES = 72


def check_password_strength(password: str) -> str:
    """
    Enforce password strength requirements.

    Raises:
        ValueError: With a message naming the first unmet rule
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise ValueError("Password must contain at least one digit")
    return password
