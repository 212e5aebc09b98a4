"""TOTP secrets, code verification and backup-code generation."""

import secrets

import pyotp

from erp_auth.config import settings


# One 30s step either side for clock drift
VERIFY_WINDOW = 1


def generate_secret(email: str) -> tuple[str, str]:
    """
    Generate a new base32 TOTP secret.

    Returns:
        Tuple of (secret, otpauth provisioning URI for the enrollment QR code)
    """
    secret = pyotp.random_base32()
    uri = pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=settings.TOTP_ISSUER)
    return secret, uri


def verify_code(code: str, secret: str) -> bool:
    """Check a one-time code against a secret. False for a missing secret or code."""
    if not secret or not code:
        return False
    return pyotp.TOTP(secret).verify(str(code).strip(), valid_window=VERIFY_WINDOW)


def generate_backup_codes(count: int = None) -> list[str]:
    """Generate plaintext backup codes in XXXX-XXXX form."""
    codes = []
    for _ in range(count or settings.BACKUP_CODE_COUNT):
        raw = secrets.token_hex(4).upper()
        codes.append(f"{raw[:4]}-{raw[4:]}")
    return codes
