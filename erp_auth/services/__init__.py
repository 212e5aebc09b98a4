"""
ERP Access Core - Services Package

Service layer for external integrations.
Auth flows use these services; they don't manage delivery connections directly.
"""

from erp_auth.services.mail_service import (
    HttpMailer,
    LoggingMailer,
    build_mailer,
    send_password_reset_email,
    send_verification_email,
)


__all__ = [
    "HttpMailer",
    "LoggingMailer",
    "build_mailer",
    "send_password_reset_email",
    "send_verification_email",
]
