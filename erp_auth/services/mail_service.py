"""
Service layer for outbound e-mail (verification and password-reset links).

Delivery is fire-and-forget: failures are logged, never raised to the
caller, so a mail outage cannot block an auth flow.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from erp_auth.config import settings


logger = logging.getLogger(__name__)


class LoggingMailer:
    """Development mailer: records the message in the log instead of sending it."""

    def __init__(self):
        self.outbox: list[Dict[str, Any]] = []

    async def send(self, to: str, subject: str, template: str, context: Dict[str, Any]) -> bool:
        self.outbox.append({"to": to, "subject": subject, "template": template, "context": context})
        logger.info("Mail not sent (no relay configured): template=%s to=%s", template, to)
        return True


class HttpMailer:
    """Posts templated messages to an HTTP mail relay."""

    def __init__(self, api_url: str, api_key: str = "", sender: Optional[str] = None, timeout: float = 10.0):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender or settings.MAIL_FROM
        self.timeout = timeout

    async def send(self, to: str, subject: str, template: str, context: Dict[str, Any]) -> bool:
        payload = {
            "from": self.sender,
            "to": to,
            "subject": subject,
            "template": template,
            "context": context,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
                return True
            except httpx.HTTPError as e:
                logger.error("Mail delivery failed: template=%s to=%s error=%s", template, to, e)
                return False


def build_mailer():
    """Pick the mailer implementation from settings."""
    if settings.MAIL_API_URL:
        return HttpMailer(settings.MAIL_API_URL, settings.MAIL_API_KEY)
    return LoggingMailer()


async def send_verification_email(mailer, email: str, name: str, token: str) -> bool:
    link = f"{settings.FRONTEND_URL}/verify-email?token={token}"
    return await mailer.send(
        to=email,
        subject="Verify your email",
        template="emailVerification",
        context={"name": name, "verificationLink": link},
    )


async def send_password_reset_email(mailer, email: str, name: str, token: str) -> bool:
    link = f"{settings.FRONTEND_URL}/reset-password?token={token}"
    return await mailer.send(
        to=email,
        subject="Reset your password",
        template="passwordReset",
        context={"name": name, "resetLink": link},
    )
