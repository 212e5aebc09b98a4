"""
ERP Access Core - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: Override SECRET_KEY via environment outside local development.
"""

import logging
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        DATABASE_URL: SQLAlchemy URL for the credential/RBAC store
        SECRET_KEY: JWT signing key for access and refresh tokens
        REQUIRE_EMAIL_VERIFICATION: Block login until the e-mail is verified
        PERMISSION_CACHE_TTL_SECONDS: Resolver cache entry lifetime (0 = until cleared)
        REDIS_URL: Enables cross-instance cache invalidation when set
        MAIL_API_URL: Mail relay endpoint; empty means links are only logged
    """

    APP_NAME: str = "Nesa ERP"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./erp_auth.db"

    # Tokens
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    REFRESH_TOKEN_REMEMBER_DAYS: int = 30

    # Sessions and one-time tokens
    SESSION_INACTIVITY_DAYS: int = 30
    PASSWORD_RESET_EXPIRE_HOURS: int = 1
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    REQUIRE_EMAIL_VERIFICATION: bool = True

    # Credentials
    BCRYPT_ROUNDS: int = 12
    TOTP_ISSUER: str = "Nesa ERP"
    BACKUP_CODE_COUNT: int = 10

    # RBAC
    DEFAULT_ROLE: str = "employee"
    SUPER_ROLE_NAME: str = "superadmin"
    PERMISSION_CACHE_TTL_SECONDS: int = 0
    REDIS_URL: str = ""
    RBAC_INVALIDATION_CHANNEL: str = "rbac:permissions-changed"

    # Outbound mail
    MAIL_API_URL: str = ""
    MAIL_API_KEY: str = ""
    MAIL_FROM: str = "no-reply@nesa.local"
    FRONTEND_URL: str = "http://localhost:3000"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()


def configure_logging(level: str = None) -> None:
    """Configure root logging for the service process."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
