"""
ERP Access Core - Database Configuration

SQLModel database setup with connection pooling.
Supports PostgreSQL (production) and SQLite (development).

Usage:
    from erp_auth.auth.database import get_engine, init_db

    engine = get_engine()
    init_db(engine)  # Creates tables
"""

import logging
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

from erp_auth.config import settings


logger = logging.getLogger(__name__)


def get_engine(database_url: str = None, echo: bool = False):
    """
    Create SQLAlchemy engine with appropriate configuration.

    Args:
        database_url: Override database URL
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    url = database_url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_engine(
        url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


def init_db(engine) -> None:
    """
    Create every access-core table.

    Safe to call multiple times (uses CREATE IF NOT EXISTS).
    """
    # Register models with SQLModel metadata
    from erp_auth.auth import models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ensured on %s", engine.url.render_as_string(hide_password=True))


def get_session_factory(engine):
    """
    Create a session factory bound to engine.

    Returns:
        Callable that creates new database sessions
    """
    def session_factory() -> Session:
        return Session(engine)

    return session_factory
