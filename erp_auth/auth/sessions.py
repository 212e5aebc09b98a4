"""
ERP Access Core - Session Management

Server-side session records for authenticated device contexts.
Sessions enable immediate token revocation and activity tracking.

Lifecycle:
    created -> active (last_activity touched per request) -> invalidated

A session is invalidated by deleting its row (logout, termination,
password change, deactivation) or by 30 days without activity.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlmodel import Session as DBSession, select

from erp_auth.auth.models import Session
from erp_auth.config import settings


def _inactivity_cutoff() -> datetime:
    return datetime.utcnow() - timedelta(days=settings.SESSION_INACTIVITY_DAYS)


async def create_session(
    db: DBSession,
    user_id: UUID,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    commit: bool = True,
) -> Session:
    """
    Create a new server-side session bound to the client's IP and user agent.

    Args:
        commit: Set False to let the caller commit alongside other changes
    """
    now = datetime.utcnow()

    session = Session(
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        is_valid=True,
        last_activity=now,
        created_at=now,
    )

    db.add(session)
    if commit:
        db.commit()
        db.refresh(session)
    else:
        db.flush()

    return session


async def get_session(
    db: DBSession,
    session_id: UUID,
    user_id: Optional[UUID] = None,
) -> Optional[Session]:
    """
    Fetch a live session.

    Returns None when the session is missing, invalid, past the inactivity
    window, or (if given) owned by a different user.
    """
    statement = select(Session).where(
        Session.session_id == session_id,
        Session.is_valid == True,  # noqa: E712
        Session.last_activity > _inactivity_cutoff(),
    )
    if user_id is not None:
        statement = statement.where(Session.user_id == user_id)

    return db.exec(statement).first()


async def touch_session(db: DBSession, session: Session) -> Session:
    """Record activity on a session (keeps it out of the expiry window)."""
    session.last_activity = datetime.utcnow()
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


async def delete_session(db: DBSession, session_id: UUID, user_id: Optional[UUID] = None) -> bool:
    """
    Delete one session row.

    Returns:
        True if a row was deleted, False if not found
    """
    statement = select(Session).where(Session.session_id == session_id)
    if user_id is not None:
        statement = statement.where(Session.user_id == user_id)

    session = db.exec(statement).first()
    if not session:
        return False

    db.delete(session)
    db.commit()
    return True


async def delete_user_sessions(
    db: DBSession,
    user_id: UUID,
    keep_session_id: Optional[UUID] = None,
    commit: bool = True,
) -> int:
    """
    Delete all sessions for a user, optionally sparing one.

    Use cases:
        - Password change (spare the current session)
        - Password reset, deactivation (spare nothing)
        - "Sign out everywhere else"

    Returns:
        Number of sessions deleted
    """
    statement = select(Session).where(Session.user_id == user_id)
    if keep_session_id is not None:
        statement = statement.where(Session.session_id != keep_session_id)

    count = 0
    for session in db.exec(statement).all():
        db.delete(session)
        count += 1

    if commit:
        db.commit()

    return count


async def get_active_sessions(db: DBSession, user_id: UUID) -> list[Session]:
    """List live sessions for a user, most recently active first."""
    statement = (
        select(Session)
        .where(
            Session.user_id == user_id,
            Session.is_valid == True,  # noqa: E712
            Session.last_activity > _inactivity_cutoff(),
        )
        .order_by(Session.last_activity.desc())
    )
    return list(db.exec(statement).all())


async def cleanup_expired_sessions(db: DBSession) -> int:
    """
    Delete sessions idle for longer than the inactivity window.

    Should be run periodically (e.g., daily job).

    Returns:
        Number of sessions removed
    """
    statement = select(Session).where(Session.last_activity <= _inactivity_cutoff())

    count = 0
    for session in db.exec(statement).all():
        db.delete(session)
        count += 1

    db.commit()
    return count
