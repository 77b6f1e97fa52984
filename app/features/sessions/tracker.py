"""
Session tracker.

Each login opens a UserSession. Every authenticated request refreshes
`last_activity_at`; a session idle for longer than SESSION_TIMEOUT_MINUTES
is ended with reason "expired" either when it is next presented or by the
periodic sweep.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import AuthenticationFailed
from app.features.audit.recorder import clean_ip
from app.features.sessions.models import UserSession
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."

END_LOGOUT = "logout"
END_EXPIRED = "expired"
END_REVOKED = "revoked"


class SessionExpired(AuthenticationFailed):
    """The session was idle too long; its expiry is written before answering."""

    def __init__(self):
        super().__init__(SESSION_EXPIRED_MESSAGE)


def session_timeout() -> timedelta:
    return timedelta(minutes=config.SESSION_TIMEOUT_MINUTES)


def is_idle(session: UserSession, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return now - session.last_activity_at > session_timeout()


def remaining_seconds(session: UserSession, now: Optional[datetime] = None) -> int:
    if not session.is_open:
        return 0
    now = now or utcnow()
    left = session.last_activity_at + session_timeout() - now
    return max(0, int(left.total_seconds()))


async def start_session(
    db: AsyncSession,
    user: User,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> UserSession:
    now = utcnow()
    session = UserSession(
        user_id=user.id,
        created_at=now,
        last_activity_at=now,
        ip_address=clean_ip(ip_address),
        user_agent=user_agent or None,
    )
    db.add(session)
    await db.flush()
    log.info("Session %s opened for user %s", session.id, user.id)
    return session


async def end_session(
    db: AsyncSession,
    session: UserSession,
    reason: str,
    now: Optional[datetime] = None,
) -> UserSession:
    if session.is_open:
        session.ended_at = now or utcnow()
        session.end_reason = reason
        await db.flush()
        log.info("Session %s ended: %s", session.id, reason)
    return session


async def check_session(
    db: AsyncSession,
    session_id: str,
    user_id: str,
    now: Optional[datetime] = None,
) -> UserSession:
    """
    Validate a presented session without recording an interaction.

    Raises:
        AuthenticationFailed: unknown, foreign or already ended session
        SessionExpired: the session was idle longer than the timeout; it is
            marked expired (flushed) before raising
    """
    now = now or utcnow()
    session = await db.get(UserSession, session_id)
    if session is None or session.user_id != user_id:
        raise AuthenticationFailed("Invalid session")

    if not session.is_open:
        if session.end_reason == END_EXPIRED:
            raise SessionExpired()
        raise AuthenticationFailed("Session has ended. Please log in again.")

    if is_idle(session, now):
        await end_session(db, session, END_EXPIRED, now)
        raise SessionExpired()

    return session


async def touch_session(
    db: AsyncSession,
    session_id: str,
    user_id: str,
    now: Optional[datetime] = None,
) -> UserSession:
    """Validate a presented session and record the interaction, extending it."""
    now = now or utcnow()
    session = await check_session(db, session_id, user_id, now)
    session.last_activity_at = now
    await db.flush()
    return session


async def expire_idle_sessions(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """End every open session idle longer than the timeout. Returns the count."""
    now = now or utcnow()
    cutoff = now - session_timeout()
    result = await db.execute(
        update(UserSession)
        .where(UserSession.ended_at.is_(None), UserSession.last_activity_at < cutoff)
        .values(ended_at=now, end_reason=END_EXPIRED)
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount or 0
    if count:
        log.info("Expired %d idle session(s)", count)
    return count


async def end_user_sessions(db: AsyncSession, user_id: str, reason: str) -> int:
    """End all open sessions of a user (e.g. when the account is blocked)."""
    result = await db.execute(
        select(UserSession).where(UserSession.user_id == user_id, UserSession.ended_at.is_(None))
    )
    sessions = result.scalars().all()
    now = utcnow()
    for session in sessions:
        await end_session(db, session, reason, now)
    return len(sessions)
