"""
FastAPI dependencies for authentication.
"""
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import AccessDenied, AuthenticationFailed
from app.features.sessions import tracker
from app.features.sessions.models import UserSession
from app.features.sessions.tokens import decode_token
from app.features.users.auth import ACCOUNT_NOT_ACTIVE
from app.features.users.models import User, UserStatus


security = HTTPBearer(auto_error=False)


async def get_current_session(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> UserSession:
    """
    Resolve the bearer token to an open server-side session.

    This dependency:
    1. Verifies the JWT and reads the user and session ids
    2. Rejects ended sessions, expiring idle ones on the spot
    3. Refreshes the session's last activity

    Usage:
        @router.post("/logout")
        async def logout(session: UserSession = Depends(get_current_session)):
            ...
    """
    return await _resolve_session(credentials, db, tracker.touch_session)


async def peek_current_session(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> UserSession:
    """
    Like get_current_session, but leaves last activity untouched.

    For periodic status checks, which must not keep an idle session alive.
    """
    return await _resolve_session(credentials, db, tracker.check_session)


async def _resolve_session(credentials, db: AsyncSession, resolve) -> UserSession:
    if credentials is None or not credentials.credentials:
        raise AuthenticationFailed("Not authenticated")

    user_id, session_id = decode_token(credentials.credentials)
    try:
        return await resolve(db, session_id, user_id)
    except tracker.SessionExpired:
        # Keep the expiry even though the request fails
        await db.commit()
        raise


async def get_current_user(
    session: Annotated[UserSession, Depends(get_current_session)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the user of the current session.

    Only active accounts may act; blocked, inactive and pending users get 403.
    """
    user = await db.get(User, session.user_id)
    if user is None:
        raise AuthenticationFailed("Invalid session")

    if user.status != UserStatus.ACTIVE.value:
        raise AccessDenied(ACCOUNT_NOT_ACTIVE)

    return user
