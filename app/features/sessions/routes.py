"""
Authentication routes: login, logout, principal and session heartbeat.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.rate_limit import client_ip, limiter, user_agent
from app.features.audit.recorder import AuditContext, record_audit
from app.features.permissions.dependencies import get_current_principal
from app.features.permissions.evaluator import Principal, load_principal
from app.features.sessions import tracker
from app.features.sessions.models import UserSession
from app.features.sessions.schemas import LoginRequest, LoginResponse, SessionStatus
from app.features.sessions.tokens import issue_token
from app.features.users.auth import authenticate
from app.features.users.dependencies import get_current_session, peek_current_session


router = APIRouter(tags=["auth"])


def _session_status(session: UserSession) -> SessionStatus:
    return SessionStatus(
        session_id=session.id,
        remaining_seconds=tracker.remaining_seconds(session),
        timeout_seconds=config.SESSION_TIMEOUT_MINUTES * 60,
    )


@router.post("/login", response_model=LoginResponse)
@limiter.limit(config.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    credentials: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Check credentials, open a session and return its token with the principal."""
    ip_address = client_ip(request)
    agent = user_agent(request)

    result = await authenticate(db, credentials.email, credentials.password, ip_address, agent)
    if result.error is not None:
        # The failed LoginEvent is kept
        await db.commit()
        raise result.error

    session = await tracker.start_session(db, result.user, ip_address, agent)
    principal = await load_principal(db, result.user, session_id=session.id)
    await db.commit()

    return LoginResponse(
        token=issue_token(result.user.id, session.id),
        expires_in=config.SESSION_TIMEOUT_MINUTES * 60,
        principal=principal.snapshot(),
    )


@router.post("/logout")
async def logout(
    request: Request,
    session: Annotated[UserSession, Depends(get_current_session)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """End the current session."""
    await tracker.end_session(db, session, tracker.END_LOGOUT)
    ctx = AuditContext(actor_id=session.user_id, ip_address=client_ip(request), user_agent=user_agent(request))
    await record_audit(
        db, "logout", ctx,
        target_user_id=session.user_id,
        target_table="user_sessions",
        target_id=session.id,
        details="User logged out",
    )
    await db.commit()
    return {"message": "Logged out successfully"}


@router.get("/me")
async def me(principal: Annotated[Principal, Depends(get_current_principal)]):
    """Fresh principal snapshot (user, current roles, effective permissions)."""
    return principal.snapshot()


@router.post("/activity", response_model=SessionStatus)
async def activity(session: Annotated[UserSession, Depends(get_current_session)]):
    """Interaction heartbeat; presenting the session already extended it."""
    return _session_status(session)


@router.get("/session", response_model=SessionStatus)
async def session_status(session: Annotated[UserSession, Depends(peek_current_session)]):
    """Periodic check; reports the remaining idle time without extending it."""
    return _session_status(session)
