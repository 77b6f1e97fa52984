"""
Password hashing and credential verification.
"""
from dataclasses import dataclass
from typing import Optional

import bcrypt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import AccessDenied, AppError, AuthenticationFailed
from app.features.audit.recorder import record_login_event
from app.features.users.models import User, UserStatus


INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_NOT_ACTIVE = "Account is not active. Please contact administrator."


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


@dataclass
class AuthResult:
    """Outcome of a login attempt; exactly one of user/error is set."""
    user: Optional[User] = None
    error: Optional[AppError] = None


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def authenticate(
    db: AsyncSession,
    email: str,
    password: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuthResult:
    """
    Check credentials and record a LoginEvent for the attempt.

    Failures are returned rather than raised so the caller can commit the
    failed LoginEvent before answering with the error.
    """
    user = await get_user_by_email(db, email)
    if user is None:
        await record_login_event(
            db, False, ip_address=ip_address, user_agent=user_agent, failure_reason="Invalid email"
        )
        return AuthResult(error=AuthenticationFailed(INVALID_CREDENTIALS))

    if not verify_password(password, user.password_hash):
        await record_login_event(
            db, False, user_id=user.id, ip_address=ip_address, user_agent=user_agent,
            failure_reason="Invalid password"
        )
        return AuthResult(error=AuthenticationFailed(INVALID_CREDENTIALS))

    if user.status != UserStatus.ACTIVE.value:
        await record_login_event(
            db, False, user_id=user.id, ip_address=ip_address, user_agent=user_agent,
            failure_reason=f"Account status: {user.status}"
        )
        return AuthResult(error=AccessDenied(ACCOUNT_NOT_ACTIVE))

    await record_login_event(db, True, user_id=user.id, ip_address=ip_address, user_agent=user_agent)
    return AuthResult(user=user)
