"""
Permission checking dependencies for route protection.

Implements:
- Principal resolution for the current session
- FastAPI dependencies requiring a permission or a role
- Audit context of the current request
"""
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import AccessDenied
from app.core.rate_limit import client_ip, user_agent
from app.features.audit.recorder import AuditContext
from app.features.permissions.evaluator import Principal, has_permission, has_role, load_principal
from app.features.sessions.models import UserSession
from app.features.users.dependencies import get_current_session, get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def get_current_principal(
    user: Annotated[User, Depends(get_current_user)],
    session: Annotated[UserSession, Depends(get_current_session)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Principal:
    """Principal rebuilt from the store on every request; nothing is cached between requests."""
    return await load_principal(db, user, session_id=session.id)


def require_permission(action: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.delete("/{department_id}")
        async def delete_department(
            principal: Principal = Depends(require_permission("department:delete"))
        ):
            ...

    Returns:
        Dependency function that returns the principal if it holds the permission

    Raises:
        AccessDenied: 403 if the principal lacks the permission
    """
    async def permission_dependency(
        principal: Annotated[Principal, Depends(get_current_principal)]
    ) -> Principal:
        if not has_permission(principal, action):
            log.debug("User %s denied %s", principal.user_id, action)
            raise AccessDenied(f"Permission denied: {action}")
        return principal

    return permission_dependency


def require_role(role_name: str):
    """FastAPI dependency to require a role (case-insensitive)."""
    async def role_dependency(
        principal: Annotated[Principal, Depends(get_current_principal)]
    ) -> Principal:
        if not has_role(principal, role_name):
            log.debug("User %s lacks role %s", principal.user_id, role_name)
            raise AccessDenied(f"Role required: {role_name}")
        return principal

    return role_dependency


def audit_context(request: Request, principal: Principal | None = None) -> AuditContext:
    return AuditContext(
        actor_id=principal.user_id if principal else None,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
