"""
Role assignment manager.

Assignments are temporal: granting inserts a row valid from today with no
end date, revoking closes the open row by setting valid_to to today.
Rows are never deleted here.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.features.audit.recorder import AuditContext, record_audit
from app.features.permissions.models import UserRole
from app.features.permissions.service import get_role
from app.features.users.models import User
from app.utils import today


async def _get_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User")
    return user


async def get_open_assignment(db: AsyncSession, user_id: str, role_id: str) -> Optional[UserRole]:
    """The assignment of this role to this user with no end date, if any."""
    result = await db.execute(
        select(UserRole)
        .where(UserRole.user_id == user_id, UserRole.role_id == role_id, UserRole.valid_to.is_(None))
        .order_by(UserRole.valid_from.desc(), UserRole.created_at.desc())
    )
    return result.scalars().first()


async def assign(db: AsyncSession, user_id: str, role_id: str, ctx: AuditContext) -> UserRole:
    """
    Grant a role to a user from today on.

    Does not look for an existing open assignment; callers check
    get_open_assignment first.
    """
    user = await _get_user(db, user_id)
    role = await get_role(db, role_id)

    assignment = UserRole(
        user_id=user.id,
        role_id=role.id,
        valid_from=today(),
        valid_to=None,
        granted_by=ctx.actor_id,
    )
    assignment.role = role
    db.add(assignment)
    await db.flush()

    await record_audit(
        db, "role_assigned", ctx,
        target_user_id=user.id, target_table="user_roles", target_id=assignment.id,
        new_values={"role": role.name, "valid_from": assignment.valid_from.isoformat()},
        details=f"Role {role.name} assigned to {user.name}",
    )
    return assignment


async def revoke(db: AsyncSession, user_id: str, role_id: str, ctx: AuditContext) -> Optional[UserRole]:
    """
    Close every open assignment of the role for the user.

    Returns the most recent closed assignment, or None when there was
    nothing to revoke.
    """
    result = await db.execute(
        select(UserRole)
        .where(UserRole.user_id == user_id, UserRole.role_id == role_id, UserRole.valid_to.is_(None))
        .order_by(UserRole.valid_from.desc(), UserRole.created_at.desc())
    )
    open_rows = list(result.scalars().all())
    if not open_rows:
        return None

    ended = today()
    for row in open_rows:
        row.valid_to = ended
    await db.flush()

    latest = open_rows[0]
    await record_audit(
        db, "role_revoked", ctx,
        target_user_id=user_id, target_table="user_roles", target_id=latest.id,
        old_values={"role": latest.role.name, "valid_to": None},
        new_values={"role": latest.role.name, "valid_to": ended.isoformat()},
        details=f"Role {latest.role.name} revoked",
    )
    return latest


async def list_assignments(db: AsyncSession, user_id: str, include_history: bool = False) -> list[UserRole]:
    """Current assignments of a user, or every row ever written when include_history is set."""
    await _get_user(db, user_id)
    stmt = select(UserRole).where(UserRole.user_id == user_id).order_by(UserRole.valid_from, UserRole.created_at)
    rows = list((await db.execute(stmt)).scalars().all())
    if include_history:
        return rows
    on = today()
    return [row for row in rows if row.is_current(on)]
