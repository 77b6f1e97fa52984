"""
User lifecycle state machine.

    pending -> active                (automatic, employment start reached)
    active  -> blocked               (manual, reason required)
    blocked -> active                (manual unblock)
    any     -> inactive              (manual deactivate or contract expiry)
    any     -> permanently deleted   (hard delete, cascades role assignments)

Every transition writes exactly one audit entry in the same transaction as
the status change.
"""
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, NotFound, ValidationFailed
from app.features.audit.recorder import SYSTEM, AuditContext, record_audit
from app.features.permissions.models import UserRole
from app.features.sessions import tracker
from app.features.sessions.models import UserSession
from app.features.users.models import User, UserStatus
from app.utils import get_logger, today


log = get_logger(__name__)


def user_snapshot(user: User) -> Dict[str, Any]:
    """Audit snapshot of a user; never includes the credential hash."""
    employment = user.current_employment
    return {
        "employee_number": user.employee_number,
        "name": user.name,
        "email": user.email,
        "status": user.status,
        "department_id": user.department_id,
        "start_date": employment.start_date.isoformat() if employment else None,
        "end_date": employment.end_date.isoformat() if employment and employment.end_date else None,
        "contract_type": employment.contract_type if employment else None,
    }


async def load_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User")
    return user


def _guard_self(user: User, ctx: AuditContext, verb: str) -> None:
    if ctx.actor_id is not None and ctx.actor_id == user.id:
        raise ValidationFailed(f"Cannot {verb} your own account")


async def _set_status(
    db: AsyncSession,
    user: User,
    new_status: UserStatus,
    action: str,
    ctx: AuditContext,
    details: str,
    reason: Optional[str] = None,
) -> User:
    old_status = user.status
    user.status = new_status.value
    await db.flush()

    new_values: Dict[str, Any] = {"status": new_status.value}
    if reason is not None:
        new_values["reason"] = reason

    await record_audit(
        db, action, ctx,
        target_user_id=user.id,
        target_table="users",
        target_id=user.id,
        old_values={"status": old_status},
        new_values=new_values,
        details=details,
    )
    log.info("User %s: %s -> %s (%s)", user.id, old_status, new_status.value, action)
    return user


async def block_user(db: AsyncSession, user_id: str, reason: Optional[str], ctx: AuditContext) -> User:
    """
    Block an active user.

    Raises:
        ValidationFailed: reason is missing or blank, or the actor blocks itself
        Conflict: the user is not active
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailed("A reason is required when blocking a user", field="reason")

    user = await load_user(db, user_id)
    _guard_self(user, ctx, "block")
    if user.status != UserStatus.ACTIVE.value:
        raise Conflict(f"Only active users can be blocked (status: {user.status})")

    await tracker.end_user_sessions(db, user.id, tracker.END_REVOKED)
    return await _set_status(
        db, user, UserStatus.BLOCKED, "user_blocked", ctx,
        details=f"User blocked: {user.name} - Reason: {reason}",
        reason=reason,
    )


async def unblock_user(db: AsyncSession, user_id: str, ctx: AuditContext) -> User:
    user = await load_user(db, user_id)
    if user.status != UserStatus.BLOCKED.value:
        raise Conflict(f"Only blocked users can be unblocked (status: {user.status})")

    return await _set_status(
        db, user, UserStatus.ACTIVE, "user_unblocked", ctx,
        details=f"User unblocked: {user.name}",
    )


async def deactivate_user(db: AsyncSession, user_id: str, ctx: AuditContext) -> User:
    """Soft delete: the row and its history stay, the account can no longer act."""
    user = await load_user(db, user_id)
    _guard_self(user, ctx, "deactivate")
    if user.status == UserStatus.INACTIVE.value:
        raise Conflict("User is already inactive")

    await tracker.end_user_sessions(db, user.id, tracker.END_REVOKED)
    return await _set_status(
        db, user, UserStatus.INACTIVE, "user_deactivated", ctx,
        details=f"User deactivated: {user.name}",
    )


async def change_status(
    db: AsyncSession,
    user_id: str,
    new_status: UserStatus,
    ctx: AuditContext,
    reason: Optional[str] = None,
) -> User:
    """
    Route a requested status to its transition.

    Activation of pending users is left to activate_pending_users.
    """
    user = await load_user(db, user_id)
    if user.status == new_status.value:
        return user

    if new_status == UserStatus.BLOCKED:
        return await block_user(db, user_id, reason, ctx)
    if new_status == UserStatus.INACTIVE:
        return await deactivate_user(db, user_id, ctx)
    if new_status == UserStatus.ACTIVE and user.status == UserStatus.BLOCKED.value:
        return await unblock_user(db, user_id, ctx)

    raise Conflict(f"Cannot change status from {user.status} to {new_status.value}", field="status")


async def permanently_delete_user(db: AsyncSession, user_id: str, ctx: AuditContext) -> Dict[str, Any]:
    """
    Hard delete. Role assignments go first, then sessions, then the user
    row (its employment records cascade). Irreversible.
    """
    user = await load_user(db, user_id)
    _guard_self(user, ctx, "delete")
    snapshot = user_snapshot(user)

    result = await db.execute(delete(UserRole).where(UserRole.user_id == user.id))
    roles_removed = result.rowcount or 0
    await db.execute(delete(UserSession).where(UserSession.user_id == user.id))

    await record_audit(
        db, "user_permanently_deleted", ctx,
        target_user_id=user.id,
        target_table="users",
        target_id=user.id,
        old_values=snapshot,
        details=f"User permanently deleted: {user.name} ({user.email}), {roles_removed} role assignment(s) removed",
    )

    await db.delete(user)
    await db.flush()
    log.warning("User %s permanently deleted by %s", user_id, ctx.actor_id)
    return {"id": user_id, "roles_removed": roles_removed}


async def activate_pending_users(db: AsyncSession, on: Optional[date] = None) -> Dict[str, Any]:
    """Activate pending users whose employment has started and not yet ended."""
    on = on or today()
    result = await db.execute(select(User).where(User.status == UserStatus.PENDING.value))

    activated = []
    for user in result.scalars().all():
        employment = user.current_employment
        if employment is None or employment.start_date > on:
            continue
        if employment.end_date is not None and employment.end_date < on:
            continue
        await _set_status(
            db, user, UserStatus.ACTIVE, "user_activated", SYSTEM,
            details=f"User activated: {user.name} - employment started {employment.start_date.isoformat()}",
        )
        activated.append(user.id)

    if activated:
        log.info("Activated %d pending user(s)", len(activated))
    return {"activated_count": len(activated), "user_ids": activated}


async def check_and_deactivate_expired_contracts(db: AsyncSession, on: Optional[date] = None) -> Dict[str, Any]:
    """Deactivate users whose employment end date has passed."""
    on = on or today()
    result = await db.execute(select(User).where(User.status != UserStatus.INACTIVE.value))

    deactivated = []
    for user in result.scalars().all():
        employment = user.current_employment
        if employment is None or employment.end_date is None or employment.end_date >= on:
            continue
        await tracker.end_user_sessions(db, user.id, tracker.END_REVOKED)
        await _set_status(
            db, user, UserStatus.INACTIVE, "contract_expired", SYSTEM,
            details=f"Contract expired: {user.name} - end date {employment.end_date.isoformat()}",
        )
        deactivated.append(user.id)

    if deactivated:
        log.info("Deactivated %d user(s) with expired contracts", len(deactivated))
    return {"deactivated_count": len(deactivated), "user_ids": deactivated}
