"""
Role and permission catalogue management.

Every mutation flushes into the caller's transaction and appends one audit
entry; the route commits.
"""
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import func, select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.unique import ensure_unique, flush_unique
from app.core.errors import Conflict, NotFound, ValidationFailed
from app.features.audit.recorder import AuditContext, record_audit
from app.features.permissions.models import Permission, Role, UserRole, role_permissions
from app.utils import get_logger, today


log = get_logger(__name__)


def _role_snapshot(role: Role) -> Dict[str, Any]:
    return {
        "name": role.name,
        "description": role.description,
        "permissions": sorted(p.action for p in role.permissions),
    }


async def get_role(db: AsyncSession, role_id: str) -> Role:
    result = await db.execute(select(Role).where(Role.id == role_id))
    role = result.scalar_one_or_none()
    if role is None:
        raise NotFound("Role")
    return role


async def get_permissions_by_ids(db: AsyncSession, permission_ids: Iterable[str]) -> list[Permission]:
    wanted = list(dict.fromkeys(permission_ids))
    if not wanted:
        return []
    result = await db.execute(select(Permission).where(Permission.id.in_(wanted)))
    found = {p.id: p for p in result.scalars().all()}
    missing = [pid for pid in wanted if pid not in found]
    if missing:
        raise ValidationFailed(
            f"Unknown permission ids: {', '.join(missing)}", field="permission_ids"
        )
    return [found[pid] for pid in wanted]


async def list_roles(db: AsyncSession) -> list[tuple[Role, int]]:
    """All roles ordered by name, with the number of users currently holding each."""
    roles = (await db.execute(select(Role).order_by(Role.name))).scalars().all()
    on = today()
    result = await db.execute(
        select(UserRole.role_id, func.count(func.distinct(UserRole.user_id)))
        .where(UserRole.valid_from <= on)
        .where((UserRole.valid_to.is_(None)) | (UserRole.valid_to > on))
        .group_by(UserRole.role_id)
    )
    counts = dict(result.all())
    return [(role, counts.get(role.id, 0)) for role in roles]


async def create_role(
    db: AsyncSession,
    name: str,
    description: Optional[str],
    ctx: AuditContext,
    permission_ids: Optional[list[str]] = None,
) -> Role:
    await ensure_unique(db, Role.name, name, "name", message="Role name already exists")
    role = Role(name=name, description=description)
    role.permissions = await get_permissions_by_ids(db, permission_ids or [])
    db.add(role)
    await flush_unique(db, "name", "Role name already exists")

    await record_audit(
        db, "role_created", ctx,
        target_table="roles", target_id=role.id,
        new_values=_role_snapshot(role),
        details=f"Role created: {role.name}",
    )
    return role


async def update_role(db: AsyncSession, role_id: str, changes: Dict[str, Any], ctx: AuditContext) -> Role:
    """Update name/description and, when `permission_ids` is present, the permission set."""
    role = await get_role(db, role_id)
    before = _role_snapshot(role)

    if "name" in changes and changes["name"] is not None:
        await ensure_unique(db, Role.name, changes["name"], "name", exclude_id=role.id,
                            message="Role name already exists")
        role.name = changes["name"]
    if "description" in changes:
        role.description = changes["description"]
    if changes.get("permission_ids") is not None:
        role.permissions = await get_permissions_by_ids(db, changes["permission_ids"])

    await flush_unique(db, "name", "Role name already exists")
    await record_audit(
        db, "role_updated", ctx,
        target_table="roles", target_id=role.id,
        old_values=before, new_values=_role_snapshot(role),
        details=f"Role updated: {role.name}",
    )
    return role


async def set_role_permissions(db: AsyncSession, role_id: str, permission_ids: list[str], ctx: AuditContext) -> Role:
    """Replace the permission set bound to a role."""
    role = await get_role(db, role_id)
    before = _role_snapshot(role)
    role.permissions = await get_permissions_by_ids(db, permission_ids)
    await db.flush()

    await record_audit(
        db, "role_permissions_updated", ctx,
        target_table="roles", target_id=role.id,
        old_values={"permissions": before["permissions"]},
        new_values={"permissions": sorted(p.action for p in role.permissions)},
        details=f"Permissions of role {role.name} set to {len(role.permissions)} entries",
    )
    return role


async def delete_role(db: AsyncSession, role_id: str, ctx: AuditContext) -> Role:
    """
    Delete a role.

    Refused while any user currently holds it. Permission bindings and
    historical (revoked) assignment rows go with the role.
    """
    role = await get_role(db, role_id)
    on = today()
    assignments = (await db.execute(select(UserRole).where(UserRole.role_id == role.id))).scalars().all()
    if any(a.is_current(on) for a in assignments):
        raise Conflict("Cannot delete role with active assignments. Please revoke it from all users first.")

    snapshot = _role_snapshot(role)
    snapshot["removed_assignments"] = [
        {
            "user_id": a.user_id,
            "valid_from": a.valid_from.isoformat(),
            "valid_to": a.valid_to.isoformat() if a.valid_to else None,
        }
        for a in assignments
    ]
    users = ", ".join(sorted({a.user_id for a in assignments})) or "none"
    await db.execute(delete(UserRole).where(UserRole.role_id == role.id))
    await db.delete(role)
    await db.flush()

    await record_audit(
        db, "role_deleted", ctx,
        target_table="roles", target_id=role_id,
        old_values=snapshot,
        details=f"Role deleted: {snapshot['name']} ({len(assignments)} historical assignments removed, users: {users})",
    )
    return role


async def list_permissions(db: AsyncSession) -> list[Permission]:
    result = await db.execute(select(Permission).order_by(Permission.action))
    return list(result.scalars().all())


async def create_permission(
    db: AsyncSession,
    name: str,
    action: str,
    description: Optional[str],
    ctx: AuditContext,
) -> Permission:
    await ensure_unique(db, Permission.name, name, "name", message="Permission name already exists")
    await ensure_unique(db, Permission.action, action, "action", message="Permission action already exists")
    permission = Permission(name=name, action=action, description=description)
    db.add(permission)
    await flush_unique(db, "action", "Permission action already exists")

    await record_audit(
        db, "permission_created", ctx,
        target_table="permissions", target_id=permission.id,
        new_values={"name": name, "action": action},
        details=f"Permission created: {action}",
    )
    return permission


async def delete_permission(db: AsyncSession, permission_id: str, ctx: AuditContext) -> Permission:
    result = await db.execute(select(Permission).where(Permission.id == permission_id))
    permission = result.scalar_one_or_none()
    if permission is None:
        raise NotFound("Permission")

    await db.execute(delete(role_permissions).where(role_permissions.c.permission_id == permission.id))
    await db.delete(permission)
    await db.flush()

    await record_audit(
        db, "permission_deleted", ctx,
        target_table="permissions", target_id=permission_id,
        old_values={"name": permission.name, "action": permission.action},
        details=f"Permission deleted: {permission.action}",
    )
    return permission
