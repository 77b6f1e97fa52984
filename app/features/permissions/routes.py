"""
Permission management API routes.

Provides endpoints for the permission catalogue, roles and role assignments.
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import Conflict, NotFound
from app.features.permissions import assignments, service
from app.features.permissions.dependencies import audit_context, require_permission
from app.features.permissions.evaluator import Principal
from app.features.permissions.models import ADMIN_ALL, Role, UserRole
from app.features.permissions.schemas import (
    AssignRoleToUser,
    PermissionCreate,
    PermissionResponse,
    RoleCreate,
    RolePermissionsUpdate,
    RoleResponse,
    RoleUpdate,
    UserRoleResponse,
)
from app.utils import get_logger, today


log = get_logger(__name__)

roles_router = APIRouter(tags=["roles"])
permissions_router = APIRouter(tags=["permissions"])
user_roles_router = APIRouter(tags=["user-roles"])


def _role_payload(role: Role, user_count: int = 0) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        description=role.description,
        permissions=[PermissionResponse.model_validate(p) for p in role.permissions],
        user_count=user_count,
        created_at=role.created_at,
        updated_at=role.updated_at,
    )


def _assignment_payload(assignment: UserRole) -> UserRoleResponse:
    return UserRoleResponse(
        id=assignment.id,
        user_id=assignment.user_id,
        role_id=assignment.role_id,
        role=assignment.role,
        valid_from=assignment.valid_from,
        valid_to=assignment.valid_to,
        granted_by=assignment.granted_by,
        is_current=assignment.is_current(today()),
    )


# ============================================================================
# Role Routes
# ============================================================================

@roles_router.get("/", response_model=List[RoleResponse])
async def list_roles(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("role:read"))]
):
    """List roles with their permissions and the number of users holding each."""
    return [_role_payload(role, count) for role, count in await service.list_roles(db)]


@roles_router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("role:read"))]
):
    return _role_payload(await service.get_role(db, role_id))


@roles_router.post("/", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    data: RoleCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("role:create"))]
):
    role = await service.create_role(
        db, data.name, data.description, audit_context(request, principal), data.permission_ids
    )
    await db.commit()
    return _role_payload(role)


@roles_router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    data: RoleUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("role:update"))]
):
    role = await service.update_role(
        db, role_id, data.model_dump(exclude_unset=True), audit_context(request, principal)
    )
    await db.commit()
    return _role_payload(role)


@roles_router.put("/{role_id}/permissions", response_model=RoleResponse)
async def set_role_permissions(
    role_id: str,
    data: RolePermissionsUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("role:update"))]
):
    """Replace the permission set bound to a role."""
    role = await service.set_role_permissions(db, role_id, data.permission_ids, audit_context(request, principal))
    await db.commit()
    return _role_payload(role)


@roles_router.delete("/{role_id}")
async def delete_role(
    role_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("role:delete"))]
):
    """Delete a role; refused with 409 while any user currently holds it."""
    role = await service.delete_role(db, role_id, audit_context(request, principal))
    await db.commit()
    return {"message": "Role deleted successfully", "id": role_id, "name": role.name}


# ============================================================================
# Permission Routes
# ============================================================================

@permissions_router.get("/", response_model=List[PermissionResponse])
async def list_permissions(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("role:read"))]
):
    return await service.list_permissions(db)


@permissions_router.post("/", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    data: PermissionCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission(ADMIN_ALL))]
):
    """Create a new permission (administrators only)."""
    permission = await service.create_permission(
        db, data.name, data.action, data.description, audit_context(request, principal)
    )
    await db.commit()
    return permission


@permissions_router.delete("/{permission_id}")
async def delete_permission(
    permission_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission(ADMIN_ALL))]
):
    permission = await service.delete_permission(db, permission_id, audit_context(request, principal))
    await db.commit()
    return {"message": "Permission deleted successfully", "id": permission_id, "action": permission.action}


# ============================================================================
# Assignment Routes
# ============================================================================

@user_roles_router.get("/{user_id}", response_model=List[UserRoleResponse])
async def list_user_roles(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:read"))],
    include_history: bool = False
):
    """Current role assignments of a user, or the full history."""
    rows = await assignments.list_assignments(db, user_id, include_history=include_history)
    return [_assignment_payload(row) for row in rows]


@user_roles_router.post("/", response_model=UserRoleResponse, status_code=status.HTTP_201_CREATED)
async def assign_role(
    data: AssignRoleToUser,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("role:assign"))]
):
    """Grant a role to a user; refused while the user already holds it."""
    if await assignments.get_open_assignment(db, data.user_id, data.role_id) is not None:
        raise Conflict("User already has this role", field="role_id")

    assignment = await assignments.assign(db, data.user_id, data.role_id, audit_context(request, principal))
    await db.commit()
    log.info("Role %s assigned to user %s by %s", data.role_id, data.user_id, principal.user_id)
    return _assignment_payload(assignment)


@user_roles_router.delete("/{user_id}/{role_id}", response_model=UserRoleResponse)
async def revoke_role(
    user_id: str,
    role_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("role:assign"))]
):
    """Revoke a role from a user; the assignment row is kept with valid_to set to today."""
    assignment = await assignments.revoke(db, user_id, role_id, audit_context(request, principal))
    if assignment is None:
        raise NotFound("Active role assignment")
    await db.commit()
    return _assignment_payload(assignment)
