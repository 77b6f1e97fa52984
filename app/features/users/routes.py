"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.dependencies import audit_context, require_permission
from app.features.permissions.evaluator import Principal
from app.features.users import lifecycle, service
from app.features.users.schemas import BlockRequest, UserCreate, UserDeleted, UserResponse, UserUpdate


router = APIRouter(tags=["users"])


@router.get("/", response_model=list[UserResponse])
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:read"))]
):
    """List all users with their current roles. Pending users whose start date arrived are activated first."""
    await lifecycle.activate_pending_users(db)
    await db.commit()
    users = await service.list_users(db)
    return [await service.user_response(db, user) for user in users]


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:read"))]
):
    user = await lifecycle.load_user(db, user_id)
    return await service.user_response(db, user)


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:create"))]
):
    user = await service.create_user(db, data, audit_context(request, principal))
    await db.commit()
    return await service.user_response(db, user)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    data: UserUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:update"))]
):
    """Update profile fields; `status` runs the lifecycle transition (`reason` required for blocking)."""
    user = await service.update_user(db, user_id, data, audit_context(request, principal))
    await db.commit()
    return await service.user_response(db, user)


@router.post("/{user_id}/block", response_model=UserResponse)
async def block_user(
    user_id: str,
    data: BlockRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:block"))]
):
    user = await lifecycle.block_user(db, user_id, data.reason, audit_context(request, principal))
    await db.commit()
    return await service.user_response(db, user)


@router.post("/{user_id}/unblock", response_model=UserResponse)
async def unblock_user(
    user_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:block"))]
):
    user = await lifecycle.unblock_user(db, user_id, audit_context(request, principal))
    await db.commit()
    return await service.user_response(db, user)


@router.delete("/{user_id}", response_model=UserDeleted)
async def delete_user(
    user_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:delete"))],
    permanent: bool = False
):
    """Deactivate a user, or remove it with its role assignments when `permanent` is set."""
    ctx = audit_context(request, principal)
    if permanent:
        result = await lifecycle.permanently_delete_user(db, user_id, ctx)
        await db.commit()
        return UserDeleted(
            message="User permanently deleted successfully",
            id=user_id,
            permanent=True,
            roles_removed=result["roles_removed"],
        )

    await lifecycle.deactivate_user(db, user_id, ctx)
    await db.commit()
    return UserDeleted(message="User deactivated successfully", id=user_id, permanent=False)
