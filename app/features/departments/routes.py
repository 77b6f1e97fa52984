"""
Department routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.departments import service
from app.features.departments.schemas import (
    DepartmentCreate,
    DepartmentResponse,
    DepartmentUpdate,
    DepartmentUserCount,
)
from app.features.permissions.dependencies import audit_context, require_permission
from app.features.permissions.evaluator import Principal


router = APIRouter(tags=["departments"])


@router.get("/", response_model=list[DepartmentResponse])
async def list_departments(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("department:read"))]
):
    return await service.list_departments(db)


@router.get("/user-counts", response_model=list[DepartmentUserCount])
async def department_user_counts(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("department:read"))]
):
    """Number of users in each department."""
    return await service.user_counts(db)


@router.get("/{department_id}", response_model=DepartmentResponse)
async def get_department(
    department_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("department:read"))]
):
    return await service.get_department(db, department_id)


@router.post("/", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(
    data: DepartmentCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("department:create"))]
):
    department = await service.create_department(db, data, audit_context(request, principal))
    await db.commit()
    return department


@router.put("/{department_id}", response_model=DepartmentResponse)
async def update_department(
    department_id: str,
    data: DepartmentUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("department:update"))]
):
    department = await service.update_department(db, department_id, data, audit_context(request, principal))
    await db.commit()
    return department


@router.delete("/{department_id}")
async def delete_department(
    department_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("department:delete"))]
):
    """Delete a department; refused while users are assigned to it."""
    department = await service.delete_department(db, department_id, audit_context(request, principal))
    await db.commit()
    return {"message": "Department deleted successfully", "id": department.id}
