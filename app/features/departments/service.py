"""
Department management.
"""
from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.unique import ensure_unique, flush_unique
from app.core.errors import Conflict, NotFound
from app.features.audit.recorder import AuditContext, record_audit
from app.features.departments.models import Department
from app.features.departments.schemas import DepartmentCreate, DepartmentUpdate
from app.features.users.models import User


CODE_TAKEN = "Department code already exists"
NAME_TAKEN = "Department name already exists"
HAS_USERS = "Cannot delete department with assigned users. Please reassign or remove users first."


def _snapshot(department: Department) -> Dict[str, Any]:
    return {"name": department.name, "code": department.code}


async def get_department(db: AsyncSession, department_id: str) -> Department:
    department = await db.get(Department, department_id)
    if department is None:
        raise NotFound("Department")
    return department


async def list_departments(db: AsyncSession) -> list[Department]:
    result = await db.execute(select(Department).order_by(Department.name))
    return list(result.scalars().all())


async def user_counts(db: AsyncSession) -> list[Dict[str, Any]]:
    """Number of users per department; users without one are grouped under None."""
    result = await db.execute(
        select(User.department_id, Department.name, func.count(User.id))
        .select_from(User)
        .outerjoin(Department, User.department_id == Department.id)
        .group_by(User.department_id, Department.name)
        .order_by(Department.name)
    )
    return [
        {"department_id": dept_id, "department_name": name, "count": count}
        for dept_id, name, count in result.all()
    ]


async def create_department(db: AsyncSession, data: DepartmentCreate, ctx: AuditContext) -> Department:
    """
    Raises:
        DuplicateError: code (case-insensitive) or name already taken
    """
    await ensure_unique(db, Department.code, data.code, "code", message=CODE_TAKEN)
    await ensure_unique(db, Department.name, data.name, "name", message=NAME_TAKEN)

    department = Department(name=data.name, code=data.code)
    db.add(department)
    await flush_unique(db, "code", CODE_TAKEN)

    await record_audit(
        db, "department_created", ctx,
        target_table="departments",
        target_id=department.id,
        new_values=_snapshot(department),
        details=f"Department created: {department.name} ({department.code})",
    )
    return department


async def update_department(
    db: AsyncSession, department_id: str, data: DepartmentUpdate, ctx: AuditContext
) -> Department:
    department = await get_department(db, department_id)
    before = _snapshot(department)

    if data.code is not None and data.code != department.code:
        await ensure_unique(db, Department.code, data.code, "code", exclude_id=department.id, message=CODE_TAKEN)
        department.code = data.code
    if data.name is not None and data.name != department.name:
        await ensure_unique(db, Department.name, data.name, "name", exclude_id=department.id, message=NAME_TAKEN)
        department.name = data.name

    after = _snapshot(department)
    if after == before:
        return department

    await flush_unique(db, "code", CODE_TAKEN)
    await record_audit(
        db, "department_updated", ctx,
        target_table="departments",
        target_id=department.id,
        old_values=before,
        new_values=after,
        details=f"Department updated: {department.name}",
    )
    return department


async def delete_department(db: AsyncSession, department_id: str, ctx: AuditContext) -> Department:
    """
    Raises:
        Conflict: users still reference the department
    """
    department = await get_department(db, department_id)

    assigned = await db.scalar(select(func.count(User.id)).where(User.department_id == department.id))
    if assigned:
        raise Conflict(HAS_USERS)

    await record_audit(
        db, "department_deleted", ctx,
        target_table="departments",
        target_id=department.id,
        old_values=_snapshot(department),
        details=f"Department deleted: {department.name} ({department.code})",
    )
    await db.delete(department)
    await db.flush()
    return department
