"""
User account management: creation, profile updates and listing.

Status changes are delegated to app.features.users.lifecycle.
"""
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.unique import ensure_unique, flush_unique
from app.core.errors import NotFound, ValidationFailed
from app.features.audit.recorder import AuditContext, record_audit
from app.features.departments.models import Department
from app.features.permissions.evaluator import current_assignments
from app.features.users import lifecycle
from app.features.users.auth import hash_password
from app.features.users.models import Employment, User
from app.features.users.schemas import UserCreate, UserUpdate
from app.utils import get_logger


log = get_logger(__name__)

EMAIL_TAKEN = "User with this email already exists"
EMPLOYEE_NUMBER_TAKEN = "Employee number already exists"

EMPLOYMENT_FIELDS = ("start_date", "end_date", "contract_type")


async def _get_department(db: AsyncSession, department_id: Optional[str]) -> Optional[Department]:
    if department_id is None:
        return None
    department = await db.get(Department, department_id)
    if department is None:
        raise NotFound("Department")
    return department


async def user_response(db: AsyncSession, user: User) -> Dict[str, Any]:
    """Response payload of a user with its department, current employment and current roles."""
    employment = user.current_employment
    assignments = await current_assignments(db, user.id)
    return {
        "id": user.id,
        "employee_number": user.employee_number,
        "name": user.name,
        "email": user.email,
        "status": user.status,
        "department_id": user.department_id,
        "department": user.department,
        "employment": employment,
        "roles": sorted(
            ({"id": a.role.id, "name": a.role.name} for a in assignments),
            key=lambda r: r["name"],
        ),
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.name))
    return list(result.scalars().all())


async def create_user(db: AsyncSession, data: UserCreate, ctx: AuditContext) -> User:
    """
    Create a user and its employment record.

    Raises:
        DuplicateError: email or employee number already taken
        NotFound: department does not exist
    """
    await ensure_unique(db, User.email, data.email, "email", message=EMAIL_TAKEN)
    await ensure_unique(db, User.employee_number, data.employee_number, "employee_number",
                        message=EMPLOYEE_NUMBER_TAKEN)
    department = await _get_department(db, data.department_id)

    user = User(
        employee_number=data.employee_number,
        name=data.name,
        email=data.email,
        password_hash=hash_password(data.password),
        status=data.status.value,
        department_id=department.id if department else None,
    )
    user.department = department
    user.employment = [
        Employment(
            start_date=data.start_date,
            end_date=data.end_date,
            contract_type=data.contract_type.value,
        )
    ]
    db.add(user)
    await flush_unique(db, "email", EMAIL_TAKEN)

    await record_audit(
        db, "user_created", ctx,
        target_user_id=user.id,
        target_table="users",
        target_id=user.id,
        new_values=lifecycle.user_snapshot(user),
        details=f"User created: {user.name} ({user.email})",
    )
    log.info("User %s created by %s", user.id, ctx.actor_id)
    return user


async def update_user(db: AsyncSession, user_id: str, data: UserUpdate, ctx: AuditContext) -> User:
    """
    Apply a partial update.

    Profile fields are written first with one user_updated entry; a status
    change then runs the matching lifecycle transition with its own entry.
    """
    changes = data.model_dump(exclude_unset=True)
    new_status = changes.pop("status", None)
    reason = changes.pop("reason", None)
    password = changes.pop("password", None)

    user = await lifecycle.load_user(db, user_id)
    before = lifecycle.user_snapshot(user)

    if changes.get("email") is not None and changes["email"] != user.email:
        await ensure_unique(db, User.email, changes["email"], "email", exclude_id=user.id, message=EMAIL_TAKEN)
        user.email = changes["email"]
    if changes.get("employee_number") is not None and changes["employee_number"] != user.employee_number:
        await ensure_unique(db, User.employee_number, changes["employee_number"], "employee_number",
                            exclude_id=user.id, message=EMPLOYEE_NUMBER_TAKEN)
        user.employee_number = changes["employee_number"]
    if changes.get("name") is not None:
        user.name = changes["name"].strip()
    if "department_id" in changes:
        department = await _get_department(db, changes["department_id"])
        user.department_id = department.id if department else None
        user.department = department
    if password is not None:
        user.password_hash = hash_password(password)

    employment_changes = {k: changes[k] for k in EMPLOYMENT_FIELDS if k in changes}
    if employment_changes:
        _apply_employment(user, employment_changes)

    after = lifecycle.user_snapshot(user)
    if after != before or password is not None:
        await flush_unique(db, "email", EMAIL_TAKEN)
        new_values = dict(after)
        if password is not None:
            new_values["password_changed"] = True
        await record_audit(
            db, "user_updated", ctx,
            target_user_id=user.id,
            target_table="users",
            target_id=user.id,
            old_values=before,
            new_values=new_values,
            details=f"User updated: {user.name}",
        )

    if new_status is not None:
        user = await lifecycle.change_status(db, user.id, new_status, ctx, reason=reason)

    return user


def _apply_employment(user: User, changes: Dict[str, Any]) -> None:
    employment = user.current_employment
    if employment is None:
        if "start_date" not in changes or changes["start_date"] is None:
            raise ValidationFailed("Start date is required", field="start_date")
        employment = Employment(start_date=changes["start_date"])
        user.employment.append(employment)

    if changes.get("start_date") is not None:
        employment.start_date = changes["start_date"]
    if "end_date" in changes:
        employment.end_date = changes["end_date"]
    if changes.get("contract_type") is not None:
        employment.contract_type = changes["contract_type"].value

    if employment.end_date is not None and employment.end_date < employment.start_date:
        raise ValidationFailed("End date must be on or after the start date", field="end_date")
