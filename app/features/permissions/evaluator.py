"""
Access control evaluator.

Computes a principal's effective permissions from its current role
assignments and answers permission/role queries. Read-only: nothing here
writes to the database.
"""
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import ADMIN_ALL, UserRole
from app.features.users.models import User
from app.utils import today


@dataclass(frozen=True)
class GrantedRole:
    id: str
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class GrantedPermission:
    id: str
    name: str
    action: str


@dataclass(frozen=True)
class Principal:
    """Authenticated user context used for every permission check of a request."""
    user_id: str
    name: str
    email: str
    employee_number: str
    status: str
    department_id: Optional[str] = None
    session_id: Optional[str] = None
    roles: tuple[GrantedRole, ...] = ()
    permissions: tuple[GrantedPermission, ...] = ()
    authenticated: bool = True

    @property
    def actions(self) -> frozenset[str]:
        return frozenset(p.action for p in self.permissions)

    @property
    def role_names(self) -> list[str]:
        return [r.name for r in self.roles]

    def snapshot(self) -> dict:
        """Serializable form handed to the client after login and on /auth/me."""
        return {
            "user": {
                "id": self.user_id,
                "name": self.name,
                "email": self.email,
                "employee_number": self.employee_number,
                "status": self.status,
                "department_id": self.department_id,
            },
            "roles": [{"id": r.id, "name": r.name, "description": r.description} for r in self.roles],
            "permissions": [{"id": p.id, "name": p.name, "action": p.action} for p in self.permissions],
        }


async def current_assignments(db: AsyncSession, user_id: str, on: Optional[date] = None) -> list[UserRole]:
    """Assignments of the user that are valid on the given day (default: today)."""
    on = on or today()
    result = await db.execute(
        select(UserRole).where(UserRole.user_id == user_id, UserRole.valid_from <= on)
    )
    return [a for a in result.scalars().all() if a.is_current(on)]


async def load_principal(
    db: AsyncSession,
    user: User,
    session_id: Optional[str] = None,
    on: Optional[date] = None,
) -> Principal:
    """
    Build the principal for a user.

    The permission set is the union of the permissions of every role the
    user currently holds.
    """
    roles: dict[str, GrantedRole] = {}
    permissions: dict[str, GrantedPermission] = {}

    for assignment in await current_assignments(db, user.id, on):
        role = assignment.role
        roles[role.id] = GrantedRole(id=role.id, name=role.name, description=role.description)
        for perm in role.permissions:
            permissions[perm.action] = GrantedPermission(id=perm.id, name=perm.name, action=perm.action)

    return Principal(
        user_id=user.id,
        name=user.name,
        email=user.email,
        employee_number=user.employee_number,
        status=user.status,
        department_id=user.department_id,
        session_id=session_id,
        roles=tuple(sorted(roles.values(), key=lambda r: r.name)),
        permissions=tuple(sorted(permissions.values(), key=lambda p: p.action)),
    )


def has_permission(principal: Optional[Principal], action: str) -> bool:
    """
    True iff the principal is authenticated and holds `admin:all` or a
    permission whose action equals `action` exactly.
    """
    if principal is None or not principal.authenticated:
        return False
    actions = principal.actions
    return ADMIN_ALL in actions or action in actions


def has_role(principal: Optional[Principal], role_name: str) -> bool:
    """Case-insensitive exact match against the principal's current roles."""
    if principal is None or not principal.authenticated:
        return False
    wanted = role_name.lower()
    return any(r.name.lower() == wanted for r in principal.roles)
