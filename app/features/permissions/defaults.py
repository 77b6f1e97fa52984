"""
Default permission catalogue, roles, department and administrator account.

seed_defaults() is idempotent: existing rows are left untouched, missing
ones are created.
"""
from datetime import date
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.departments.models import Department
from app.features.permissions.models import ADMIN_ALL, Permission, Role, UserRole
from app.features.users.auth import hash_password
from app.features.users.models import ContractType, Employment, User, UserStatus
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_PERMISSIONS = [
    (ADMIN_ALL, "Full system access"),

    # User management
    ("user:create", "Create users"),
    ("user:read", "View users"),
    ("user:update", "Update users"),
    ("user:delete", "Deactivate or delete users"),
    ("user:block", "Block and unblock users"),

    # Departments
    ("department:create", "Create departments"),
    ("department:read", "View departments"),
    ("department:update", "Update departments"),
    ("department:delete", "Delete departments"),

    # Roles
    ("role:create", "Create roles"),
    ("role:read", "View roles and permissions"),
    ("role:update", "Update roles and their permissions"),
    ("role:delete", "Delete roles"),
    ("role:assign", "Assign and revoke roles"),

    # Audit
    ("audit:read", "View audit logs and login events"),
    ("audit:export", "Export audit data"),
]


DEFAULT_ROLES = {
    "Administrator": {
        "description": "Full system access",
        "permissions": "ALL",
    },
    "HR Manager": {
        "description": "Human Resources Manager",
        "permissions": [
            "user:create", "user:read", "user:update", "user:block",
            "department:read",
            "role:read", "role:assign",
        ],
    },
    "Auditor": {
        "description": "Read-only access to users and the audit trail",
        "permissions": [
            "user:read", "department:read", "role:read",
            "audit:read", "audit:export",
        ],
    },
    "Viewer": {
        "description": "Read-only access to users and departments",
        "permissions": ["user:read", "department:read", "role:read"],
    },
}


DEFAULT_DEPARTMENT = {"name": "IT Department", "code": "IT"}

DEFAULT_ADMIN = {
    "employee_number": "ADM001",
    "name": "System Administrator",
    "email": "admin@company.com",
    "password": "admin123",
}


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create default permissions.

    Returns:
        Dictionary mapping actions to Permission objects
    """
    permissions_map = {}
    for action, description in DEFAULT_PERMISSIONS:
        result = await db.execute(select(Permission).where(Permission.action == action))
        existing = result.scalars().first()
        if existing:
            permissions_map[action] = existing
            continue

        permission = Permission(name=action, action=action, description=description)
        db.add(permission)
        permissions_map[action] = permission
        log.info("Created permission: %s", action)

    await db.flush()
    return permissions_map


async def seed_roles(db: AsyncSession, permissions_map: dict[str, Permission]) -> dict[str, Role]:
    roles_map = {}
    for role_name, role_config in DEFAULT_ROLES.items():
        result = await db.execute(select(Role).where(Role.name == role_name))
        existing = result.scalars().first()
        if existing:
            roles_map[role_name] = existing
            continue

        role = Role(name=role_name, description=role_config["description"])
        if role_config["permissions"] == "ALL":
            role.permissions = list(permissions_map.values())
        else:
            role.permissions = [permissions_map[action] for action in role_config["permissions"]]
        db.add(role)
        roles_map[role_name] = role
        log.info("Created role '%s' with %d permissions", role_name, len(role.permissions))

    await db.flush()
    return roles_map


async def seed_admin(db: AsyncSession, admin_role: Role) -> User:
    result = await db.execute(select(Department).where(Department.code == DEFAULT_DEPARTMENT["code"]))
    department = result.scalars().first()
    if department is None:
        department = Department(**DEFAULT_DEPARTMENT)
        db.add(department)
        await db.flush()
        log.info("Created department %s", department.code)

    result = await db.execute(select(User).where(User.email == DEFAULT_ADMIN["email"]))
    admin = result.scalars().first()
    if admin is None:
        admin = User(
            employee_number=DEFAULT_ADMIN["employee_number"],
            name=DEFAULT_ADMIN["name"],
            email=DEFAULT_ADMIN["email"],
            password_hash=hash_password(DEFAULT_ADMIN["password"]),
            status=UserStatus.ACTIVE.value,
            department_id=department.id,
        )
        admin.employment = [
            Employment(start_date=date(2024, 1, 1), contract_type=ContractType.FULL_TIME.value)
        ]
        db.add(admin)
        await db.flush()
        log.info("Created administrator %s", admin.email)

    result = await db.execute(
        select(UserRole).where(
            UserRole.user_id == admin.id,
            UserRole.role_id == admin_role.id,
            UserRole.valid_to.is_(None),
        )
    )
    if result.scalars().first() is None:
        db.add(UserRole(user_id=admin.id, role_id=admin_role.id, valid_from=date(2024, 1, 1)))
        await db.flush()
        log.info("Granted %s to %s", admin_role.name, admin.email)
    return admin


async def seed_defaults(db: AsyncSession) -> User:
    """Create whatever part of the defaults is missing. The caller commits."""
    permissions_map = await seed_permissions(db)
    roles_map = await seed_roles(db, permissions_map)
    return await seed_admin(db, roles_map["Administrator"])
