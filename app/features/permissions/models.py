"""
Permission, Role, and UserRole models for role-based access control.

This module implements:
- Permissions identified by a unique action string (e.g. "user:read")
- Roles bundling permissions (many-to-many)
- Temporal role assignments (UserRole) that are revoked, never deleted
"""
from datetime import date
from sqlalchemy import String, ForeignKey, Table, Column, Text, Date
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


# Superuser wildcard recognised by the evaluator
ADMIN_ALL = "admin:all"


# Role-Permission relationship
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class Permission(Base, TimestampMixin):
    """
    An atomic capability.

    Examples:
    - action="user:create"
    - action="audit:export"
    - action="admin:all" (grants everything)
    """
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    action: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, action={self.action!r})>"


class Role(Base, TimestampMixin):
    """
    Named bundle of permissions assignable to users.

    Examples: Administrator, HR Manager, Auditor, Viewer
    """
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        order_by="Permission.action",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"


class UserRole(Base, TimestampMixin):
    """
    Temporal grant of a role to a user.

    For a given (user, role) pair at most one row has valid_to = NULL.
    Revocation sets valid_to instead of deleting the row.
    """
    __tablename__ = "user_roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    granted_by: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    role: Mapped["Role"] = relationship("Role", lazy="selectin")

    def is_current(self, on: date) -> bool:
        """Valid on the given day: started, and not revoked on or before it."""
        return self.valid_from <= on and (self.valid_to is None or self.valid_to > on)

    def __repr__(self) -> str:
        return f"<UserRole(user_id={self.user_id}, role_id={self.role_id}, valid_to={self.valid_to})>"
