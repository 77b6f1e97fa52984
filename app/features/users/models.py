"""
User and Employment models with ULID primary keys.
"""
import enum
from datetime import date
from sqlalchemy import String, ForeignKey, Date
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.departments.models import Department


class UserStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


class ContractType(str, enum.Enum):
    FULL_TIME = "full_time"
    PART_TIME = "part_time"
    CONTRACT = "contract"
    INTERN = "intern"


class User(Base, TimestampMixin):
    """
    Employee account.

    `status` is only changed through app.features.users.lifecycle so every
    transition is guarded and audited.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    employee_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UserStatus.PENDING.value, index=True)

    department_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("departments.id"),
        nullable=True,
        index=True
    )

    # Relationships
    department: Mapped[Department | None] = relationship(
        "Department",
        lazy="selectin"
    )

    employment: Mapped[list["Employment"]] = relationship(
        "Employment",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Employment.start_date",
        lazy="selectin"
    )

    @property
    def current_employment(self) -> "Employment | None":
        """Most recent employment record."""
        return self.employment[-1] if self.employment else None

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, status={self.status})>"


class Employment(Base, TimestampMixin):
    """Employment contract of a user; one current record per user."""
    __tablename__ = "employment"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    contract_type: Mapped[str] = mapped_column(String(20), nullable=False, default=ContractType.FULL_TIME.value)

    user: Mapped["User"] = relationship("User", back_populates="employment")

    def __repr__(self) -> str:
        return f"<Employment(user_id={self.user_id}, start={self.start_date}, end={self.end_date})>"
