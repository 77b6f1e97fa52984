"""
Department model.
"""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Department(Base, TimestampMixin):
    """
    Organisational unit users belong to.

    Both name and code are unique; codes are stored upper-cased so the
    uniqueness check is case-insensitive.
    """
    __tablename__ = "departments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    code: Mapped[str] = mapped_column(String(10), unique=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Department(id={self.id}, code={self.code!r})>"
