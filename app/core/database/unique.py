"""
Helpers for unique-key handling.
"""
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DuplicateError


async def ensure_unique(
    db: AsyncSession,
    column: Any,
    value: str,
    field: str,
    exclude_id: str | None = None,
    message: str | None = None,
) -> None:
    """
    Raise DuplicateError when another row already holds `value` in `column`
    (compared case-insensitively).
    """
    model = column.class_
    stmt = select(model.id).where(func.lower(column) == value.lower())
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    result = await db.execute(stmt.limit(1))
    if result.first() is not None:
        raise DuplicateError(field, message)


async def flush_unique(db: AsyncSession, field: str, message: str | None = None) -> None:
    """Flush, turning a unique constraint violation into DuplicateError."""
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateError(field, message) from exc
