"""
Audit trail, export and dashboard routes.
"""
from datetime import date
from typing import Annotated, List, Literal, Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import ValidationFailed
from app.features.audit import export, reports
from app.features.audit.reports import AuditFilters
from app.features.audit.schemas import (
    ActivityItem,
    AuditLogListResponse,
    DashboardStats,
    LoginEventListResponse,
    SecurityAlert,
)
from app.features.permissions.dependencies import require_permission
from app.features.permissions.evaluator import Principal
from app.features.users.lifecycle import activate_pending_users
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["audit"])


def get_filters(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    success: Optional[bool] = None,
) -> AuditFilters:
    if start_date and end_date and end_date < start_date:
        raise ValidationFailed("End date must be on or after the start date", field="end_date")
    return AuditFilters(start_date=start_date, end_date=end_date, user_id=user_id, action=action, success=success)


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    filters: Annotated[AuditFilters, Depends(get_filters)],
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("audit:read"))],
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500)
):
    items, total = await reports.list_audit_logs(db, filters, page, page_size)
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/login-events", response_model=LoginEventListResponse)
async def list_login_events(
    filters: Annotated[AuditFilters, Depends(get_filters)],
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("audit:read"))],
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500)
):
    items, total = await reports.list_login_events(db, filters, page, page_size)
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/audit-export")
async def export_audit(
    filters: Annotated[AuditFilters, Depends(get_filters)],
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("audit:export"))],
    format: Literal["csv", "xlsx"] = "csv"
):
    """Download audit entries and login events matching the filters."""
    entries = await reports.combined_entries(db, filters)
    content, media_type, filename = export.render(entries, format)
    log.info("Audit export by %s: %d rows as %s", principal.user_id, len(entries), format)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/dashboard-stats", response_model=DashboardStats)
async def dashboard_stats(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("user:read"))]
):
    await activate_pending_users(db)
    await db.commit()
    return await reports.get_dashboard_stats(db)


@router.get("/recent-activity", response_model=List[ActivityItem])
async def recent_activity(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("audit:read"))],
    limit: int = Query(10, ge=1, le=100)
):
    return await reports.get_recent_activity(db, limit)


@router.get("/security-alerts", response_model=List[SecurityAlert])
async def security_alerts(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("audit:read"))]
):
    return await reports.get_security_alerts(db)
