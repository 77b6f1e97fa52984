"""
Read-only aggregations over the audit trail.

Nothing here writes: the activity feed, security alerts and dashboard
figures are recomputed from AuditLog and LoginEvent on every call.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.features.audit.models import AuditLog, LoginEvent
from app.features.departments.models import Department
from app.features.permissions.models import Role
from app.features.users.models import User, UserStatus
from app.utils import utcnow


FAILED_LOGIN_DANGER_THRESHOLD = 10
SUSPICIOUS_IP_THRESHOLD = 5


@dataclass
class AuditFilters:
    """Filters shared by the audit listings and the export; dates are inclusive."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    user_id: Optional[str] = None
    action: Optional[str] = None
    success: Optional[bool] = None


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _audit_query(filters: AuditFilters):
    actor = aliased(User)
    stmt = (
        select(AuditLog, actor.name, actor.email)
        .outerjoin(actor, AuditLog.user_id == actor.id)
    )
    if filters.start_date:
        stmt = stmt.where(AuditLog.created_at >= _day_start(filters.start_date))
    if filters.end_date:
        stmt = stmt.where(AuditLog.created_at < _day_start(filters.end_date + timedelta(days=1)))
    if filters.user_id:
        stmt = stmt.where((AuditLog.user_id == filters.user_id) | (AuditLog.target_user_id == filters.user_id))
    if filters.action:
        stmt = stmt.where(AuditLog.action == filters.action)
    return stmt


def _login_query(filters: AuditFilters):
    stmt = (
        select(LoginEvent, User.name, User.email)
        .outerjoin(User, LoginEvent.user_id == User.id)
    )
    if filters.start_date:
        stmt = stmt.where(LoginEvent.occurred_at >= _day_start(filters.start_date))
    if filters.end_date:
        stmt = stmt.where(LoginEvent.occurred_at < _day_start(filters.end_date + timedelta(days=1)))
    if filters.user_id:
        stmt = stmt.where(LoginEvent.user_id == filters.user_id)
    if filters.success is not None:
        stmt = stmt.where(LoginEvent.success == filters.success)
    return stmt


async def _paginate(db: AsyncSession, stmt, order_by, page: int, page_size: int):
    total = await db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    result = await db.execute(
        stmt.order_by(order_by).offset((page - 1) * page_size).limit(page_size)
    )
    return result.all(), total or 0


def audit_row(entry: AuditLog, actor_name: Optional[str], actor_email: Optional[str]) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "user_name": actor_name,
        "user_email": actor_email,
        "action": entry.action,
        "target_user_id": entry.target_user_id,
        "target_table": entry.target_table,
        "target_id": entry.target_id,
        "old_values": entry.old_values,
        "new_values": entry.new_values,
        "status": entry.status,
        "details": entry.details,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "created_at": entry.created_at,
    }


def login_row(event: LoginEvent, user_name: Optional[str], user_email: Optional[str]) -> Dict[str, Any]:
    return {
        "id": event.id,
        "user_id": event.user_id,
        "user_name": user_name,
        "user_email": user_email,
        "success": event.success,
        "ip_address": event.ip_address,
        "user_agent": event.user_agent,
        "failure_reason": event.failure_reason,
        "occurred_at": event.occurred_at,
    }


async def list_audit_logs(
    db: AsyncSession, filters: AuditFilters, page: int = 1, page_size: int = 50
) -> tuple[list[Dict[str, Any]], int]:
    rows, total = await _paginate(db, _audit_query(filters), AuditLog.created_at.desc(), page, page_size)
    return [audit_row(*row) for row in rows], total


async def list_login_events(
    db: AsyncSession, filters: AuditFilters, page: int = 1, page_size: int = 50
) -> tuple[list[Dict[str, Any]], int]:
    rows, total = await _paginate(db, _login_query(filters), LoginEvent.occurred_at.desc(), page, page_size)
    return [login_row(*row) for row in rows], total


async def combined_entries(db: AsyncSession, filters: AuditFilters) -> list[Dict[str, Any]]:
    """
    Audit entries and login events in one reverse-chronological list.

    An `action` filter only applies to audit entries, so login events are
    left out when it is set.
    """
    entries: list[Dict[str, Any]] = []

    result = await db.execute(_audit_query(filters).order_by(AuditLog.created_at.desc()))
    for entry, name, email in result.all():
        entries.append({
            "type": "audit",
            "timestamp": entry.created_at,
            "user": name or "System",
            "action": entry.action,
            "target": f"{entry.target_table}:{entry.target_id}" if entry.target_table else "",
            "status": entry.status,
            "details": entry.details or "",
            "ip_address": entry.ip_address or "",
            "user_agent": entry.user_agent or "",
        })

    if not filters.action:
        result = await db.execute(_login_query(filters).order_by(LoginEvent.occurred_at.desc()))
        for event, name, email in result.all():
            entries.append({
                "type": "login",
                "timestamp": event.occurred_at,
                "user": name or "Unknown User",
                "action": "login_success" if event.success else "login_failed",
                "target": email or "",
                "status": "success" if event.success else "failed",
                "details": event.failure_reason or "",
                "ip_address": event.ip_address or "",
                "user_agent": event.user_agent or "",
            })

    entries.sort(key=lambda e: e["timestamp"], reverse=True)
    return entries


async def get_recent_activity(db: AsyncSession, limit: int = 10) -> list[Dict[str, Any]]:
    """Latest audit entries and login events merged newest first, each tagged with its origin."""
    actor = aliased(User)
    audit_result = await db.execute(
        select(AuditLog, actor.name)
        .outerjoin(actor, AuditLog.user_id == actor.id)
        .order_by(AuditLog.created_at.desc())
        .limit(limit)
    )
    login_result = await db.execute(
        select(LoginEvent, User.name, User.email)
        .outerjoin(User, LoginEvent.user_id == User.id)
        .order_by(LoginEvent.occurred_at.desc())
        .limit(limit)
    )

    combined = [
        {
            "id": f"audit_{entry.id}",
            "action": entry.action,
            "user": name or "System",
            "target": entry.target_user_id,
            "timestamp": entry.created_at,
            "status": "success" if entry.status == "success" else "failed",
            "type": "audit",
        }
        for entry, name in audit_result.all()
    ] + [
        {
            "id": f"login_{event.id}",
            "action": "Login Success" if event.success else "Login Failed",
            "user": name or "Unknown User",
            "target": email,
            "timestamp": event.occurred_at,
            "status": "success" if event.success else "failed",
            "type": "login",
        }
        for event, name, email in login_result.all()
    ]
    combined.sort(key=lambda item: item["timestamp"], reverse=True)
    return combined[:limit]


async def get_security_alerts(db: AsyncSession, now: Optional[datetime] = None) -> list[Dict[str, Any]]:
    """
    Threshold alerts over the last hour (failed logins) and the last day
    (blocked users, IPs with repeated failures). Returns a single
    `all_clear` alert when nothing triggers.
    """
    now = now or utcnow()
    one_hour_ago = now - timedelta(hours=1)
    one_day_ago = now - timedelta(days=1)

    failed_logins = await db.scalar(
        select(func.count(LoginEvent.id))
        .where(LoginEvent.success.is_(False), LoginEvent.occurred_at >= one_hour_ago)
    ) or 0

    blocked_users = await db.scalar(
        select(func.count(AuditLog.id))
        .where(AuditLog.action == "user_blocked", AuditLog.created_at >= one_day_ago)
    ) or 0

    suspicious = await db.execute(
        select(LoginEvent.ip_address, func.count(LoginEvent.id))
        .where(
            LoginEvent.success.is_(False),
            LoginEvent.occurred_at >= one_day_ago,
            LoginEvent.ip_address.is_not(None),
        )
        .group_by(LoginEvent.ip_address)
        .having(func.count(LoginEvent.id) > SUSPICIOUS_IP_THRESHOLD)
    )
    suspicious_ips = [ip for ip, _ in suspicious.all()]

    alerts = []
    if failed_logins > 0:
        danger = failed_logins > FAILED_LOGIN_DANGER_THRESHOLD
        alerts.append({
            "id": "failed_logins",
            "type": "danger" if danger else "warning",
            "title": f"{failed_logins} failed login attempts in the last hour",
            "description": "Possible security threat detected" if danger else "Monitor for potential security threats",
            "timestamp": now,
        })

    if blocked_users > 0:
        alerts.append({
            "id": "blocked_users",
            "type": "warning",
            "title": f"{blocked_users} users blocked in the last 24 hours",
            "description": "Review blocked user activities",
            "timestamp": now,
        })

    if suspicious_ips:
        alerts.append({
            "id": "suspicious_ips",
            "type": "danger",
            "title": f"{len(suspicious_ips)} IP addresses with excessive failed login attempts",
            "description": "Potential brute force attack detected",
            "ip_addresses": suspicious_ips,
            "timestamp": now,
        })

    if not alerts:
        alerts.append({
            "id": "all_clear",
            "type": "success",
            "title": "All systems operational",
            "description": "Security monitoring active",
            "timestamp": now,
        })
    return alerts


async def get_dashboard_stats(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    thirty_days_ago = now - timedelta(days=30)

    by_status = dict((await db.execute(
        select(User.status, func.count(User.id)).group_by(User.status)
    )).all())

    async def count(stmt) -> int:
        return await db.scalar(stmt) or 0

    return {
        "total_users": sum(by_status.values()),
        "active_users": by_status.get(UserStatus.ACTIVE.value, 0),
        "pending_users": by_status.get(UserStatus.PENDING.value, 0),
        "blocked_users": by_status.get(UserStatus.BLOCKED.value, 0),
        "inactive_users": by_status.get(UserStatus.INACTIVE.value, 0),
        "total_departments": await count(select(func.count(Department.id))),
        "total_roles": await count(select(func.count(Role.id))),
        "recent_logins": await count(
            select(func.count(LoginEvent.id))
            .where(LoginEvent.success.is_(True), LoginEvent.occurred_at >= thirty_days_ago)
        ),
        "failed_logins": await count(
            select(func.count(LoginEvent.id))
            .where(LoginEvent.success.is_(False), LoginEvent.occurred_at >= thirty_days_ago)
        ),
    }
