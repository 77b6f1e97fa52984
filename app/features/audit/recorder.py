"""
Audit recorder.

Appends AuditLog and LoginEvent rows. Writes never reject their input:
an IP address that is not a valid IPv4/IPv6 literal is stored as NULL.
Rows are flushed into the caller's transaction so a state change and its
audit entry commit or roll back together.
"""
import ipaddress
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit.models import AuditLog, LoginEvent
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class AuditContext:
    """Who is acting and from where; attached to every audit entry of a request."""
    actor_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


SYSTEM = AuditContext()


MAX_IP_LENGTH = 45


def is_valid_ip(value: Optional[str]) -> bool:
    """Plain IPv4 or IPv6 literal; zone-scoped IPv6 (fe80::1%eth0) is rejected."""
    if not value:
        return False
    value = value.strip()
    if len(value) > MAX_IP_LENGTH:
        return False
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return getattr(address, "scope_id", None) is None


def clean_ip(value: Optional[str]) -> Optional[str]:
    return value.strip() if is_valid_ip(value) else None


async def record_audit(
    db: AsyncSession,
    action: str,
    ctx: AuditContext = SYSTEM,
    *,
    target_user_id: Optional[str] = None,
    target_table: Optional[str] = None,
    target_id: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    status: str = "success",
    details: Optional[str] = None,
) -> AuditLog:
    """
    Append an audit entry.

    Args:
        db: Database session (the request's transaction)
        action: Action kind, e.g. "user_blocked", "role_assigned"
        ctx: Actor, IP address and user agent
        target_user_id: User the action was applied to, if any
        target_table: Table of the changed row
        target_id: Id of the changed row
        old_values: Snapshot before the change
        new_values: Snapshot after the change
        status: "success", "failed" or "pending"
        details: Human readable description

    Returns:
        Created AuditLog object
    """
    entry = AuditLog(
        user_id=ctx.actor_id,
        action=action,
        target_user_id=target_user_id,
        target_table=target_table,
        target_id=target_id,
        old_values=old_values,
        new_values=new_values,
        status=status,
        details=details,
        ip_address=clean_ip(ctx.ip_address),
        user_agent=ctx.user_agent or None,
    )
    db.add(entry)
    await db.flush()

    log.info(
        "Audit: actor=%s action=%s target=%s:%s status=%s",
        ctx.actor_id, action, target_table, target_id, status
    )
    return entry


async def record_login_event(
    db: AsyncSession,
    success: bool,
    *,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    failure_reason: Optional[str] = None,
) -> LoginEvent:
    """Append a login event; both successes and failures are recorded."""
    event = LoginEvent(
        user_id=user_id,
        success=success,
        ip_address=clean_ip(ip_address),
        user_agent=user_agent or None,
        failure_reason=failure_reason,
    )
    db.add(event)
    await db.flush()

    if success:
        log.info("Login succeeded: user=%s ip=%s", user_id, event.ip_address)
    else:
        log.warning("Login failed: user=%s ip=%s reason=%s", user_id, event.ip_address, failure_reason)
    return event
