"""
Pydantic schemas for audit listings and dashboard aggregates.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    action: str
    target_user_id: Optional[str] = None
    target_table: Optional[str] = None
    target_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    status: str
    details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class LoginEventResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    success: bool
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    failure_reason: Optional[str] = None
    occurred_at: datetime


class AuditLogListResponse(BaseModel):
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int


class LoginEventListResponse(BaseModel):
    items: List[LoginEventResponse]
    total: int
    page: int
    page_size: int


class ActivityItem(BaseModel):
    id: str
    action: str
    user: str
    target: Optional[str] = None
    timestamp: datetime
    status: str
    type: str


class SecurityAlert(BaseModel):
    id: str
    type: str
    title: str
    description: str
    timestamp: datetime
    ip_addresses: Optional[List[str]] = None


class DashboardStats(BaseModel):
    total_users: int
    active_users: int
    pending_users: int
    blocked_users: int
    inactive_users: int
    total_departments: int
    total_roles: int
    recent_logins: int
    failed_logins: int
