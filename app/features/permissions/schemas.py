"""
Pydantic schemas for permission management.

Request and response models for permissions, roles and role assignments.
"""
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique permission name")
    action: str = Field(
        ...,
        min_length=3,
        max_length=50,
        pattern=r"^[a-z_]+:[a-z_]+$",
        description="Action string of the form <resource>:<verb>, e.g. 'user:read'"
    )
    description: Optional[str] = Field(None, max_length=255, description="Permission description")


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission."""

    @field_validator('action', mode='before')
    @classmethod
    def action_lowercase(cls, v: str) -> str:
        """Ensure action is lowercase."""
        return v.strip().lower() if isinstance(v, str) else v


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

def _strip_role_name(v: str) -> str:
    v = v.strip()
    if len(v) < 2:
        raise ValueError('Role name must be at least 2 characters')
    return v


class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=2, max_length=50, description="Unique role name")
    description: Optional[str] = Field(None, max_length=255, description="Role description")

    @field_validator('name')
    @classmethod
    def name_stripped(cls, v: str) -> str:
        return _strip_role_name(v)


class RoleCreate(RoleBase):
    """Schema for creating a new role, optionally with its permissions."""
    permission_ids: List[str] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    """Schema for updating a role."""
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=255)
    permission_ids: Optional[List[str]] = None

    @field_validator('name')
    @classmethod
    def name_stripped(cls, v: Optional[str]) -> Optional[str]:
        return _strip_role_name(v) if v is not None else v


class RolePermissionsUpdate(BaseModel):
    """Replace the permission set of a role."""
    permission_ids: List[str]


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    permissions: List[PermissionResponse] = []
    user_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignRoleToUser(BaseModel):
    """Schema for assigning a role to a user."""
    user_id: str
    role_id: str


class RoleSummary(BaseModel):
    id: str
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserRoleResponse(BaseModel):
    """One assignment row; valid_to is null while the grant is open."""
    id: str
    user_id: str
    role_id: str
    role: RoleSummary
    valid_from: date
    valid_to: Optional[date] = None
    granted_by: Optional[str] = None
    is_current: bool = True

    model_config = ConfigDict(from_attributes=True)
