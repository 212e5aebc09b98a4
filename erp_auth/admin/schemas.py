"""
ERP Access Core - RBAC Administration Schemas

Pydantic models for role, permission and grant management endpoints.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, validator


class RoleCreateRequest(BaseModel):
    """Request body for POST /admin/rbac/roles."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    level: int = Field(..., ge=0)
    can_manage_roles: bool = False

    @validator("name")
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Role name is required")
        return v


class RoleUpdateRequest(BaseModel):
    """Request body for PUT /admin/rbac/roles/{id}. Only sent fields change."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    level: Optional[int] = Field(default=None, ge=0)
    can_manage_roles: Optional[bool] = None


class RoleResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    parent_id: Optional[UUID]
    level: int
    is_system: bool
    is_super_role: bool
    can_manage_roles: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PermissionCreateRequest(BaseModel):
    """Request body for POST /admin/rbac/permissions."""
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    module: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=100)
    conditions: Optional[dict] = None


class PermissionUpdateRequest(BaseModel):
    """Request body for PUT /admin/rbac/permissions/{id}."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    description: Optional[str] = None
    module: Optional[str] = Field(default=None, min_length=1, max_length=100)
    action: Optional[str] = Field(default=None, min_length=1, max_length=100)
    conditions: Optional[dict] = None


class PermissionResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    module: str
    action: str
    conditions: Optional[dict]
    is_system: bool

    class Config:
        from_attributes = True


class GrantSpec(BaseModel):
    """One entry of a role's permission set."""
    permission_id: UUID
    granted: bool = True
    conditions: Optional[dict] = None


class RolePermissionsRequest(BaseModel):
    """Request body for PUT /admin/rbac/roles/{id}/permissions."""
    permissions: List[GrantSpec] = Field(default_factory=list)


class RolePermissionResponse(BaseModel):
    permission_id: UUID
    permission_name: str
    module: str
    action: str
    granted: bool
    conditions: Optional[dict] = None


class MessageResponse(BaseModel):
    message: str
