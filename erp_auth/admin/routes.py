"""
ERP Access Core - RBAC Administration Routes

Endpoints for managing the role graph and permission catalog:
- GET/POST   /admin/rbac/roles
- PUT/DELETE /admin/rbac/roles/{role_id}
- GET/PUT    /admin/rbac/roles/{role_id}/permissions
- GET/POST   /admin/rbac/permissions
- PUT        /admin/rbac/permissions/{permission_id}

All routes require the super role, a role-manager role, or the
`manage_roles` permission.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlmodel import Session as DBSession

from erp_auth.admin import service
from erp_auth.admin.schemas import (
    MessageResponse,
    PermissionCreateRequest,
    PermissionResponse,
    PermissionUpdateRequest,
    RoleCreateRequest,
    RolePermissionResponse,
    RolePermissionsRequest,
    RoleResponse,
    RoleUpdateRequest,
)
from erp_auth.auth.dependencies import get_db, require_role_manager
from erp_auth.auth.service import AuthContext


router = APIRouter(prefix="/admin/rbac", tags=["rbac-admin"])


def _role_permission_items(rows) -> List[RolePermissionResponse]:
    return [
        RolePermissionResponse(
            permission_id=permission.id,
            permission_name=permission.name,
            module=permission.module,
            action=permission.action,
            granted=grant.granted,
            conditions=grant.conditions,
        )
        for grant, permission in rows
    ]


# =============================================================================
# Roles
# =============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    auth: AuthContext = Depends(require_role_manager),
    db: DBSession = Depends(get_db),
):
    return await service.list_roles(db)


@router.post("/roles", response_model=RoleResponse, status_code=201)
async def create_role(
    body: RoleCreateRequest,
    auth: AuthContext = Depends(require_role_manager),
    db: DBSession = Depends(get_db),
):
    return await service.create_role(
        db,
        auth.user.id,
        name=body.name,
        level=body.level,
        description=body.description,
        parent_id=body.parent_id,
        can_manage_roles=body.can_manage_roles,
    )


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: UUID,
    body: RoleUpdateRequest,
    auth: AuthContext = Depends(require_role_manager),
    db: DBSession = Depends(get_db),
):
    """Only fields present in the request body are changed."""
    changes = body.dict(exclude_unset=True)
    return await service.update_role(db, auth.user.id, role_id, **changes)


@router.delete("/roles/{role_id}", response_model=MessageResponse)
async def delete_role(
    role_id: UUID,
    auth: AuthContext = Depends(require_role_manager),
    db: DBSession = Depends(get_db),
):
    await service.delete_role(db, role_id)
    return MessageResponse(message="Role deleted successfully")


@router.get("/roles/{role_id}/permissions", response_model=List[RolePermissionResponse])
async def get_role_permissions(
    role_id: UUID,
    auth: AuthContext = Depends(require_role_manager),
    db: DBSession = Depends(get_db),
):
    return _role_permission_items(await service.get_role_permissions(db, role_id))


@router.put("/roles/{role_id}/permissions", response_model=List[RolePermissionResponse])
async def set_role_permissions(
    role_id: UUID,
    body: RolePermissionsRequest,
    auth: AuthContext = Depends(require_role_manager),
    db: DBSession = Depends(get_db),
):
    """Replace the role's whole permission set."""
    grants = [
        service.PermissionGrant(item.permission_id, item.granted, item.conditions)
        for item in body.permissions
    ]
    await service.set_role_permissions(db, auth.user.id, role_id, grants)
    return _role_permission_items(await service.get_role_permissions(db, role_id))


# =============================================================================
# Permissions
# =============================================================================

@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    auth: AuthContext = Depends(require_role_manager),
    db: DBSession = Depends(get_db),
):
    return await service.list_permissions(db)


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
async def create_permission(
    body: PermissionCreateRequest,
    auth: AuthContext = Depends(require_role_manager),
    db: DBSession = Depends(get_db),
):
    return await service.create_permission(
        db,
        auth.user.id,
        name=body.name,
        module=body.module,
        action=body.action,
        description=body.description,
        conditions=body.conditions,
    )


@router.put("/permissions/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: UUID,
    body: PermissionUpdateRequest,
    auth: AuthContext = Depends(require_role_manager),
    db: DBSession = Depends(get_db),
):
    changes = body.dict(exclude_unset=True)
    return await service.update_permission(db, auth.user.id, permission_id, **changes)
