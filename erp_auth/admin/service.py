"""
ERP Access Core - RBAC Administration Service

CRUD over roles, permissions and role-permission grants.

Rules:
- Role and permission names are unique
- System roles cannot be modified, deleted, or have their grants replaced
- A role with child roles cannot be deleted; deleting a role removes its grants
- The parent chain must stay acyclic
- Every committed mutation invalidates the permission cache
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session as DBSession, select

from erp_auth.auth.models import Permission, Role, RolePermission, User
from erp_auth.config import settings
from erp_auth.exceptions import ConflictError, NotFoundError, ValidationError
from erp_auth.gateway.rbac import rbac_service


logger = logging.getLogger(__name__)

# Distinguishes "not provided" from an explicit None in partial updates
UNSET = object()


@dataclass
class PermissionGrant:
    """One entry of a role's permission set."""
    permission_id: UUID
    granted: bool = True
    conditions: Optional[dict] = None


def _commit(db: DBSession, conflict_message: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(conflict_message) from e


# =============================================================================
# Roles
# =============================================================================

async def list_roles(db: DBSession) -> List[Role]:
    """All roles ordered by level."""
    return list(db.exec(select(Role).order_by(Role.level, Role.name)).all())


async def get_role(db: DBSession, role_id: UUID) -> Role:
    role = db.get(Role, role_id)
    if role is None:
        raise NotFoundError("Role not found")
    return role


async def _check_parent(db: DBSession, role_id: Optional[UUID], parent_id: UUID) -> None:
    """Reject a missing parent or one whose ancestor chain contains `role_id`."""
    if role_id is not None and parent_id == role_id:
        raise ValidationError("A role cannot be its own parent", {"parent_id": "cycle"})

    if db.get(Role, parent_id) is None:
        raise NotFoundError("Parent role not found")

    if role_id is None:
        return

    ancestors = await rbac_service.get_all_parent_roles(db, parent_id)
    if role_id in ancestors:
        raise ValidationError("Parent assignment would create a cycle", {"parent_id": "cycle"})


async def create_role(
    db: DBSession,
    actor_id: Optional[UUID],
    name: str,
    level: int,
    description: Optional[str] = None,
    parent_id: Optional[UUID] = None,
    can_manage_roles: bool = False,
) -> Role:
    """
    Create a role.

    Raises:
        ValidationError: Missing name or negative level
        ConflictError: Name already taken
        NotFoundError: Parent role does not exist
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Role name is required", {"name": "required"})
    if level is None or level < 0:
        raise ValidationError("Role level must be zero or greater", {"level": "must be >= 0"})

    if db.exec(select(Role).where(Role.name == name)).first():
        raise ConflictError("Role already exists")

    if parent_id is not None:
        await _check_parent(db, None, parent_id)

    role = Role(
        name=name,
        description=description,
        parent_id=parent_id,
        level=level,
        can_manage_roles=can_manage_roles,
        is_super_role=(name == settings.SUPER_ROLE_NAME),
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.add(role)
    _commit(db, "Role already exists")
    db.refresh(role)

    rbac_service.invalidate("role created")
    logger.info("Role %s created by %s", role.name, actor_id)
    return role


async def update_role(
    db: DBSession,
    actor_id: Optional[UUID],
    role_id: UUID,
    name=UNSET,
    description=UNSET,
    parent_id=UNSET,
    level=UNSET,
    can_manage_roles=UNSET,
) -> Role:
    """
    Partially update a role; only arguments that are passed change.

    Passing `parent_id=None` detaches the role from its parent.

    Raises:
        NotFoundError: Role or new parent does not exist
        ConflictError: System role, or new name already taken
        ValidationError: Empty name, negative level, or parent cycle
    """
    role = await get_role(db, role_id)

    if role.is_system:
        raise ConflictError("Cannot modify system roles")

    if name is not UNSET and name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Role name is required", {"name": "required"})
        if name != role.name:
            if db.exec(select(Role).where(Role.name == name)).first():
                raise ConflictError("Role already exists")
            role.name = name

    if description is not UNSET:
        role.description = description

    if level is not UNSET and level is not None:
        if level < 0:
            raise ValidationError("Role level must be zero or greater", {"level": "must be >= 0"})
        role.level = level

    if parent_id is not UNSET and parent_id != role.parent_id:
        if parent_id is not None:
            await _check_parent(db, role.id, parent_id)
        role.parent_id = parent_id

    if can_manage_roles is not UNSET and can_manage_roles is not None:
        role.can_manage_roles = can_manage_roles

    role.updated_by = actor_id
    role.updated_at = datetime.utcnow()
    db.add(role)
    _commit(db, "Role already exists")
    db.refresh(role)

    rbac_service.invalidate("role updated")
    logger.info("Role %s updated by %s", role.name, actor_id)
    return role


async def delete_role(db: DBSession, role_id: UUID) -> None:
    """
    Delete a role together with its grants.

    Raises:
        NotFoundError: Role does not exist
        ConflictError: System role, has child roles, or is assigned to users
    """
    role = await get_role(db, role_id)

    if role.is_system:
        raise ConflictError("Cannot delete system roles")

    if db.exec(select(Role).where(Role.parent_id == role_id)).first():
        raise ConflictError("Cannot delete role with child roles")

    if db.exec(select(User).where(User.role_id == role_id)).first():
        raise ConflictError("Cannot delete role assigned to users")

    for grant in db.exec(select(RolePermission).where(RolePermission.role_id == role_id)).all():
        db.delete(grant)
    db.delete(role)
    db.commit()

    rbac_service.invalidate("role deleted")
    logger.info("Role %s deleted", role_id)


# =============================================================================
# Permissions
# =============================================================================

async def list_permissions(db: DBSession) -> List[Permission]:
    return list(db.exec(select(Permission).order_by(Permission.module, Permission.action)).all())


async def get_permission(db: DBSession, permission_id: UUID) -> Permission:
    permission = db.get(Permission, permission_id)
    if permission is None:
        raise NotFoundError("Permission not found")
    return permission


async def create_permission(
    db: DBSession,
    actor_id: Optional[UUID],
    name: str,
    module: str,
    action: str,
    description: Optional[str] = None,
    conditions: Optional[dict] = None,
    is_system: bool = False,
) -> Permission:
    """
    Register a permission in the catalog.

    Raises:
        ValidationError: Missing name, module or action
        ConflictError: Name already taken
    """
    fields = {
        key: "required"
        for key, value in (("name", name), ("module", module), ("action", action))
        if not (value or "").strip()
    }
    if fields:
        raise ValidationError("Missing required permission fields", fields)

    name = name.strip()
    if db.exec(select(Permission).where(Permission.name == name)).first():
        raise ConflictError("Permission already exists")

    permission = Permission(
        name=name,
        module=module.strip(),
        action=action.strip(),
        description=description,
        conditions=conditions,
        is_system=is_system,
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.add(permission)
    _commit(db, "Permission already exists")
    db.refresh(permission)

    rbac_service.invalidate("permission created")
    logger.info("Permission %s created by %s", permission.name, actor_id)
    return permission


async def update_permission(
    db: DBSession,
    actor_id: Optional[UUID],
    permission_id: UUID,
    name=UNSET,
    module=UNSET,
    action=UNSET,
    description=UNSET,
    conditions=UNSET,
) -> Permission:
    """
    Partially update a permission.

    Raises:
        NotFoundError: Permission does not exist
        ConflictError: System permission, or new name already taken
        ValidationError: A required field was blanked
    """
    permission = await get_permission(db, permission_id)

    if permission.is_system:
        raise ConflictError("Cannot modify system permissions")

    for field, value in (("name", name), ("module", module), ("action", action)):
        if value is UNSET or value is None:
            continue
        value = value.strip()
        if not value:
            raise ValidationError("Missing required permission fields", {field: "required"})
        if field == "name" and value != permission.name:
            if db.exec(select(Permission).where(Permission.name == value)).first():
                raise ConflictError("Permission already exists")
        setattr(permission, field, value)

    if description is not UNSET:
        permission.description = description
    if conditions is not UNSET:
        permission.conditions = conditions

    permission.updated_by = actor_id
    permission.updated_at = datetime.utcnow()
    db.add(permission)
    _commit(db, "Permission already exists")
    db.refresh(permission)

    rbac_service.invalidate("permission updated")
    return permission


# =============================================================================
# Grants
# =============================================================================

async def get_role_permissions(db: DBSession, role_id: UUID) -> List[Tuple[RolePermission, Permission]]:
    """A role's grant records joined with their permissions."""
    await get_role(db, role_id)

    statement = (
        select(RolePermission, Permission)
        .where(RolePermission.role_id == role_id, RolePermission.permission_id == Permission.id)
        .order_by(Permission.module, Permission.action)
    )
    return list(db.exec(statement).all())


async def set_role_permissions(
    db: DBSession,
    actor_id: Optional[UUID],
    role_id: UUID,
    grants: Iterable[PermissionGrant],
) -> List[RolePermission]:
    """
    Replace a role's whole permission set.

    Every referenced permission is checked before anything is deleted.

    Raises:
        NotFoundError: Role or a referenced permission does not exist
        ConflictError: System role
        ValidationError: The same permission is listed twice
    """
    role = await get_role(db, role_id)

    if role.is_system:
        raise ConflictError("Cannot modify system role permissions")

    grants = list(grants)
    seen = set()
    for grant in grants:
        if grant.permission_id in seen:
            raise ValidationError(
                "Duplicate permission in grant list",
                {"permissions": f"{grant.permission_id} listed more than once"},
            )
        seen.add(grant.permission_id)
        if db.get(Permission, grant.permission_id) is None:
            raise NotFoundError(f"Permission {grant.permission_id} not found")

    for existing in db.exec(select(RolePermission).where(RolePermission.role_id == role_id)).all():
        db.delete(existing)
    db.flush()

    records = [
        RolePermission(
            role_id=role_id,
            permission_id=grant.permission_id,
            granted=grant.granted,
            conditions=grant.conditions,
            created_by=actor_id,
        )
        for grant in grants
    ]
    db.add_all(records)
    _commit(db, "Duplicate role permission")

    rbac_service.invalidate("role permissions replaced")
    logger.info("Permissions for role %s replaced (%d grants) by %s", role.name, len(records), actor_id)
    return records
