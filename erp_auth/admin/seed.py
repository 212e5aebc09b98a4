"""
ERP Access Core - Default RBAC Data

Idempotent bootstrap of the role graph and permission catalog:
- System roles (superadmin > admin)
- The default employee role used for self-registration
- view/manage permissions for the core ERP modules, all granted to admin
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlmodel import Session as DBSession, select

from erp_auth.auth.models import Permission, Role, RolePermission, User
from erp_auth.auth.password import hash_password
from erp_auth.config import settings
from erp_auth.gateway.rbac import rbac_service


logger = logging.getLogger(__name__)

DEFAULT_MODULES = ("departments", "designations", "employees", "roles")

DEFAULT_PERMISSIONS = [
    {
        "name": f"{action}_{module}",
        "module": module,
        "action": action,
        "description": (
            f"View {module}" if action == "view"
            else f"Create, update, and delete {module}"
        ),
    }
    for module in DEFAULT_MODULES
    for action in ("view", "manage")
]


def seed_permissions(db: DBSession) -> List[Permission]:
    """Create or refresh the default permission catalog as system permissions."""
    permissions = []
    for spec in DEFAULT_PERMISSIONS:
        permission = db.exec(select(Permission).where(Permission.name == spec["name"])).first()
        if permission is None:
            permission = Permission(name=spec["name"])
        permission.module = spec["module"]
        permission.action = spec["action"]
        permission.description = spec["description"]
        permission.is_system = True
        db.add(permission)
        permissions.append(permission)
    db.commit()
    return permissions


def grant_all(db: DBSession, role: Role, permissions: List[Permission]) -> int:
    """Grant every permission to `role`; existing grants are set to granted."""
    count = 0
    for permission in permissions:
        grant = db.exec(
            select(RolePermission).where(
                RolePermission.role_id == role.id,
                RolePermission.permission_id == permission.id,
            )
        ).first()
        if grant is None:
            grant = RolePermission(role_id=role.id, permission_id=permission.id)
        grant.granted = True
        db.add(grant)
        count += 1
    db.commit()
    return count


def ensure_default_role(db: DBSession) -> Role:
    role = db.exec(select(Role).where(Role.name == settings.DEFAULT_ROLE)).first()
    if role is None:
        role = Role(
            name=settings.DEFAULT_ROLE,
            description="Default role for registered users",
            level=10,
        )
        db.add(role)
        db.commit()
        db.refresh(role)
    return role


def ensure_superadmin_user(
    db: DBSession,
    super_role: Role,
    email: str,
    password: str,
    name: str = "Super Admin",
) -> User:
    """Create the first superadmin account if the e-mail is not taken."""
    email = email.lower()
    user = db.exec(select(User).where(User.email == email)).first()
    if user is not None:
        return user

    user = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        role_id=super_role.id,
        is_email_verified=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Superadmin user %s created", email)
    return user


async def seed_rbac(
    db: DBSession,
    admin_email: Optional[str] = None,
    admin_password: Optional[str] = None,
    actor_id: Optional[UUID] = None,
) -> dict:
    """Run the whole bootstrap. Safe to run repeatedly."""
    super_role, admin_role = await rbac_service.initialize_system_roles(db, actor_id=actor_id)
    ensure_default_role(db)

    permissions = seed_permissions(db)
    granted = grant_all(db, admin_role, permissions)

    user = None
    if admin_email and admin_password:
        user = ensure_superadmin_user(db, super_role, admin_email, admin_password)

    rbac_service.invalidate("default rbac data seeded")
    logger.info("Seeded %d permissions, %d admin grants", len(permissions), granted)
    return {"permissions": len(permissions), "grants": granted, "superadmin": user}
