"""
ERP Access Core - Role-Based Access Control (RBAC)

Hierarchical permission resolution over the role graph.

A user holds a permission when any role in {own role} + {all ancestors}
has a granted RolePermission for it. Roles flagged `is_super_role` bypass
every check.

Security:
- Deny-by-default: unknown permissions and unknown roles resolve to False
- Explicit deny records never count as a match, but do not suppress a
  grant held by another role in the chain
- Store failures are raised, never silently turned into a decision
"""

import logging
import time
from typing import Dict, Hashable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session as DBSession, select

from erp_auth.auth.models import Permission, Role, RolePermission, User
from erp_auth.config import settings
from erp_auth.exceptions import InfrastructureError
from erp_auth.gateway.invalidation import build_invalidation_bus


logger = logging.getLogger(__name__)


class PermissionCache:
    """
    Decision cache keyed by (sorted role IDs, permission name).

    Entries live until `clear()`, or for `ttl_seconds` when a TTL is set.
    """

    def __init__(self, ttl_seconds: int = 0):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[Hashable, Tuple[bool, float]] = {}

    def get(self, key: Hashable) -> Optional[bool]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self.ttl_seconds and time.monotonic() - stored_at > self.ttl_seconds:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: Hashable, value: bool) -> None:
        self._entries[key] = (value, time.monotonic())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RBACService:
    """
    Authorization resolver with a process-local decision cache.

    The cache is subscribed to an invalidation bus; call `invalidate()`
    after every Role, Permission or RolePermission mutation.
    """

    def __init__(self, bus=None, cache_ttl_seconds: int = None):
        ttl = settings.PERMISSION_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds
        self.permission_cache = PermissionCache(ttl)
        self.role_level_cache: Dict[str, int] = {}
        self.bus = bus or build_invalidation_bus()
        self.bus.subscribe(self.clear_cache)

    def clear_cache(self) -> None:
        """Drop every cached decision and role level."""
        self.permission_cache.clear()
        self.role_level_cache.clear()

    def invalidate(self, reason: str = "changed") -> None:
        """Clear this cache and tell every other subscribed instance to do the same."""
        self.bus.publish(reason)

    async def has_permission(self, db: DBSession, user: User, permission_name: str) -> bool:
        """
        Decide whether `user` holds `permission_name`.

        Returns:
            True if granted through the user's role or any ancestor

        Raises:
            InfrastructureError: The store could not be queried
        """
        try:
            role = db.get(Role, user.role_id) if user.role_id else None
            if role is None:
                logger.warning("No role found for user %s", user.id)
                return False

            if role.is_super_role:
                return True

            role_ids = [role.id] + await self.get_all_parent_roles(db, role.id)
            cache_key = (tuple(sorted({str(r) for r in role_ids})), permission_name)

            cached = self.permission_cache.get(cache_key)
            if cached is not None:
                return cached

            permission = db.exec(
                select(Permission).where(Permission.name == permission_name)
            ).first()
            if permission is None:
                return False

            grant = db.exec(
                select(RolePermission).where(
                    RolePermission.role_id.in_(role_ids),
                    RolePermission.permission_id == permission.id,
                    RolePermission.granted == True,  # noqa: E712
                )
            ).first()

        except SQLAlchemyError as e:
            logger.exception("Permission check for %s failed", permission_name)
            raise InfrastructureError("Permission store unavailable") from e

        allowed = grant is not None
        self.permission_cache.set(cache_key, allowed)
        return allowed

    async def get_all_parent_roles(self, db: DBSession, role_id: UUID) -> List[UUID]:
        """
        Ancestor role IDs, nearest first.

        Stops at a role without a parent, at a dangling parent reference,
        or on revisiting a role (cyclic graph).
        """
        visited = {role_id}
        parents: List[UUID] = []

        current = db.get(Role, role_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id in visited:
                logger.warning("Cycle in role graph at role %s", current.id)
                break
            parents.append(current.parent_id)
            visited.add(current.parent_id)
            current = db.get(Role, current.parent_id)

        return parents

    async def get_role_level(self, db: DBSession, role_name: str) -> int:
        """Role level by name (cached); -1 for an unknown role."""
        if role_name in self.role_level_cache:
            return self.role_level_cache[role_name]

        role = db.exec(select(Role).where(Role.name == role_name)).first()
        if role is None:
            return -1

        self.role_level_cache[role_name] = role.level
        return role.level

    async def compare_roles(self, db: DBSession, role1: str, role2: str) -> int:
        """Positive when role1 outranks role2, zero when equal."""
        return await self.get_role_level(db, role1) - await self.get_role_level(db, role2)

    async def initialize_system_roles(self, db: DBSession, actor_id: Optional[UUID] = None) -> Tuple[Role, Role]:
        """
        Create or refresh the built-in superadmin and admin roles.

        Returns:
            Tuple of (superadmin role, admin role)
        """
        superadmin = _upsert_role(
            db,
            name=settings.SUPER_ROLE_NAME,
            description="Super Administrator with full system access",
            level=100,
            parent_id=None,
            is_super_role=True,
            actor_id=actor_id,
        )
        db.flush()
        admin = _upsert_role(
            db,
            name="admin",
            description="Administrator with high-level system access",
            level=90,
            parent_id=superadmin.id,
            is_super_role=False,
            actor_id=actor_id,
        )
        db.commit()
        db.refresh(superadmin)
        db.refresh(admin)

        self.invalidate("system roles initialized")
        logger.info("System roles initialized successfully")
        return superadmin, admin


def _upsert_role(db: DBSession, name: str, description: str, level: int,
                 parent_id: Optional[UUID], is_super_role: bool, actor_id: Optional[UUID]) -> Role:
    role = db.exec(select(Role).where(Role.name == name)).first()
    if role is None:
        role = Role(name=name, created_by=actor_id)

    role.description = description
    role.level = level
    role.parent_id = parent_id
    role.is_system = True
    role.is_super_role = is_super_role
    role.can_manage_roles = True
    role.updated_by = actor_id
    db.add(role)
    return role


rbac_service = RBACService()
