"""
ERP Access Core - RBAC Tests

Tests for permission resolution over the role graph:
- Ancestor traversal and cycle guard
- Super role bypass
- Deny-by-default for unknown permissions and roles
- Decision cache, TTL and invalidation buses
- Role level comparison and system role bootstrap
"""

import json
import time
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from erp_auth.auth.models import Role, User
from erp_auth.exceptions import InfrastructureError
from erp_auth.gateway.invalidation import LocalInvalidationBus, RedisInvalidationBus
from erp_auth.gateway.rbac import PermissionCache, RBACService, rbac_service
from tests.conftest import grant, make_permission, make_role, make_user


# =============================================================================
# Ancestor traversal
# =============================================================================

class TestParentRoles:
    """Tests for get_all_parent_roles."""

    @pytest.mark.asyncio
    async def test_root_role_has_no_parents(self, db_session, roles):
        for name in ("superadmin", "auditor"):
            assert await rbac_service.get_all_parent_roles(db_session, roles[name].id) == []

    @pytest.mark.asyncio
    async def test_parents_nearest_first(self, db_session, roles):
        parents = await rbac_service.get_all_parent_roles(db_session, roles["employee"].id)

        assert parents == [roles["manager"].id, roles["admin"].id, roles["superadmin"].id]

    @pytest.mark.asyncio
    async def test_cycle_terminates(self, db_session):
        a = make_role(db_session, "cycle_a", 1)
        b = make_role(db_session, "cycle_b", 2, parent=a)
        # Corrupt the graph directly; the admin layer would refuse this
        a.parent_id = b.id
        db_session.add(a)
        db_session.commit()

        parents = await rbac_service.get_all_parent_roles(db_session, a.id)

        assert parents == [b.id]

    @pytest.mark.asyncio
    async def test_dangling_parent_reference_stops_walk(self, db_session):
        orphan = make_role(db_session, "orphan", 5)
        ghost = make_role(db_session, "ghost", 6)
        orphan.parent_id = ghost.id
        db_session.add(orphan)
        db_session.commit()
        db_session.delete(ghost)
        db_session.commit()

        assert await rbac_service.get_all_parent_roles(db_session, orphan.id) == [ghost.id]


# =============================================================================
# Permission resolution
# =============================================================================

class TestHasPermission:
    """Tests for has_permission."""

    @pytest.mark.asyncio
    async def test_inherited_grant_from_any_ancestor(self, db_session, roles, employee_user):
        for holder in ("employee", "manager", "admin"):
            rbac_service.clear_cache()
            permission = make_permission(db_session, f"view_{holder}_reports")
            grant(db_session, roles[holder], permission)

            assert await rbac_service.has_permission(db_session, employee_user, permission.name) is True

    @pytest.mark.asyncio
    async def test_grant_below_does_not_flow_up(self, db_session, roles, manager_user):
        permission = make_permission(db_session, "approve_timesheets")
        grant(db_session, roles["employee"], permission)

        assert await rbac_service.has_permission(db_session, manager_user, "approve_timesheets") is False

    @pytest.mark.asyncio
    async def test_unrelated_role_has_no_access(self, db_session, roles, auditor_user):
        permission = make_permission(db_session, "manage_employees")
        grant(db_session, roles["manager"], permission)

        assert await rbac_service.has_permission(db_session, auditor_user, "manage_employees") is False

    @pytest.mark.asyncio
    async def test_teamlead_scenario(self, db_session):
        employee = make_role(db_session, "staff", 50)
        teamlead = make_role(db_session, "teamlead", 60, parent=employee)
        permission = make_permission(db_session, "task.create", module="tasks", action="create")
        grant(db_session, teamlead, permission)

        lead = make_user(db_session, "lead@erp.test", teamlead)
        staff = make_user(db_session, "staff@erp.test", employee)

        assert await rbac_service.has_permission(db_session, lead, "task.create") is True
        assert await rbac_service.has_permission(db_session, staff, "task.create") is False

    @pytest.mark.asyncio
    async def test_super_role_passes_everything(self, db_session, superadmin_user):
        make_permission(db_session, "manage_payroll")

        assert await rbac_service.has_permission(db_session, superadmin_user, "manage_payroll") is True
        assert await rbac_service.has_permission(db_session, superadmin_user, "not_registered_anywhere") is True

    @pytest.mark.asyncio
    async def test_unknown_permission_is_denied(self, db_session, employee_user):
        assert await rbac_service.has_permission(db_session, employee_user, "does_not_exist") is False

    @pytest.mark.asyncio
    async def test_unknown_role_is_denied(self, db_session, roles):
        permission = make_permission(db_session, "view_roles")
        grant(db_session, roles["auditor"], permission)
        # Never added to the session, so nothing is flushed for the dangling reference
        user = User(email="lost@erp.test", name="Lost", password_hash="x", role_id=uuid4())

        assert await rbac_service.has_permission(db_session, user, "view_roles") is False

    @pytest.mark.asyncio
    async def test_explicit_deny_does_not_suppress_ancestor_grant(self, db_session, roles, employee_user):
        permission = make_permission(db_session, "view_departments")
        grant(db_session, roles["employee"], permission, granted=False)
        grant(db_session, roles["manager"], permission, granted=True)

        assert await rbac_service.has_permission(db_session, employee_user, "view_departments") is True

    @pytest.mark.asyncio
    async def test_explicit_deny_alone_is_not_a_grant(self, db_session, roles, employee_user):
        permission = make_permission(db_session, "view_designations")
        grant(db_session, roles["employee"], permission, granted=False)

        assert await rbac_service.has_permission(db_session, employee_user, "view_designations") is False

    @pytest.mark.asyncio
    async def test_store_failure_raises_infrastructure_error(self, db_session, employee_user):
        failing = MagicMock(wraps=db_session)
        failing.get.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))

        with pytest.raises(InfrastructureError):
            await rbac_service.has_permission(failing, employee_user, "view_employees")


# =============================================================================
# Decision cache
# =============================================================================

class TestPermissionCache:
    """Tests for caching and invalidation of decisions."""

    @pytest.mark.asyncio
    async def test_decision_is_cached_until_cleared(self, db_session, roles, employee_user):
        permission = make_permission(db_session, "view_employees")

        assert await rbac_service.has_permission(db_session, employee_user, "view_employees") is False
        assert len(rbac_service.permission_cache) == 1

        # Granting without invalidation keeps serving the cached decision
        grant(db_session, roles["employee"], permission)
        assert await rbac_service.has_permission(db_session, employee_user, "view_employees") is False

        rbac_service.invalidate("test")
        assert await rbac_service.has_permission(db_session, employee_user, "view_employees") is True

    @pytest.mark.asyncio
    async def test_unknown_permission_is_not_cached(self, db_session, employee_user):
        await rbac_service.has_permission(db_session, employee_user, "ghost_permission")

        assert len(rbac_service.permission_cache) == 0

    @pytest.mark.asyncio
    async def test_users_sharing_a_role_share_cache_entries(self, db_session, roles, employee_user):
        make_permission(db_session, "view_roles")
        colleague = make_user(db_session, "colleague@erp.test", roles["employee"])

        await rbac_service.has_permission(db_session, employee_user, "view_roles")
        await rbac_service.has_permission(db_session, colleague, "view_roles")

        assert len(rbac_service.permission_cache) == 1

    @pytest.mark.asyncio
    async def test_clear_cache_twice_equals_once(self, db_session, roles, employee_user):
        make_permission(db_session, "view_roles")
        await rbac_service.has_permission(db_session, employee_user, "view_roles")
        await rbac_service.get_role_level(db_session, "employee")

        rbac_service.clear_cache()
        first = (len(rbac_service.permission_cache), dict(rbac_service.role_level_cache))
        rbac_service.clear_cache()
        second = (len(rbac_service.permission_cache), dict(rbac_service.role_level_cache))

        assert first == second == (0, {})

    def test_ttl_expires_entries(self):
        cache = PermissionCache(ttl_seconds=30)
        cache.set("key", True)

        with patch("erp_auth.gateway.rbac.time.monotonic", return_value=time.monotonic() + 31):
            assert cache.get("key") is None
        assert len(cache) == 0

    def test_zero_ttl_keeps_entries(self):
        cache = PermissionCache(ttl_seconds=0)
        cache.set("key", False)

        with patch("erp_auth.gateway.rbac.time.monotonic", return_value=time.monotonic() + 10_000):
            assert cache.get("key") is False


# =============================================================================
# Invalidation buses
# =============================================================================

class TestInvalidationBus:
    """Tests for local and redis-backed cache invalidation."""

    def test_local_bus_clears_every_subscriber(self):
        bus = LocalInvalidationBus()
        first = RBACService(bus=bus)
        second = RBACService(bus=bus)
        first.permission_cache.set("k", True)
        second.permission_cache.set("k", True)

        first.invalidate("role updated")

        assert len(first.permission_cache) == 0
        assert len(second.permission_cache) == 0

    def _redis_bus(self):
        with patch("erp_auth.gateway.invalidation.redis.from_url") as from_url:
            client = MagicMock()
            from_url.return_value = client
            bus = RedisInvalidationBus("redis://localhost:6379/0", "rbac:test")
        return bus, client

    def test_redis_publish_clears_locally_and_broadcasts(self):
        bus, client = self._redis_bus()
        service = RBACService(bus=bus)
        service.permission_cache.set("k", True)

        service.invalidate("permission created")

        assert len(service.permission_cache) == 0
        channel, raw = client.publish.call_args[0]
        assert channel == "rbac:test"
        assert json.loads(raw) == {"origin": bus.instance_id, "reason": "permission created"}

    def test_redis_peer_message_clears_cache(self):
        bus, _ = self._redis_bus()
        service = RBACService(bus=bus)
        service.permission_cache.set("k", True)

        bus.handle_message({"data": json.dumps({"origin": "another-instance", "reason": "role deleted"})})

        assert len(service.permission_cache) == 0

    def test_redis_own_echo_is_ignored(self):
        bus, _ = self._redis_bus()
        callback = MagicMock()
        bus.subscribe(callback)

        bus.handle_message({"data": json.dumps({"origin": bus.instance_id, "reason": "x"})})

        callback.assert_not_called()

    def test_redis_malformed_message_is_ignored(self):
        bus, _ = self._redis_bus()
        callback = MagicMock()
        bus.subscribe(callback)

        bus.handle_message({"data": "not json"})

        callback.assert_not_called()

    def test_redis_outage_still_clears_local_cache(self):
        import redis

        bus, client = self._redis_bus()
        client.publish.side_effect = redis.ConnectionError("down")
        service = RBACService(bus=bus)
        service.permission_cache.set("k", True)

        service.invalidate("role updated")

        assert len(service.permission_cache) == 0

    def test_redis_listener_lifecycle(self):
        bus, client = self._redis_bus()
        pubsub = client.pubsub.return_value
        thread = pubsub.run_in_thread.return_value

        bus.start()
        bus.start()
        bus.close()

        pubsub.subscribe.assert_called_once()
        pubsub.run_in_thread.assert_called_once()
        thread.stop.assert_called_once()
        pubsub.close.assert_called_once()


# =============================================================================
# Role levels and system roles
# =============================================================================

class TestRoleLevels:
    """Tests for role level lookup and comparison."""

    @pytest.mark.asyncio
    async def test_role_level_and_comparison(self, db_session, roles):
        assert await rbac_service.get_role_level(db_session, "manager") == 50
        assert await rbac_service.compare_roles(db_session, "admin", "employee") == 80
        assert await rbac_service.compare_roles(db_session, "employee", "manager") < 0
        assert await rbac_service.compare_roles(db_session, "manager", "manager") == 0

    @pytest.mark.asyncio
    async def test_unknown_role_level(self, db_session):
        assert await rbac_service.get_role_level(db_session, "nobody") == -1

    @pytest.mark.asyncio
    async def test_initialize_system_roles_is_idempotent(self, db_session):
        superadmin, admin = await rbac_service.initialize_system_roles(db_session)
        again_super, again_admin = await rbac_service.initialize_system_roles(db_session)

        assert superadmin.id == again_super.id
        assert admin.id == again_admin.id
        assert superadmin.is_super_role and superadmin.is_system and superadmin.level == 100
        assert admin.parent_id == superadmin.id and admin.level == 90 and not admin.is_super_role
        assert len(db_session.exec(select(Role)).all()) == 2
