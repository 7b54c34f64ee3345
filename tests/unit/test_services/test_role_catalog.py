"""Tests for the role catalog."""

import uuid

import pytest

from portal_rbac.core.errors import NotFound
from portal_rbac.services.role_catalog import DEFAULT_ROLES, RoleCatalog, seed_default_roles
from portal_rbac.services.types import Actor


class TestRoleCatalog:
    """Tests for RoleCatalog lookups."""

    async def test_list_roles_ordered_by_level(self, async_session, roles) -> None:
        listed = await RoleCatalog(async_session).list_roles()
        assert [r.name for r in listed] == ["student", "moderator", "admin", "superadmin"]

    async def test_get_role(self, async_session, roles) -> None:
        role = await RoleCatalog(async_session).get_role(roles["admin"].id)
        assert role.level == 3

    async def test_get_role_missing(self, async_session, roles) -> None:
        with pytest.raises(NotFound) as exc_info:
            await RoleCatalog(async_session).get_role(uuid.uuid4())
        assert exc_info.value.code == "RoleNotFound"

    async def test_get_role_by_name(self, async_session, roles) -> None:
        catalog = RoleCatalog(async_session)
        assert (await catalog.get_role_by_name("moderator")).level == 2
        assert await catalog.get_role_by_name("nope") is None

    async def test_max_level(self, async_session, roles) -> None:
        assert await RoleCatalog(async_session).max_level() == 4

    async def test_max_level_empty_catalog(self, async_session) -> None:
        assert await RoleCatalog(async_session).max_level() == 0

    async def test_get_actor_role(self, async_session, admin) -> None:
        role = await RoleCatalog(async_session).get_actor_role(admin)
        assert role.name == "admin"

    async def test_get_actor_role_without_assignment(self, async_session, roles) -> None:
        assert await RoleCatalog(async_session).get_actor_role(Actor(id="ghost")) is None


class TestListAssignableRoles:
    """Tests for the presentation-only assignable roles list."""

    async def test_roles_below_actor(self, async_session, admin) -> None:
        assignable = await RoleCatalog(async_session).list_assignable_roles(admin)
        assert [r.name for r in assignable] == ["student", "moderator"]

    async def test_top_level_actor_gets_all_but_own(self, async_session, superadmin) -> None:
        assignable = await RoleCatalog(async_session).list_assignable_roles(superadmin)
        assert [r.name for r in assignable] == ["student", "moderator", "admin"]

    async def test_lowest_level_gets_nothing(self, async_session, grant_role) -> None:
        student = await grant_role("s-1", "student")
        assert await RoleCatalog(async_session).list_assignable_roles(student) == []

    async def test_actor_without_role_gets_nothing(self, async_session, roles) -> None:
        assert await RoleCatalog(async_session).list_assignable_roles(Actor(id="ghost")) == []


class TestSeedDefaultRoles:
    """Tests for seed_default_roles."""

    async def test_seeds_all_defaults(self, async_session) -> None:
        created = await seed_default_roles(async_session)
        assert {(r.name, r.level) for r in created} == {(name, level) for name, level, _ in DEFAULT_ROLES}

    async def test_is_idempotent(self, async_session, roles) -> None:
        assert await seed_default_roles(async_session) == []
