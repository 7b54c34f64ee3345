"""Tests for bearer token identity resolution and the permission gate."""

import pytest

from portal_rbac.core.errors import Unauthenticated
from portal_rbac.core.security import create_access_token
from portal_rbac.services.identity import JWTIdentityProvider
from portal_rbac.services.permission_gate import LevelPermissionGate
from portal_rbac.services.role_catalog import RoleCatalog
from portal_rbac.services.types import Actor


class TestJWTIdentityProvider:
    """Tests for JWTIdentityProvider.resolve_actor."""

    @pytest.fixture
    def provider(self, async_session, settings) -> JWTIdentityProvider:
        return JWTIdentityProvider(async_session, settings.jwt_secret_key, settings.jwt_algorithm)

    async def test_role_is_read_from_store(self, provider, admin, token_for) -> None:
        actor = await provider.resolve_actor(token_for("admin-1"))
        assert actor == admin

    async def test_user_without_role(self, provider, roles, token_for) -> None:
        actor = await provider.resolve_actor(token_for("newcomer"))
        assert actor == Actor(id="newcomer", role_id=None)

    async def test_empty_credential(self, provider) -> None:
        with pytest.raises(Unauthenticated, match="Missing credentials"):
            await provider.resolve_actor("")

    async def test_garbage_token(self, provider) -> None:
        with pytest.raises(Unauthenticated):
            await provider.resolve_actor("not-a-jwt")

    async def test_token_signed_with_other_key(self, provider) -> None:
        token = create_access_token("admin-1", "some-other-secret-key-for-signing-tokens")
        with pytest.raises(Unauthenticated):
            await provider.resolve_actor(token)

    async def test_expired_token(self, provider, settings) -> None:
        token = create_access_token("admin-1", settings.jwt_secret_key, expires_minutes=-1)
        with pytest.raises(Unauthenticated):
            await provider.resolve_actor(token)


class TestLevelPermissionGate:
    """Tests for LevelPermissionGate.has_permission."""

    @pytest.fixture
    def gate(self, async_session) -> LevelPermissionGate:
        return LevelPermissionGate(RoleCatalog(async_session))

    @pytest.mark.parametrize(
        ("role_name", "permission", "expected"),
        [
            ("admin", "users:manage", True),
            ("admin", "audit:read", True),
            ("admin", "roles:manage", False),
            ("superadmin", "roles:manage", True),
            ("moderator", "users:manage", False),
            ("student", "audit:read", False),
        ],
    )
    async def test_levels(self, gate, grant_role, role_name, permission, expected) -> None:
        actor = await grant_role("someone", role_name)
        resource, action = permission.split(":")
        assert await gate.has_permission(actor, resource, action) is expected

    async def test_unknown_permission_refused(self, gate, superadmin) -> None:
        assert await gate.has_permission(superadmin, "billing", "manage") is False

    async def test_actor_without_role_refused(self, gate, roles) -> None:
        assert await gate.has_permission(Actor(id="nobody"), "roles", "read") is False

    async def test_custom_levels(self, async_session, grant_role) -> None:
        moderator = await grant_role("mod-1", "moderator")
        gate = LevelPermissionGate(RoleCatalog(async_session), {"audit:read": 2})
        assert await gate.has_permission(moderator, "audit", "read") is True
        assert await gate.has_permission(moderator, "users", "manage") is False
