"""Shared test fixtures for the async database, seeded roles, actors and auth tokens."""

from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from portal_rbac.core.config import Settings
from portal_rbac.core.database import enable_sqlite_transactions
from portal_rbac.core.security import create_access_token
from portal_rbac.models.base import Base
from portal_rbac.models.role import Role
from portal_rbac.models.user_role import UserRole
from portal_rbac.services.role_catalog import seed_default_roles
from portal_rbac.services.types import Actor

GrantRole = Callable[[str, str], Awaitable[Actor]]


@pytest.fixture
def settings() -> Settings:
    """Test application settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret_key="test-secret-key-not-for-production",
        jwt_algorithm="HS256",
        jwt_access_token_expire_minutes=30,
        _env_file=None,  # type: ignore[call-arg]
    )


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite engine with real BEGIN/SAVEPOINT semantics."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)
    enable_sqlite_transactions(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Per-test async session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def roles(async_session: AsyncSession) -> dict[str, Role]:
    """The default catalog: student 1, moderator 2, admin 3, superadmin 4."""
    created = await seed_default_roles(async_session)
    return {role.name: role for role in created}


@pytest.fixture
def grant_role(async_session: AsyncSession, roles: dict[str, Role]) -> GrantRole:
    """Give a user a role directly in the store, bypassing the engine."""

    async def _grant(user_id: str, role_name: str) -> Actor:
        role = roles[role_name]
        async_session.add(UserRole(user_id=user_id, role_id=role.id, assigned_by="fixture", reason="fixture"))
        await async_session.commit()
        return Actor(id=user_id, role_id=role.id)

    return _grant


@pytest.fixture
async def superadmin(grant_role: GrantRole) -> Actor:
    return await grant_role("super-1", "superadmin")


@pytest.fixture
async def admin(grant_role: GrantRole) -> Actor:
    return await grant_role("admin-1", "admin")


@pytest.fixture
def token_for(settings: Settings) -> Callable[[str], str]:
    """Build a bearer token for a user ID."""

    def _token(user_id: str) -> str:
        return create_access_token(
            subject=user_id,
            secret_key=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )

    return _token
