"""App and client fixtures for HTTP integration tests.

The app runs against the per-test SQLite session so that requests and
assertions share one connection.
"""

from collections.abc import AsyncGenerator, Callable

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from portal_rbac.core.config import Settings, get_settings
from portal_rbac.core.dependencies import get_async_session
from portal_rbac.main import create_app


@pytest.fixture
def app(monkeypatch: pytest.MonkeyPatch, settings: Settings, async_session: AsyncSession) -> FastAPI:
    monkeypatch.setenv("DATABASE_URL", settings.database_url)
    monkeypatch.setenv("JWT_SECRET_KEY", settings.jwt_secret_key)
    application = create_app()

    async def _session() -> AsyncGenerator[AsyncSession]:
        yield async_session

    application.dependency_overrides[get_async_session] = _session
    application.dependency_overrides[get_settings] = lambda: settings
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.fixture
def auth(token_for: Callable[[str], str]) -> Callable[[str], dict[str, str]]:
    """Authorization headers for a user ID."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user_id)}"}

    return _headers
