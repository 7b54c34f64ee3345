"""Async database engine and session management.

Provides async engine creation, the session factory and lifecycle helpers
using SQLAlchemy 2.x (asyncpg in production, aiosqlite for local runs and
tests).
"""

from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Return the current async engine.

    Raises:
        RuntimeError: If the engine has not been initialized.
    """
    if _engine is None:
        msg = "Database engine not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the current session factory.

    Raises:
        RuntimeError: If the engine has not been initialized.
    """
    if _session_factory is None:
        msg = "Session factory not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _session_factory


def enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """Make SQLite honour BEGIN/SAVEPOINT the way PostgreSQL does.

    The sqlite3 driver defers BEGIN until the first DML statement, which
    breaks SAVEPOINT semantics that batch assignment relies on.  Taking over
    transaction control restores all-or-nothing batches on SQLite.

    Args:
        engine: An engine created for a ``sqlite+aiosqlite`` URL.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def init_engine(database_url: str, *, schema: str | None = None, **kwargs: object) -> AsyncEngine:
    """Create and store the async engine and session factory.

    Args:
        database_url: Async connection string.
        schema: Optional PostgreSQL schema for isolated environments.
        **kwargs: Additional arguments passed to create_async_engine.

    Returns:
        The created async engine.
    """
    global _engine, _session_factory  # noqa: PLW0603
    if schema is not None:
        connect_args = kwargs.pop("connect_args", {})
        if not isinstance(connect_args, dict):
            msg = "connect_args must be a dict"
            raise TypeError(msg)
        connect_args["server_settings"] = {"search_path": f"{schema},public"}
        kwargs["connect_args"] = connect_args
    is_sqlite = "sqlite" in database_url
    # Only set pool defaults for connection-pooled engines (not SQLite/StaticPool)
    if not is_sqlite and kwargs.get("poolclass") is not StaticPool:
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 5)
    _engine = create_async_engine(database_url, **kwargs)
    if is_sqlite:
        enable_sqlite_transactions(_engine)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose of the async engine and release connections."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
