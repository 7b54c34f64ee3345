"""Alembic environment configuration for async SQLAlchemy migrations."""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool, text
from sqlalchemy.ext.asyncio import async_engine_from_config

from portal_rbac.core.config import get_settings
from portal_rbac.models import AuditLog, Role, UserRole  # noqa: F401
from portal_rbac.models.base import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """Get database URL from application settings."""
    return get_settings().database_url


def _get_schema() -> str | None:
    """Get the PostgreSQL schema, ignored for SQLite."""
    url = get_url()
    if url.startswith("sqlite"):
        return None
    return get_settings().database_schema


def _configure_kwargs(schema: str | None) -> dict[str, object]:
    kwargs: dict[str, object] = {
        "target_metadata": target_metadata,
        "compare_type": True,
        # SQLite cannot ALTER most constraints in place.
        "render_as_batch": get_url().startswith("sqlite"),
    }
    if schema is not None:
        kwargs["version_table_schema"] = schema
    return kwargs


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=get_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(_get_schema()),
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:  # type: ignore[no-untyped-def]
    """Run migrations synchronously within a connection."""
    schema = _get_schema()
    if schema is not None:
        connection.execute(text(f'SET search_path TO "{schema}", public'))
    context.configure(connection=connection, **_configure_kwargs(schema))

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations in async mode."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = get_url()

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    schema = _get_schema()
    async with connectable.connect() as connection:
        if schema is not None:
            await connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
            await connection.commit()
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
