"""Role catalog and bootstrap CLI commands."""

import asyncio

import typer

roles_app = typer.Typer()


@roles_app.command("seed")
def seed_roles() -> None:
    """Create the default roles (student, moderator, admin, superadmin) if missing."""
    asyncio.run(_seed_roles())


async def _seed_roles() -> None:
    from portal_rbac.core.config import get_settings
    from portal_rbac.core.database import dispose_engine, get_session_factory, init_engine
    from portal_rbac.services.role_catalog import seed_default_roles

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            created = await seed_default_roles(session)
            for role in created:
                typer.echo(f"Created role '{role.name}' (level {role.level})")
            typer.echo(f"{len(created)} role(s) created")
    finally:
        await dispose_engine()


@roles_app.command("list")
def list_roles() -> None:
    """List every role with its level and number of holders."""
    asyncio.run(_list_roles())


async def _list_roles() -> None:
    from portal_rbac.core.config import get_settings
    from portal_rbac.core.database import dispose_engine, get_session_factory, init_engine
    from portal_rbac.services.assignment_service import AssignmentEngine

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            engine = AssignmentEngine(session)
            roles = await engine.catalog.list_roles()
            typer.echo(f"{'Name':<16} {'Level':<6} {'Holders':<8} Description")
            typer.echo("-" * 60)
            for role in roles:
                _assignments, holders = await engine.list_assignments(role_id=role.id, page_size=1)
                typer.echo(f"{role.name:<16} {role.level:<6} {holders:<8} {role.description or ''}")
            typer.echo(f"\nTotal: {len(roles)}")
    finally:
        await dispose_engine()


@roles_app.command("bootstrap")
def bootstrap(
    user_id: str = typer.Argument(..., help="User ID to receive the top role"),
    reason: str = typer.Option("bootstrap", "--reason", help="Reason recorded in the audit trail"),
) -> None:
    """Grant the top role to the first super user."""
    asyncio.run(_bootstrap(user_id, reason))


async def _bootstrap(user_id: str, reason: str) -> None:
    from portal_rbac.core.config import get_settings
    from portal_rbac.core.database import dispose_engine, get_session_factory, init_engine
    from portal_rbac.core.errors import RbacError
    from portal_rbac.services.assignment_service import AssignmentEngine

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        factory = get_session_factory()
        async with factory() as session:
            outcome = await AssignmentEngine(session).bootstrap_superuser(user_id, reason=reason)
            typer.echo(f"User '{outcome.user_id}' now holds '{outcome.role_name}' (audit entry {outcome.audit_log_id})")
    except RbacError as e:
        typer.echo(f"Error: {e.detail}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        await dispose_engine()
