"""Typer CLI root application with serve command."""

import typer

from portal_rbac.core.config import get_settings
from portal_rbac.core.logging import setup_logging

app = typer.Typer(name="portal-rbac", help="Portal role administration CLI")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Start the API server."""
    import uvicorn

    uvicorn.run(
        "portal_rbac.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from portal_rbac.cli.audit_cmd import audit_app
    from portal_rbac.cli.auth_cmd import auth_app
    from portal_rbac.cli.db_cmd import db_app
    from portal_rbac.cli.roles_cmd import roles_app

    app.add_typer(db_app, name="db", help="Database migration commands")
    app.add_typer(roles_app, name="roles", help="Role catalog and assignment commands")
    app.add_typer(auth_app, name="auth", help="Access token commands")
    app.add_typer(audit_app, name="audit", help="Audit trail commands")


_register_subcommands()
