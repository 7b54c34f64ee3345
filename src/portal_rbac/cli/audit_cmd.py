"""Audit trail CLI commands."""

import asyncio
from datetime import datetime
from pathlib import Path

import typer

audit_app = typer.Typer()


@audit_app.command("export")
def export(
    output_format: str = typer.Option("csv", "--format", help="Output format (csv, json)"),
    output: Path = typer.Option(..., "--output", help="File to write"),
    user_id: str | None = typer.Option(None, "--user-id", help="Only entries for this target user"),
    performed_by: str | None = typer.Option(None, "--performed-by", help="Only entries by this actor"),
    start_time: datetime | None = typer.Option(None, "--since", help="Entries at or after this time"),
    end_time: datetime | None = typer.Option(None, "--until", help="Entries at or before this time"),
) -> None:
    """Export audit entries to a CSV or JSON file."""
    asyncio.run(_export(output_format, output, user_id, performed_by, start_time, end_time))


async def _export(
    output_format: str,
    output: Path,
    user_id: str | None,
    performed_by: str | None,
    start_time: datetime | None,
    end_time: datetime | None,
) -> None:
    from portal_rbac.core.config import get_settings
    from portal_rbac.core.database import dispose_engine, get_session_factory, init_engine
    from portal_rbac.schemas.audit import AuditFilters
    from portal_rbac.services.audit_service import AuditTrail

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)

    try:
        filters = AuditFilters(
            user_id=user_id,
            performed_by=performed_by,
            start_time=start_time,
            end_time=end_time,
        )
        factory = get_session_factory()
        async with factory() as session:
            result = await AuditTrail(session).export(
                filters, output_format.lower(), max_records=settings.export_max_records
            )
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(result.content)
        typer.echo(f"Exported {result.record_count} entries to {output}")
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        await dispose_engine()
