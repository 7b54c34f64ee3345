"""Database migration CLI commands using Alembic programmatically."""

from typing import TYPE_CHECKING

import typer
from loguru import logger

if TYPE_CHECKING:
    from alembic.config import Config

db_app = typer.Typer()

ALEMBIC_INI = "alembic.ini"


def _alembic_config() -> "Config":
    from alembic.config import Config

    return Config(ALEMBIC_INI)


@db_app.command()
def upgrade(
    revision: str = typer.Argument("head", help="Target revision"),
) -> None:
    """Create or migrate the roles, user_roles and audit_log tables."""
    from alembic import command

    logger.info(f"Upgrading database to {revision}")
    command.upgrade(_alembic_config(), revision)
    logger.info("Database upgrade complete")


@db_app.command()
def downgrade(
    revision: str = typer.Argument("-1", help="Target revision"),
) -> None:
    """Roll back to the target revision."""
    from alembic import command

    logger.info(f"Downgrading database to {revision}")
    command.downgrade(_alembic_config(), revision)
    logger.info("Database downgrade complete")


@db_app.command()
def current() -> None:
    """Show the current database migration revision."""
    from alembic import command

    command.current(_alembic_config(), verbose=True)
