"""Access token CLI commands."""

import typer

auth_app = typer.Typer()


@auth_app.command("token")
def token(
    user_id: str = typer.Argument(..., help="User ID placed in the token subject"),
    expires_minutes: int | None = typer.Option(None, "--expires-minutes", help="Override the configured lifetime"),
) -> None:
    """Mint a bearer token for USER_ID.

    The token only identifies the user; permissions come from the role the
    user holds when the token is presented.
    """
    from portal_rbac.core.config import get_settings
    from portal_rbac.core.security import create_access_token

    settings = get_settings()
    typer.echo(
        create_access_token(
            user_id,
            settings.jwt_secret_key,
            settings.jwt_algorithm,
            expires_minutes or settings.jwt_access_token_expire_minutes,
        )
    )
