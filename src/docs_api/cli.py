# cli.py
import logging

import click

from docs_api.config.settings import get_settings
from docs_api.database.local import (
    RoleNotFoundError,
    add_user_role,
    get_user_by_email,
    get_user_roles,
    init_db,
    seed_roles,
)
from docs_api.main import configure_logging

# Configure logging
logger = logging.getLogger(__name__)


@click.group()
def cli():
    """CLI commands for the Document API"""
    configure_logging(get_settings().log_level)


@cli.command()
def show_config():
    """Show current configuration"""
    settings = get_settings()

    click.echo("Current Configuration:")
    for name, value in settings.masked().items():
        click.echo(f"  {name}: {value}")


@cli.command("init-db")
def init_db_command():
    """Create the database tables and seed the default roles"""
    settings = get_settings()
    init_db(settings.database_path)
    seed_roles(settings.database_path)
    click.echo(f"Initialized database at {settings.database_path}")


@cli.command()
@click.argument("email")
def grant_admin(email):
    """Grant the admin role to an existing user"""
    settings = get_settings()
    init_db(settings.database_path)
    seed_roles(settings.database_path)

    user = get_user_by_email(email, db_path=settings.database_path)
    if user is None:
        raise click.ClickException(f"User not found: {email}")

    try:
        add_user_role(user["user_id"], "admin", db_path=settings.database_path)
    except RoleNotFoundError:
        raise click.ClickException("Admin role not configured in the system")

    roles = get_user_roles(user["user_id"], db_path=settings.database_path)
    click.echo(f"{user['email']}: {', '.join(roles)}")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host, port, reload):
    """Run the API with uvicorn"""
    import uvicorn

    uvicorn.run("docs_api.main:create_app", host=host, port=port, reload=reload, factory=True)


if __name__ == "__main__":
    cli()
