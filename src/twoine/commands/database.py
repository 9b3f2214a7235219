"""Command group: managed and external databases."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from twoine.commands._base import TwoineGroup
from twoine.domain.lifecycle import DatabaseEngineType

if TYPE_CHECKING:
    from twoine.commands._context import AppContext

_ENGINES = click.Choice([e.value for e in DatabaseEngineType])


@click.group(
    cls=TwoineGroup,
    examples="""\
  twoine database create demo1 shop mysql
  twoine database list --site demo1
  twoine database env shop
  twoine database reset-password shop""",
)
def database() -> None:
    """Create, link and remove per-site databases."""


@database.command(
    examples="""\
  twoine database create demo1 shop mysql
  twoine -q database create demo1 events mongodb"""
)
@click.argument("site_ref")
@click.argument("name")
@click.argument("engine_type", type=_ENGINES)
@click.option("--display-name", default=None)
@click.pass_obj
def create(
    app: AppContext, site_ref: str, name: str, engine_type: str, display_name: str | None
) -> None:
    """Create a database and its user. The password is shown once."""
    app.emit(
        app.database_orchestrator().create_database(
            site_ref, name, engine_type, display_name=display_name
        )
    )


@database.command(
    examples="""\
  twoine database link demo1 legacy postgresql --username app --host db.internal
  (the password is prompted for, or read from TWOINE_LINK_PASSWORD)"""
)
@click.argument("site_ref")
@click.argument("name")
@click.argument("engine_type", type=_ENGINES)
@click.option("--username", required=True)
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    envvar="TWOINE_LINK_PASSWORD",
    help="Prompted when omitted.",
)
@click.option("--host", default="localhost", show_default=True)
@click.option("--port", type=int, default=None, help="Defaults to the engine's port.")
@click.option("--database-name", default=None, help="Name on the server, if different.")
@click.option("--display-name", default=None)
@click.pass_obj
def link(
    app: AppContext,
    site_ref: str,
    name: str,
    engine_type: str,
    username: str,
    password: str,
    host: str,
    port: int | None,
    database_name: str | None,
    display_name: str | None,
) -> None:
    """Record an existing database without creating anything on the engine."""
    app.emit(
        app.database_orchestrator().link_external_database(
            site_ref,
            name,
            engine_type,
            username=username,
            password=password,
            host=host,
            port=port,
            database_name=database_name,
            display_name=display_name,
        )
    )


@database.command(
    examples="  twoine database delete shop\n  twoine database delete shop --keep-data"
)
@click.argument("database_ref")
@click.option("--keep-data", is_flag=True, help="Forget the record but leave the engine alone.")
@click.pass_obj
def delete(app: AppContext, database_ref: str, keep_data: bool) -> None:
    """Drop a database and its user, then soft-delete the record."""
    app.emit(app.database_orchestrator().delete_database(database_ref, keep_data=keep_data))


@database.command("reset-password", examples="  twoine database reset-password shop")
@click.argument("database_ref")
@click.pass_obj
def reset_password(app: AppContext, database_ref: str) -> None:
    """Rotate the database user's password. The new one is shown once."""
    app.emit(app.database_orchestrator().reset_password(database_ref))


@database.command(examples="  twoine database env shop")
@click.argument("database_ref")
@click.pass_obj
def env(app: AppContext, database_ref: str) -> None:
    """Show the environment variables a service needs to connect."""
    app.emit(app.database_orchestrator().env_variables(database_ref))


@database.command(examples="  twoine database stats shop")
@click.argument("database_ref")
@click.pass_obj
def stats(app: AppContext, database_ref: str) -> None:
    """Show size and object counts."""
    app.emit(app.database_orchestrator().get_stats(database_ref))


@database.command(examples="  twoine database test shop")
@click.argument("database_ref")
@click.pass_obj
def test(app: AppContext, database_ref: str) -> None:
    """Check that the stored credentials can connect."""
    app.emit(app.database_orchestrator().test_connection(database_ref))


@database.command(examples="  twoine database info shop")
@click.argument("database_ref")
@click.pass_obj
def info(app: AppContext, database_ref: str) -> None:
    """Show a database record with its site and stats."""
    app.emit(app.database_orchestrator().get_database(database_ref))


@database.command(
    "list",
    examples="  twoine database list\n  twoine database list --site demo1 --type mysql",
)
@click.option("--site", "site_ref", default=None)
@click.option("--type", "engine_type", type=_ENGINES, default=None)
@click.pass_obj
def list_cmd(app: AppContext, site_ref: str | None, engine_type: str | None) -> None:
    """List databases."""
    app.emit(app.database_orchestrator().list_databases(site_ref, engine_type=engine_type))
