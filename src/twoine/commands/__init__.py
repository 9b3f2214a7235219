"""Subcommand modules for twoine.

Provides register_commands(), which imports the command groups on demand
so ``twoine --help`` stays fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all command groups and standalone commands on the root CLI group."""
    # --- Groups ---
    from twoine.commands.database import database
    from twoine.commands.domain import domain
    from twoine.commands.service import service
    from twoine.commands.site import site

    cli.add_command(site)
    cli.add_command(service)
    cli.add_command(domain)
    cli.add_command(database)

    # --- Standalone commands ---
    from twoine.commands.init_cmd import init_cmd
    from twoine.commands.upgrade import upgrade

    cli.add_command(init_cmd)
    cli.add_command(upgrade)
