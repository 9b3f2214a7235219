"""Command: state initialization (named init_cmd to avoid shadowing builtins)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from twoine.commands._base import TwoineCommand

if TYPE_CHECKING:
    from twoine.commands._context import AppContext


@click.command(
    "init",
    cls=TwoineCommand,
    examples="""\
  twoine init
  twoine -c /etc/twoine/twoine.toml init""",
)
@click.pass_obj
def init_cmd(app: AppContext) -> None:
    """Create the state directory and database, stamped at the latest schema."""
    from twoine.orchestrators.upgrade import UpgradeOrchestrator

    app.emit(UpgradeOrchestrator(app.platform).stamp_current())
