"""Command: state-database schema migration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from twoine.commands._base import TwoineCommand

if TYPE_CHECKING:
    from twoine.commands._context import AppContext


@click.command(
    cls=TwoineCommand,
    examples="""\
  twoine upgrade
  twoine upgrade --check
  twoine --json upgrade --check""",
)
@click.option(
    "--check", "check_only", is_flag=True, help="Show pending migrations without applying."
)
@click.pass_obj
def upgrade(app: AppContext, check_only: bool) -> None:
    """Run pending state-database migrations."""
    from twoine.orchestrators.upgrade import UpgradeOrchestrator

    orch = UpgradeOrchestrator(app.platform)
    app.emit(orch.check_pending() if check_only else orch.apply())
