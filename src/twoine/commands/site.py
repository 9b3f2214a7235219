"""Command group: site lifecycle, environment and SFTP."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from twoine.commands._base import TwoineGroup
from twoine.domain.lifecycle import CascadeAction, SiteStatus

if TYPE_CHECKING:
    from twoine.commands._context import AppContext
    from twoine.orchestrators.site import SiteOrchestrator


def _sites(app: AppContext) -> SiteOrchestrator:
    from twoine.orchestrators.site import SiteOrchestrator

    return SiteOrchestrator(app.platform)


def parse_assignments(pairs: tuple[str, ...]) -> dict[str, str]:
    """``KEY=VALUE`` options into a dict; the value may itself contain ``=``."""
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}")
        env[key] = value
    return env


@click.group(
    cls=TwoineGroup,
    examples="""\
  twoine site create demo1
  twoine site list --status active
  twoine site info demo1
  twoine site stop demo1
  twoine site delete demo1 --force --remove-files --databases delete""",
)
def site() -> None:
    """Create, control and remove sites (tenants)."""


@site.command(
    examples="""\
  twoine site create demo1
  twoine site create shop --display-name "Shop" --env NODE_ENV=production"""
)
@click.argument("name")
@click.option("--display-name", default=None, help="Human-readable name.")
@click.option("--description", default="", help="Free-text description.")
@click.option("--owner", default=None, help="Owning account, for bookkeeping.")
@click.option("--env", "env_pairs", multiple=True, help="Site variable KEY=VALUE (repeatable).")
@click.pass_obj
def create(
    app: AppContext,
    name: str,
    display_name: str | None,
    description: str,
    owner: str | None,
    env_pairs: tuple[str, ...],
) -> None:
    """Create a site: port range, OS user, directory tree and SFTP account."""
    app.emit(
        _sites(app).create_site(
            name,
            display_name=display_name,
            description=description,
            owner=owner,
            environment=parse_assignments(env_pairs),
        )
    )


@site.command(
    examples="""\
  twoine site delete demo1
  twoine site delete demo1 --force --remove-files
  twoine site delete demo1 --databases keep"""
)
@click.argument("site_ref")
@click.option("--force", is_flag=True, help="Delete even if services are running.")
@click.option("--remove-files", is_flag=True, help="Remove the site directory tree.")
@click.option(
    "--databases",
    "database_action",
    type=click.Choice([a.value for a in CascadeAction]),
    default=CascadeAction.UNLINK.value,
    show_default=True,
    help="What to do with the site's databases.",
)
@click.pass_obj
def delete(
    app: AppContext, site_ref: str, force: bool, remove_files: bool, database_action: str
) -> None:
    """Tear down a site and everything it owns."""
    app.emit(
        _sites(app).delete_site(
            site_ref,
            force=force,
            remove_files=remove_files,
            database_action=CascadeAction(database_action),
        )
    )


@site.command(examples="  twoine site start demo1")
@click.argument("site_ref")
@click.pass_obj
def start(app: AppContext, site_ref: str) -> None:
    """Start every service, lowest priority first."""
    app.emit(_sites(app).start_site(site_ref))


@site.command(examples="  twoine site stop demo1")
@click.argument("site_ref")
@click.pass_obj
def stop(app: AppContext, site_ref: str) -> None:
    """Stop every service, highest priority first."""
    app.emit(_sites(app).stop_site(site_ref))


@site.command(examples="  twoine site restart demo1")
@click.argument("site_ref")
@click.pass_obj
def restart(app: AppContext, site_ref: str) -> None:
    """Stop, then start every service."""
    app.emit(_sites(app).restart_site(site_ref))


@site.command(examples="  twoine site info demo1\n  twoine --json site info demo1")
@click.argument("site_ref")
@click.pass_obj
def info(app: AppContext, site_ref: str) -> None:
    """Show a site with live service status, domains and databases."""
    app.emit(_sites(app).get_site_info(site_ref))


@site.command("list", examples="  twoine site list\n  twoine -q site list --status stopped")
@click.option("--status", type=click.Choice([s.value for s in SiteStatus]), default=None)
@click.pass_obj
def list_cmd(app: AppContext, status: str | None) -> None:
    """List sites."""
    app.emit(_sites(app).list_sites(status=status))


@site.command(
    examples="""\
  twoine site env demo1 --set NODE_ENV=production --set LOG_LEVEL=info
  twoine site env demo1 --unset LOG_LEVEL
  twoine site env demo1 --replace --set ONLY=this"""
)
@click.argument("site_ref")
@click.option("--set", "set_pairs", multiple=True, help="KEY=VALUE to set (repeatable).")
@click.option("--unset", "unset_keys", multiple=True, help="Key to remove (repeatable).")
@click.option("--replace", is_flag=True, help="Replace all variables instead of merging.")
@click.pass_obj
def env(
    app: AppContext,
    site_ref: str,
    set_pairs: tuple[str, ...],
    unset_keys: tuple[str, ...],
    replace: bool,
) -> None:
    """Update site-level environment variables and rewrite every env file."""
    app.emit(
        _sites(app).update_environment(
            site_ref, parse_assignments(set_pairs), replace=replace, unset=list(unset_keys)
        )
    )


@site.command(examples="  twoine site path demo1 services/api")
@click.argument("site_ref")
@click.argument("relative", default="")
@click.pass_obj
def path(app: AppContext, site_ref: str, relative: str) -> None:
    """Resolve a path inside the site root (traversal outside it is rejected)."""
    app.emit(_sites(app).resolve_path(site_ref, relative))


# ── SFTP ──────────────────────────────────────────────────────────────


@site.group(
    examples="""\
  twoine site sftp reset-password demo1
  twoine site sftp disable demo1
  twoine site sftp enable demo1"""
)
def sftp() -> None:
    """Manage a site's SFTP account."""


@sftp.command("reset-password", examples="  twoine site sftp reset-password demo1")
@click.argument("site_ref")
@click.pass_obj
def sftp_reset_password(app: AppContext, site_ref: str) -> None:
    """Generate a new SFTP password (shown once)."""
    app.emit(_sites(app).reset_sftp_password(site_ref))


@sftp.command("enable", examples="  twoine site sftp enable demo1")
@click.argument("site_ref")
@click.pass_obj
def sftp_enable(app: AppContext, site_ref: str) -> None:
    """Re-enable the SFTP account."""
    app.emit(_sites(app).set_sftp_enabled(site_ref, enabled=True))


@sftp.command("disable", examples="  twoine site sftp disable demo1")
@click.argument("site_ref")
@click.pass_obj
def sftp_disable(app: AppContext, site_ref: str) -> None:
    """Lock the SFTP account without deleting it."""
    app.emit(_sites(app).set_sftp_enabled(site_ref, enabled=False))
