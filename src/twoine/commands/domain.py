"""Command group: domains, certificates and the platform domain."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from twoine.commands._base import TwoineGroup
from twoine.domain.lifecycle import DomainStatus, DomainType
from twoine.orchestrators.result import ServiceResult

if TYPE_CHECKING:
    from twoine.commands._context import AppContext
    from twoine.orchestrators.domain import DomainOrchestrator


def _domains(app: AppContext) -> DomainOrchestrator:
    from twoine.orchestrators.domain import DomainOrchestrator

    return DomainOrchestrator(app.platform)


def _target_service(
    app: AppContext, op: str, site_ref: str | None, service_ref: str | None
) -> str | None:
    if service_ref is None:
        return None
    if site_ref is None:
        raise click.UsageError("--service needs --site.")
    return app.service_id(op, site_ref, service_ref)


@click.group(
    cls=TwoineGroup,
    examples="""\
  twoine domain add demo1.example.com --site demo1 --service web
  twoine domain list --site demo1
  twoine domain dns demo1.example.com
  twoine domain platform setup panel.example.com --port 8080""",
)
def domain() -> None:
    """Map hostnames to sites and services through the reverse proxy."""


@domain.command(
    examples="""\
  twoine domain add demo1.example.com
  twoine domain add demo1.example.com --site demo1 --service web
  twoine domain add api.example.com --site demo1 --port 10004 --no-ssl"""
)
@click.argument("hostname")
@click.option("--site", "site_ref", default=None, help="Site to route to.")
@click.option("--service", "service_ref", default=None, help="Service of that site.")
@click.option("--port", "target_port", type=int, default=None, help="Explicit upstream port.")
@click.option("--ssl/--no-ssl", "enable_ssl", default=True, show_default=True)
@click.pass_obj
def add(
    app: AppContext,
    hostname: str,
    site_ref: str | None,
    service_ref: str | None,
    target_port: int | None,
    enable_ssl: bool,
) -> None:
    """Register a hostname, issue its certificate and publish the vhost."""
    service_id = _target_service(app, "add_domain", site_ref, service_ref)
    app.emit(
        _domains(app).add_domain(
            hostname,
            site_id=site_ref,
            service_id=service_id,
            target_port=target_port,
            enable_ssl=enable_ssl,
        )
    )


@domain.command(
    examples="  twoine domain remove demo1.example.com\n  twoine domain remove old.io --force"
)
@click.argument("domain_ref")
@click.option("--force", is_flag=True, help="Continue past failing steps; required for platform.")
@click.pass_obj
def remove(app: AppContext, domain_ref: str, force: bool) -> None:
    """Remove the vhost, certificate and record of a domain."""
    app.emit(_domains(app).remove_domain(domain_ref, force=force))


@domain.command(examples="  twoine domain assign shop.example.com demo1 --service web")
@click.argument("domain_ref")
@click.argument("site_ref")
@click.option("--service", "service_ref", default=None)
@click.option("--port", "target_port", type=int, default=None)
@click.pass_obj
def assign(
    app: AppContext,
    domain_ref: str,
    site_ref: str,
    service_ref: str | None,
    target_port: int | None,
) -> None:
    """Point a domain at a site (and optionally one of its services)."""
    service_id = _target_service(app, "assign_domain", site_ref, service_ref)
    app.emit(
        _domains(app).assign_domain(
            domain_ref, site_ref, service_id=service_id, target_port=target_port
        )
    )


@domain.command(examples="  twoine domain unassign shop.example.com")
@click.argument("domain_ref")
@click.pass_obj
def unassign(app: AppContext, domain_ref: str) -> None:
    """Detach a domain from its site and disable its vhost."""
    app.emit(_domains(app).unassign_domain(domain_ref))


@domain.command(
    "list",
    examples="  twoine domain list\n  twoine domain list --site demo1 --status error",
)
@click.option("--site", "site_ref", default=None)
@click.option("--type", "domain_type", type=click.Choice([t.value for t in DomainType]))
@click.option("--status", type=click.Choice([s.value for s in DomainStatus]), default=None)
@click.pass_obj
def list_cmd(
    app: AppContext, site_ref: str | None, domain_type: str | None, status: str | None
) -> None:
    """List domains."""
    app.emit(_domains(app).list_domains(site_id=site_ref, domain_type=domain_type, status=status))


@domain.command(examples="  twoine domain info demo1.example.com")
@click.argument("domain_ref")
@click.pass_obj
def info(app: AppContext, domain_ref: str) -> None:
    """Show a domain record."""
    app.emit(_domains(app).get_domain(domain_ref))


@domain.command(examples="  twoine domain dns demo1.example.com")
@click.argument("domain_ref")
@click.pass_obj
def dns(app: AppContext, domain_ref: str) -> None:
    """Show the DNS records to create for a domain."""
    app.emit(_domains(app).dns_info(domain_ref))


@domain.command("regen-cert", examples="  twoine domain regen-cert demo1.example.com")
@click.argument("domain_ref")
@click.pass_obj
def regen_cert(app: AppContext, domain_ref: str) -> None:
    """Issue a fresh self-signed certificate and reload the proxy."""
    app.emit(_domains(app).regenerate_certificate(domain_ref))


@domain.command(examples="  twoine domain cleanup")
@click.pass_obj
def cleanup(app: AppContext) -> None:
    """Remove orphaned domains and flag those whose service is gone."""
    orchestrator = _domains(app)
    orphans = orchestrator.cleanup_orphan_domains()
    invalid = orchestrator.cleanup_invalid_service_domains()
    if not orphans.ok:
        app.emit(orphans)
    if not invalid.ok:
        app.emit(invalid)
    app.emit(
        ServiceResult(
            ok=True,
            op="cleanup_domains",
            data={
                "cleaned": orphans.data["cleaned"],
                "domains": orphans.data["domains"],
                "updated": invalid.data["updated"],
                "invalid": invalid.data["domains"],
            },
            warnings=[*orphans.warnings, *invalid.warnings],
        )
    )


# ── Platform domain ───────────────────────────────────────────────────


@domain.group(
    examples="""\
  twoine domain platform setup panel.example.com --port 8080
  twoine domain platform update --port 8081"""
)
def platform() -> None:
    """The single hostname serving the control panel."""


@platform.command("setup", examples="  twoine domain platform setup panel.example.com --port 8080")
@click.argument("hostname")
@click.option("--port", type=int, required=True, help="Local port of the control panel.")
@click.option("--ssl/--no-ssl", "enable_ssl", default=True, show_default=True)
@click.pass_obj
def platform_setup(app: AppContext, hostname: str, port: int, enable_ssl: bool) -> None:
    """Configure the platform domain."""
    app.emit(_domains(app).setup_platform_domain(hostname, port, enable_ssl=enable_ssl))


@platform.command("update", examples="  twoine domain platform update --hostname new.example.com")
@click.option("--hostname", default=None)
@click.option("--port", type=int, default=None)
@click.pass_obj
def platform_update(app: AppContext, hostname: str | None, port: int | None) -> None:
    """Change the platform domain's hostname or port."""
    if hostname is None and port is None:
        raise click.UsageError("Nothing to update.")
    app.emit(_domains(app).update_platform_domain(hostname=hostname, port=port))
