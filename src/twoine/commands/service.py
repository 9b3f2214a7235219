"""Command group: service lifecycle and custom commands.

Services are addressed as ``SITE SERVICE`` where either part may be a
name or an id.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import click

from twoine.commands._base import TwoineGroup
from twoine.commands.site import parse_assignments
from twoine.domain.runtimes import RuntimeType

if TYPE_CHECKING:
    from twoine.commands._context import AppContext
    from twoine.orchestrators.service import ServiceOrchestrator


def _services(app: AppContext) -> ServiceOrchestrator:
    from twoine.orchestrators.service import ServiceOrchestrator

    return ServiceOrchestrator(app.platform)


@click.group(
    cls=TwoineGroup,
    examples="""\
  twoine service create demo1 api --start "npm start"
  twoine service list demo1
  twoine service restart demo1 api
  twoine service command add demo1 api migrate "npm run migrate" --requires-stop""",
)
def service() -> None:
    """Create, control and remove the supervised processes of a site."""


@service.command(
    examples="""\
  twoine service create demo1 api --start "npm start"
  twoine service create demo1 web --runtime python --start "python3 app.py" --port 10005
  twoine service create demo1 worker --start "node worker.js" --depends-on api"""
)
@click.argument("site_ref")
@click.argument("name")
@click.option("--start", "start_command", required=True, help="Start command.")
@click.option(
    "--runtime",
    type=click.Choice([r.value for r in RuntimeType]),
    default=RuntimeType.NODE.value,
    show_default=True,
)
@click.option("--port", type=int, default=None, help="Port inside the site's range.")
@click.option("--install", "install_command", default=None, help="Install command.")
@click.option("--build", "build_command", default=None, help="Build command.")
@click.option("--stop-command", default=None, help="Graceful stop command.")
@click.option("--display-name", default=None)
@click.option("--description", default="")
@click.option("--env", "env_pairs", multiple=True, help="Service variable KEY=VALUE.")
@click.option("--auto-start/--no-auto-start", default=True, show_default=True)
@click.option("--priority", "start_priority", type=int, default=50, show_default=True)
@click.option("--depends-on", multiple=True, help="Service of the same site (repeatable).")
@click.option("--memory", "memory_mb", type=int, default=None, help="Memory ceiling in MB.")
@click.option("--cpu", "cpu_percent", type=int, default=None, help="CPU quota in percent.")
@click.option("--health-endpoint", default="/health", show_default=True)
@click.pass_obj
def create(
    app: AppContext,
    site_ref: str,
    name: str,
    start_command: str,
    runtime: str,
    port: int | None,
    install_command: str | None,
    build_command: str | None,
    stop_command: str | None,
    display_name: str | None,
    description: str,
    env_pairs: tuple[str, ...],
    auto_start: bool,
    start_priority: int,
    depends_on: tuple[str, ...],
    memory_mb: int | None,
    cpu_percent: int | None,
    health_endpoint: str,
) -> None:
    """Create a service with its working directory, unit and env file."""
    app.emit(
        _services(app).create_service(
            site_ref,
            name,
            start_command=start_command,
            runtime=runtime,
            port=port,
            install_command=install_command,
            build_command=build_command,
            stop_command=stop_command,
            display_name=display_name,
            description=description,
            environment=parse_assignments(env_pairs),
            auto_start=auto_start,
            start_priority=start_priority,
            depends_on=list(depends_on),
            memory_mb=memory_mb,
            cpu_percent=cpu_percent,
            health_endpoint=health_endpoint,
        )
    )


@service.command(
    examples="  twoine service delete demo1 api\n  twoine service delete demo1 api --force"
)
@click.argument("site_ref")
@click.argument("service_ref")
@click.option("--force", is_flag=True, help="Delete even if running; also remove its files.")
@click.pass_obj
def delete(app: AppContext, site_ref: str, service_ref: str, force: bool) -> None:
    """Remove a service, its unit and its record."""
    service_id = app.service_id("delete_service", site_ref, service_ref)
    app.emit(_services(app).delete_service(service_id, force=force))


@service.command(examples="  twoine service start demo1 api")
@click.argument("site_ref")
@click.argument("service_ref")
@click.pass_obj
def start(app: AppContext, site_ref: str, service_ref: str) -> None:
    """Start a service."""
    app.emit(_services(app).start_service(app.service_id("start_service", site_ref, service_ref)))


@service.command(examples="  twoine service stop demo1 api")
@click.argument("site_ref")
@click.argument("service_ref")
@click.pass_obj
def stop(app: AppContext, site_ref: str, service_ref: str) -> None:
    """Stop a service."""
    app.emit(_services(app).stop_service(app.service_id("stop_service", site_ref, service_ref)))


@service.command(examples="  twoine service restart demo1 api")
@click.argument("site_ref")
@click.argument("service_ref")
@click.pass_obj
def restart(app: AppContext, site_ref: str, service_ref: str) -> None:
    """Restart a service (starts it if it was not running)."""
    service_id = app.service_id("restart_service", site_ref, service_ref)
    app.emit(_services(app).restart_service(service_id))


@service.command(examples="  twoine service status demo1 api")
@click.argument("site_ref")
@click.argument("service_ref")
@click.pass_obj
def status(app: AppContext, site_ref: str, service_ref: str) -> None:
    """Refresh and show the live unit status."""
    app.emit(_services(app).get_status(app.service_id("get_status", site_ref, service_ref)))


@service.command(examples="  twoine service install demo1 api")
@click.argument("site_ref")
@click.argument("service_ref")
@click.pass_obj
def install(app: AppContext, site_ref: str, service_ref: str) -> None:
    """Run the install command as the site user."""
    service_id = app.service_id("install_service", site_ref, service_ref)
    app.emit(_services(app).install_service(service_id))


@service.command(examples="  twoine service build demo1 api")
@click.argument("site_ref")
@click.argument("service_ref")
@click.pass_obj
def build(app: AppContext, site_ref: str, service_ref: str) -> None:
    """Run the build command as the site user."""
    app.emit(_services(app).build_service(app.service_id("build_service", site_ref, service_ref)))


@service.command(examples="  twoine service health demo1 api")
@click.argument("site_ref")
@click.argument("service_ref")
@click.pass_obj
def health(app: AppContext, site_ref: str, service_ref: str) -> None:
    """Probe the service's health endpoint on loopback."""
    app.emit(_services(app).check_health(app.service_id("check_health", site_ref, service_ref)))


@service.command(
    examples="""\
  twoine service update demo1 api --start "npm run serve" --memory 512
  twoine service update demo1 api --env NODE_ENV=production --priority 10"""
)
@click.argument("site_ref")
@click.argument("service_ref")
@click.option("--display-name", default=None)
@click.option("--description", default=None)
@click.option("--start", "start_command", default=None)
@click.option("--install", "install_command", default=None)
@click.option("--build", "build_command", default=None)
@click.option("--stop-command", default=None)
@click.option("--env", "env_pairs", multiple=True, help="Replaces the service variables.")
@click.option("--auto-start/--no-auto-start", default=None)
@click.option("--priority", "start_priority", type=int, default=None)
@click.option("--memory", "memory_mb", type=int, default=None)
@click.option("--cpu", "cpu_percent", type=int, default=None)
@click.option("--health-endpoint", default=None)
@click.pass_obj
def update(
    app: AppContext,
    site_ref: str,
    service_ref: str,
    display_name: str | None,
    description: str | None,
    start_command: str | None,
    install_command: str | None,
    build_command: str | None,
    stop_command: str | None,
    env_pairs: tuple[str, ...],
    auto_start: bool | None,
    start_priority: int | None,
    memory_mb: int | None,
    cpu_percent: int | None,
    health_endpoint: str | None,
) -> None:
    """Change a service; the unit and env file are rewritten as needed."""
    changes: dict[str, Any] = {}
    if display_name is not None:
        changes["display_name"] = display_name
    if description is not None:
        changes["description"] = description
    commands = {
        key: value
        for key, value in (
            ("start", start_command),
            ("install", install_command),
            ("build", build_command),
            ("stop", stop_command),
        )
        if value is not None
    }
    if commands:
        changes["commands"] = commands
    if env_pairs:
        changes["environment"] = parse_assignments(env_pairs)
    if auto_start is not None:
        changes["auto_start"] = auto_start
    if start_priority is not None:
        changes["start_priority"] = start_priority
    resources = {
        key: value
        for key, value in (("memory_mb", memory_mb), ("cpu_percent", cpu_percent))
        if value is not None
    }
    if resources:
        changes["resources"] = resources
    if health_endpoint is not None:
        changes["health_check"] = {"endpoint": health_endpoint}
    if not changes:
        raise click.UsageError("Nothing to update.")

    service_id = app.service_id("update_service", site_ref, service_ref)
    app.emit(_services(app).update_service(service_id, changes))


@service.command(examples="  twoine service info demo1 api")
@click.argument("site_ref")
@click.argument("service_ref")
@click.pass_obj
def info(app: AppContext, site_ref: str, service_ref: str) -> None:
    """Show a service record."""
    app.emit(_services(app).get_service(app.service_id("get_service", site_ref, service_ref)))


@service.command("list", examples="  twoine service list demo1")
@click.argument("site_ref")
@click.pass_obj
def list_cmd(app: AppContext, site_ref: str) -> None:
    """List a site's services."""
    app.emit(_services(app).list_services(site_ref))


# ── Custom commands ───────────────────────────────────────────────────


@service.group(
    examples="""\
  twoine service command add demo1 api migrate "npm run migrate" --requires-stop
  twoine service command list demo1 api
  twoine service command run demo1 api migrate
  twoine service command remove demo1 api migrate"""
)
def command() -> None:
    """Named operator commands run as the site user."""


@command.command("add", examples='  twoine service command add demo1 api seed "npm run seed"')
@click.argument("site_ref")
@click.argument("service_ref")
@click.argument("name")
@click.argument("command_line")
@click.option("--display-name", default=None)
@click.option("--description", default="")
@click.option("--timeout", type=int, default=300, show_default=True, help="Seconds.")
@click.option("--requires-stop", is_flag=True, help="Stop the service while it runs.")
@click.option("--dangerous", is_flag=True, help="Flag for confirmation in UIs.")
@click.pass_obj
def command_add(
    app: AppContext,
    site_ref: str,
    service_ref: str,
    name: str,
    command_line: str,
    display_name: str | None,
    description: str,
    timeout: int,
    requires_stop: bool,
    dangerous: bool,
) -> None:
    """Add a custom command to a service."""
    service_id = app.service_id("add_custom_command", site_ref, service_ref)
    app.emit(
        _services(app).add_custom_command(
            service_id,
            name,
            command_line,
            display_name=display_name,
            description=description,
            timeout=timeout,
            requires_stop=requires_stop,
            dangerous=dangerous,
        )
    )


@command.command("remove", examples="  twoine service command remove demo1 api seed")
@click.argument("site_ref")
@click.argument("service_ref")
@click.argument("name")
@click.pass_obj
def command_remove(app: AppContext, site_ref: str, service_ref: str, name: str) -> None:
    """Remove a custom command."""
    service_id = app.service_id("remove_custom_command", site_ref, service_ref)
    app.emit(_services(app).remove_custom_command(service_id, name))


@command.command("list", examples="  twoine service command list demo1 api")
@click.argument("site_ref")
@click.argument("service_ref")
@click.pass_obj
def command_list(app: AppContext, site_ref: str, service_ref: str) -> None:
    """List a service's custom commands."""
    service_id = app.service_id("list_custom_commands", site_ref, service_ref)
    app.emit(_services(app).list_custom_commands(service_id))


@command.command("run", examples="  twoine service command run demo1 api migrate")
@click.argument("site_ref")
@click.argument("service_ref")
@click.argument("name")
@click.pass_obj
def command_run(app: AppContext, site_ref: str, service_ref: str, name: str) -> None:
    """Execute a custom command."""
    service_id = app.service_id("execute_custom_command", site_ref, service_ref)
    app.emit(_services(app).execute_custom_command(service_id, name))
