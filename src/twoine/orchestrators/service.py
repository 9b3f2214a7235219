"""ServiceOrchestrator: per-site process lifecycle.

Create pipeline: VALIDATE → RESOLVE PORT → PERSIST → WORKDIR → UNIT → ENV FILE → RESPOND

Any step failing after the record is persisted deletes the record and
tears down whatever was installed; failures before persistence simply
propagate. Start/stop/restart drive ``status.current`` through the
service state machine and record supervisor failures on the record.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from twoine.domain.entities import (
    CustomCommand,
    HealthCheck,
    Service,
    ServiceCommands,
    ServiceResources,
    Site,
    new_service,
)
from twoine.domain.errors import (
    ConflictError,
    ExternalCommandError,
    NotFoundError,
    TwoineError,
    ValidationError,
)
from twoine.domain.lifecycle import (
    SERVICE_BUSY_STATES,
    SERVICE_TRANSITIONS,
    DesiredState,
    ServiceState,
    SiteStatus,
    is_valid_transition,
)
from twoine.domain.ports import resolve_service_port
from twoine.domain.runtimes import RuntimeType, runtime_defaults
from twoine.domain.validation import (
    validate_custom_command,
    validate_custom_command_name,
    validate_environment,
    validate_service_name,
    validate_start_command,
    validate_timeout,
)
from twoine.infrastructure.filesystem import (
    best_effort,
    install_file,
    make_directory,
    remove_tree,
)
from twoine.infrastructure.runner import CommandResult
from twoine.infrastructure.supervisor import UnitStatus
from twoine.orchestrators.base import BaseOrchestrator
from twoine.orchestrators.result import ServiceResult
from twoine.orchestrators.telemetry import trace_span, traced

logger = logging.getLogger(__name__)

# systemd ActiveState → observed service state
_ACTIVE_STATE_MAP: dict[str, ServiceState] = {
    "active": ServiceState.RUNNING,
    "reloading": ServiceState.RUNNING,
    "activating": ServiceState.STARTING,
    "deactivating": ServiceState.STOPPING,
    "inactive": ServiceState.STOPPED,
    "failed": ServiceState.FAILED,
}

UPDATABLE_FIELDS = frozenset(
    {
        "display_name",
        "description",
        "commands",
        "environment",
        "auto_start",
        "start_priority",
        "resources",
        "health_check",
    }
)

_OUTPUT_TAIL = 4000


def observed_state(status: UnitStatus) -> ServiceState:
    return _ACTIVE_STATE_MAP.get(status.active, ServiceState.UNKNOWN)


def _command_output(result: CommandResult) -> dict[str, Any]:
    return {
        "exit_code": result.returncode,
        "stdout": result.stdout[-_OUTPUT_TAIL:],
        "stderr": result.stderr[-_OUTPUT_TAIL:],
    }


def _command_failed(label: str, result: CommandResult) -> ExternalCommandError:
    return ExternalCommandError(
        f"{label} failed with exit code {result.returncode}",
        argv=result.argv,
        returncode=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
    )


class ServiceOrchestrator(BaseOrchestrator):
    """Creates, controls and removes the supervised processes of a site."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @traced
    def create_service(
        self,
        site_id: str,
        name: str,
        *,
        start_command: str,
        runtime: str = RuntimeType.NODE,
        port: int | None = None,
        install_command: str | None = None,
        build_command: str | None = None,
        stop_command: str | None = None,
        display_name: str | None = None,
        description: str = "",
        environment: Mapping[str, object] | None = None,
        auto_start: bool = True,
        start_priority: int = 50,
        depends_on: list[str] | None = None,
        memory_mb: int | None = None,
        cpu_percent: int | None = None,
        health_endpoint: str = "/health",
    ) -> ServiceResult:
        """Create a service record, its working directory, unit and env file."""
        op = "create_service"
        warnings: list[str] = []
        platform = self._platform

        try:
            validate_service_name(name)
            site = platform.sites.require(site_id)
            if site.status != SiteStatus.ACTIVE:
                msg = f"Site {site.name} is {site.status}; services need an active site"
                raise ConflictError(msg, detail={"site": site.name, "status": str(site.status)})
            commands = ServiceCommands(
                start=validate_start_command(start_command),
                install=validate_custom_command(install_command) if install_command else None,
                build=validate_custom_command(build_command) if build_command else None,
                stop=validate_custom_command(stop_command) if stop_command else None,
            )
            try:
                runtime_type = RuntimeType(runtime)
            except ValueError:
                msg = f"Unknown runtime: {runtime}"
                raise ValidationError(msg, detail={"field": "runtime", "value": runtime}) from None
            env = validate_environment(environment or {})
            if platform.services.get_by_name(site.id, name) is not None:
                msg = f"Service '{name}' already exists in site {site.name}"
                raise ConflictError(msg, detail={"site": site.name, "service": name})
            wants = self._dependency_units(site, depends_on or [])
            assigned = resolve_service_port(
                site.port_range, platform.services.used_ports(site.id), port
            )

            svc_cfg = self._settings.services
            service = new_service(
                site,
                name,
                port=assigned,
                commands=commands,
                unit_prefix=self._settings.supervisor.unit_prefix,
                now=platform.now_iso(),
                runtime=runtime_type,
                display_name=display_name,
                description=description,
                environment=env,
                auto_start=auto_start,
                start_priority=start_priority,
                depends_on=depends_on or [],
                resources=ServiceResources(
                    memory_mb=memory_mb or svc_cfg.memory_mb,
                    cpu_percent=cpu_percent or svc_cfg.cpu_percent,
                ),
                health_check=HealthCheck(endpoint=health_endpoint, timeout=svc_cfg.health_timeout),
            )
            platform.services.add(service)
        except TwoineError as exc:
            return self._failure(op, exc)

        try:
            service = self._provision(site, service, wants)
        except TwoineError as exc:
            self._rollback_create(service, warnings)
            return self._failure(op, exc, warnings=warnings)

        logger.info("Created service %s (port %d)", service.unit.name, service.port)
        return ServiceResult(
            ok=True,
            op=op,
            data={"service": service.model_dump(mode="json"), "site": site.name},
            warnings=warnings,
        )

    def _dependency_units(self, site: Site, depends_on: list[str]) -> list[str]:
        units: list[str] = []
        for dep in depends_on:
            other = self._platform.services.get_by_name(site.id, dep)
            if other is None:
                msg = f"Dependency service '{dep}' not found in site {site.name}"
                raise NotFoundError(msg, detail={"site": site.name, "service": dep})
            units.append(other.unit.name)
        return units

    def _provision(self, site: Site, service: Service, wants: list[str]) -> Service:
        platform = self._platform
        with trace_span("workdir"):
            make_directory(
                platform.runner,
                service.working_dir,
                owner=site.os_user.username,
                mode="750",
            )
        with trace_span("unit_install"):
            text = platform.supervisor.render_unit(service, site, wants=wants)
            platform.supervisor.setup(service.unit.name, text)
        with trace_span("env_file"):
            self.write_env_file(site, service)

        now = platform.now_iso()
        service = service.model_copy(
            update={
                "unit": service.unit.model_copy(
                    update={"unit_file_created": True, "unit_file_updated_at": now}
                ),
                "updated_at": now,
            }
        )
        return platform.services.save(service)

    def _rollback_create(self, service: Service, warnings: list[str]) -> None:
        platform = self._platform
        if platform.supervisor.exists(service.unit.name):
            error = best_effort("unit teardown", platform.supervisor.teardown, service.unit.name)
            if error:
                warnings.append(f"Rollback: unit teardown failed: {error}")
        error = best_effort("record removal", platform.services.remove, service.id)
        if error:
            warnings.append(f"Rollback: record removal failed: {error}")

    def write_env_file(self, site: Site, service: Service) -> None:
        """Write ``<working_dir>/.env``: site variables, then service variables."""
        template = self._platform.env_template()
        text = template.render(
            site_name=site.name,
            service_name=service.name,
            generated_at=self._platform.now_iso(),
            port=service.port,
            site_env=site.environment,
            service_env=service.environment,
        )
        install_file(
            self._platform.runner,
            text,
            f"{service.working_dir}/.env",
            staging_dir=self._platform.staging_dir,
            mode="640",
            owner=site.os_user.username,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @traced
    def get_service(self, service_id: str) -> ServiceResult:
        op = "get_service"
        try:
            service = self._platform.services.require(service_id)
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(ok=True, op=op, data={"service": service.model_dump(mode="json")})

    @traced
    def list_services(self, site_id: str) -> ServiceResult:
        op = "list_services"
        try:
            site = self._platform.sites.require(site_id)
        except TwoineError as exc:
            return self._failure(op, exc)
        items = [
            {
                "id": s.id,
                "name": s.name,
                "port": s.port,
                "runtime": str(s.runtime.type),
                "current": str(s.status.current),
                "desired": str(s.status.desired),
                "start_priority": s.start_priority,
                "unit": s.unit.name,
            }
            for s in self._platform.services.list_for_site(site.id)
        ]
        return ServiceResult(
            ok=True, op=op, data={"site": site.name, "count": len(items), "items": items}
        )

    @traced
    def get_status(self, service_id: str) -> ServiceResult:
        """Refresh ``status.current`` and process info from the supervisor."""
        op = "get_status"
        try:
            service = self._platform.services.require(service_id)
            unit = self._platform.supervisor.status(service.unit.name)
            service = self._record_observed(service, unit)
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "service": service.name,
                "current": str(service.status.current),
                "desired": str(service.status.desired),
                "unit": unit.model_dump(mode="json"),
            },
        )

    def _record_observed(self, service: Service, unit: UnitStatus) -> Service:
        now = self._platform.now_iso()
        state = observed_state(unit)
        status_update: dict[str, Any] = {"last_check": now}
        if state != service.status.current:
            status_update.update(current=state, last_state_change=now)
        process = service.process_info.model_copy(
            update={
                "pid": unit.pid if unit.running else None,
                "memory_bytes": unit.memory_bytes if unit.running else None,
            }
        )
        updated = service.model_copy(
            update={
                "status": service.status.model_copy(update=status_update),
                "process_info": process,
                "updated_at": now,
            }
        )
        return self._platform.services.save(updated)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(
        self,
        service: Service,
        target: ServiceState,
        *,
        desired: DesiredState | None = None,
        error: str | None = None,
    ) -> Service:
        current = service.status.current
        if target != current and not is_valid_transition(current, target, SERVICE_TRANSITIONS):
            msg = f"Service {service.name} cannot go from {current} to {target}"
            raise ConflictError(msg, detail={"from": str(current), "to": str(target)})
        now = self._platform.now_iso()
        status_update: dict[str, Any] = {"current": target, "last_state_change": now}
        if desired is not None:
            status_update["desired"] = desired
        if target == ServiceState.FAILED:
            status_update["failure_count"] = service.status.failure_count + 1
            status_update["last_error"] = error
        elif target == ServiceState.RUNNING:
            status_update["failure_count"] = 0
            status_update["last_error"] = None
        updated = service.model_copy(
            update={"status": service.status.model_copy(update=status_update), "updated_at": now}
        )
        return self._platform.services.save(updated)

    def _emit_change(
        self,
        service: Service,
        previous: ServiceState,
        warnings: list[str],
        *,
        error: str | None = None,
    ) -> None:
        site = self._platform.sites.get(service.site_id, include_deleted=True)
        self._dispatch_event(
            "service_status_changed",
            {
                "site": site.name if site else service.site_id,
                "service": service.name,
                "previous": str(previous),
                "current": str(service.status.current),
                "error": error,
            },
            warnings,
        )

    def _fail(
        self, op: str, service: Service, exc: TwoineError, warnings: list[str]
    ) -> ServiceResult:
        """Persist the ``failed`` branch, notify, and build the failure result."""
        previous = service.status.current
        failed = self._transition(service, ServiceState.FAILED, error=exc.message)
        self._emit_change(failed, previous, warnings, error=exc.message)
        return self._failure(op, exc, warnings=warnings, data={"service": service.name})

    def _require_idle(self, service: Service) -> None:
        if service.status.current in SERVICE_BUSY_STATES:
            msg = f"Service {service.name} is {service.status.current}; wait for it to settle"
            raise ConflictError(msg, detail={"current": str(service.status.current)})

    @traced
    def start_service(self, service_id: str) -> ServiceResult:
        """stopped → starting → running, or → failed when the supervisor errors."""
        op = "start_service"
        warnings: list[str] = []
        supervisor = self._platform.supervisor
        try:
            service = self._platform.services.require(service_id)
            self._require_idle(service)
            observed = self._record_observed(service, supervisor.status(service.unit.name))
            if observed.status.current == ServiceState.RUNNING:
                self._set_desired(observed, DesiredState.RUNNING)
                return ServiceResult(
                    ok=True,
                    op=op,
                    data={"service": service.name, "current": "running", "changed": False},
                )
            previous = observed.status.current
            starting = self._transition(
                observed, ServiceState.STARTING, desired=DesiredState.RUNNING
            )
        except TwoineError as exc:
            return self._failure(op, exc)

        try:
            with trace_span("supervisor_start"):
                supervisor.start(service.unit.name)
            unit = supervisor.status(service.unit.name)
        except TwoineError as exc:
            self._alert(
                f"service:{service.name}",
                f"Failed to start {service.unit.name}",
                warnings,
                detail={"error": exc.message},
            )
            return self._fail(op, starting, exc, warnings)

        running = self._transition(starting, ServiceState.RUNNING)
        running = running.model_copy(
            update={
                "process_info": running.process_info.model_copy(
                    update={
                        "pid": unit.pid,
                        "memory_bytes": unit.memory_bytes,
                        "started_at": self._platform.now_iso(),
                    }
                )
            }
        )
        self._platform.services.save(running)
        self._emit_change(running, previous, warnings)
        return ServiceResult(
            ok=True,
            op=op,
            data={"service": service.name, "current": "running", "changed": True, "pid": unit.pid},
            warnings=warnings,
        )

    @traced
    def stop_service(self, service_id: str) -> ServiceResult:
        """running → stopping → stopped, or → failed when the supervisor errors."""
        op = "stop_service"
        warnings: list[str] = []
        supervisor = self._platform.supervisor
        try:
            service = self._platform.services.require(service_id)
            self._require_idle(service)
            observed = self._record_observed(service, supervisor.status(service.unit.name))
            if observed.status.current == ServiceState.STOPPED:
                self._set_desired(observed, DesiredState.STOPPED)
                return ServiceResult(
                    ok=True,
                    op=op,
                    data={"service": service.name, "current": "stopped", "changed": False},
                )
            previous = observed.status.current
            stopping = self._transition(
                observed, ServiceState.STOPPING, desired=DesiredState.STOPPED
            )
        except TwoineError as exc:
            return self._failure(op, exc)

        try:
            with trace_span("supervisor_stop"):
                supervisor.stop(service.unit.name)
        except TwoineError as exc:
            return self._fail(op, stopping, exc, warnings)

        stopped = self._transition(stopping, ServiceState.STOPPED)
        stopped = self._platform.services.save(
            stopped.model_copy(
                update={
                    "process_info": stopped.process_info.model_copy(
                        update={"pid": None, "memory_bytes": None}
                    )
                }
            )
        )
        self._emit_change(stopped, previous, warnings)
        return ServiceResult(
            ok=True,
            op=op,
            data={"service": service.name, "current": "stopped", "changed": True},
            warnings=warnings,
        )

    @traced
    def restart_service(self, service_id: str) -> ServiceResult:
        """running → restarting → running. A stopped service is simply started."""
        op = "restart_service"
        warnings: list[str] = []
        supervisor = self._platform.supervisor
        try:
            service = self._platform.services.require(service_id)
            self._require_idle(service)
            observed = self._record_observed(service, supervisor.status(service.unit.name))
        except TwoineError as exc:
            return self._failure(op, exc)
        if observed.status.current != ServiceState.RUNNING:
            result = self.start_service(service_id)
            return result.model_copy(update={"op": op})

        try:
            restarting = self._transition(
                observed, ServiceState.RESTARTING, desired=DesiredState.RUNNING
            )
        except TwoineError as exc:
            return self._failure(op, exc)
        try:
            with trace_span("supervisor_restart"):
                supervisor.restart(service.unit.name)
            unit = supervisor.status(service.unit.name)
        except TwoineError as exc:
            self._alert(
                f"service:{service.name}",
                f"Failed to restart {service.unit.name}",
                warnings,
                detail={"error": exc.message},
            )
            return self._fail(op, restarting, exc, warnings)

        running = self._transition(restarting, ServiceState.RUNNING)
        running = self._platform.services.save(
            running.model_copy(
                update={
                    "process_info": running.process_info.model_copy(
                        update={"pid": unit.pid, "started_at": self._platform.now_iso()}
                    )
                }
            )
        )
        self._emit_change(running, ServiceState.RUNNING, warnings)
        return ServiceResult(
            ok=True,
            op=op,
            data={"service": service.name, "current": "running", "changed": True, "pid": unit.pid},
            warnings=warnings,
        )

    def _set_desired(self, service: Service, desired: DesiredState) -> Service:
        if service.status.desired == desired:
            return service
        updated = service.model_copy(
            update={"status": service.status.model_copy(update={"desired": desired})}
        )
        return self._platform.services.save(updated)

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    @traced
    def update_service(self, service_id: str, changes: Mapping[str, Any]) -> ServiceResult:
        """Apply allowed field changes; rewrite the unit and env file as needed."""
        op = "update_service"
        warnings: list[str] = []
        platform = self._platform
        try:
            unknown = sorted(set(changes) - UPDATABLE_FIELDS)
            if unknown:
                msg = f"Fields cannot be updated: {', '.join(unknown)}"
                raise ValidationError(msg, detail={"fields": unknown})
            service = platform.services.require(service_id)
            site = platform.sites.require(service.site_id)
            update = self._validated_changes(service, changes)
            updated = service.model_copy(update={**update, "updated_at": platform.now_iso()})
            # Round-trip through validation so nested dicts become models.
            updated = Service.model_validate(updated.model_dump())
            platform.services.save(updated)

            restarted = False
            if "commands" in update or "resources" in update:
                text = platform.supervisor.render_unit(
                    updated, site, wants=self._dependency_units(site, updated.depends_on)
                )
                with trace_span("unit_update"):
                    restarted = platform.supervisor.update(updated.unit.name, text)
                updated = platform.services.save(
                    updated.model_copy(
                        update={
                            "unit": updated.unit.model_copy(
                                update={"unit_file_updated_at": platform.now_iso()}
                            )
                        }
                    )
                )
            if "environment" in update:
                self.write_env_file(site, updated)
                if not restarted and updated.status.current == ServiceState.RUNNING:
                    warnings.append("Environment changed; restart the service to apply it")
        except TwoineError as exc:
            return self._failure(op, exc)

        return ServiceResult(
            ok=True,
            op=op,
            data={
                "service": updated.model_dump(mode="json"),
                "fields_changed": sorted(update),
                "restarted": restarted,
            },
            warnings=warnings,
        )

    def _validated_changes(self, service: Service, changes: Mapping[str, Any]) -> dict[str, Any]:
        update: dict[str, Any] = {}
        for key, value in changes.items():
            if key == "commands":
                merged = {**service.commands.model_dump(), **dict(value)}
                merged["start"] = validate_start_command(merged["start"])
                default = runtime_defaults(service.runtime.type).install_command
                for name in ("install", "build", "stop", "health_check"):
                    if merged.get(name) and not (name == "install" and merged[name] == default):
                        merged[name] = validate_custom_command(merged[name])
                update[key] = ServiceCommands(**merged)
            elif key == "environment":
                update[key] = validate_environment(value)
            elif key == "resources":
                update[key] = ServiceResources(**{**service.resources.model_dump(), **dict(value)})
            elif key == "health_check":
                update[key] = HealthCheck(**{**service.health_check.model_dump(), **dict(value)})
            elif key == "start_priority":
                if not 1 <= int(value) <= 100:
                    msg = "start_priority must be between 1 and 100"
                    raise ValidationError(msg, detail={"field": key, "value": value})
                update[key] = int(value)
            else:
                update[key] = value
        return update

    @traced
    def delete_service(self, service_id: str, *, force: bool = False) -> ServiceResult:
        """Tear down the unit and delete the record.

        A running service is refused unless *force*; forcing also removes
        the working directory under the site's services directory.
        """
        op = "delete_service"
        warnings: list[str] = []
        platform = self._platform
        try:
            service = platform.services.require(service_id)
            site = platform.sites.get(service.site_id, include_deleted=True)
            unit = platform.supervisor.status(service.unit.name)
            if unit.running and not force:
                msg = f"Service {service.name} is running; stop it first or use force"
                raise ConflictError(msg, detail={"service": service.name})
            with trace_span("unit_teardown"):
                platform.supervisor.teardown(service.unit.name)
            if force and site is not None:
                error = best_effort(
                    "working directory removal",
                    remove_tree,
                    platform.runner,
                    service.working_dir,
                    root=site.paths.services,
                )
                if error:
                    warnings.append(f"Working directory not removed: {error}")
            platform.services.remove(service.id)
        except TwoineError as exc:
            return self._failure(op, exc, warnings=warnings)

        logger.info("Deleted service %s", service.unit.name)
        return ServiceResult(
            ok=True,
            op=op,
            data={"service": service.name, "unit": service.unit.name, "files_removed": force},
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Install / build / health
    # ------------------------------------------------------------------

    def _run_as_site_user(
        self, site: Site, service: Service, command: str, *, timeout: float
    ) -> CommandResult:
        """Run a validated command through ``bash -c`` as the site user."""
        return self._platform.runner.run(
            ["sudo", "-n", "-u", site.os_user.username, "--", "bash", "-c", command],
            timeout=timeout,
            cwd=service.working_dir,
            check=False,
        )

    def _run_lifecycle_command(self, op: str, service_id: str, kind: str) -> ServiceResult:
        platform = self._platform
        try:
            service = platform.services.require(service_id)
            site = platform.sites.require(service.site_id)
            raw = getattr(service.commands, kind)
            if not raw:
                msg = f"Service {service.name} has no {kind} command"
                raise ValidationError(msg, detail={"field": f"{kind} command"})
            # Runtime default install commands are trusted constants.
            default = runtime_defaults(service.runtime.type).install_command
            trusted = kind == "install" and raw == default
            command = raw if trusted else validate_custom_command(raw)
            timeout = (
                self._settings.services.install_timeout
                if kind == "install"
                else self._settings.services.build_timeout
            )
            with trace_span(f"{kind}_command"):
                result = self._run_as_site_user(site, service, command, timeout=timeout)
        except TwoineError as exc:
            return self._failure(op, exc)

        output = _command_output(result)
        if not result.ok:
            return self._failure(
                op,
                _command_failed(kind.capitalize(), result),
                data={"service": service.name, **output},
            )
        stamp_field = "last_install_at" if kind == "install" else "last_build_at"
        platform.services.save(service.model_copy(update={stamp_field: platform.now_iso()}))
        return ServiceResult(
            ok=True, op=op, data={"service": service.name, "command": command, **output}
        )

    @traced
    def install_service(self, service_id: str) -> ServiceResult:
        """Run the install command as the site user (long timeout)."""
        return self._run_lifecycle_command("install_service", service_id, "install")

    @traced
    def build_service(self, service_id: str) -> ServiceResult:
        """Run the build command as the site user (long timeout)."""
        return self._run_lifecycle_command("build_service", service_id, "build")

    @traced
    def check_health(self, service_id: str) -> ServiceResult:
        """Probe the service on loopback and persist the outcome either way."""
        op = "check_health"
        platform = self._platform
        try:
            service = platform.services.require(service_id)
        except TwoineError as exc:
            return self._failure(op, exc)
        if not service.health_check.enabled:
            return ServiceResult(
                ok=True,
                op=op,
                data={"service": service.name, "status": "unknown", "enabled": False},
            )

        with trace_span("health_probe"):
            probe = platform.health.probe(
                service.port, service.health_check.endpoint, timeout=service.health_check.timeout
            )
        health = service.health_check.model_copy(
            update={"last_check": platform.now_iso(), "last_status": probe.status}
        )
        platform.services.save(service.model_copy(update={"health_check": health}))
        return ServiceResult(
            ok=True,
            op=op,
            data={"service": service.name, "enabled": True, **probe.model_dump(mode="json")},
        )

    # ------------------------------------------------------------------
    # Custom commands
    # ------------------------------------------------------------------

    @traced
    def add_custom_command(
        self,
        service_id: str,
        name: str,
        command: str,
        *,
        display_name: str | None = None,
        description: str = "",
        timeout: int = 300,
        requires_stop: bool = False,
        dangerous: bool = False,
    ) -> ServiceResult:
        op = "add_custom_command"
        try:
            validate_custom_command_name(name)
            clean = validate_custom_command(command)
            validate_timeout(timeout)
            service = self._platform.services.require(service_id)
            if service.find_custom_command(name) is not None:
                msg = f"Custom command '{name}' already exists on {service.name}"
                raise ConflictError(msg, detail={"command": name})
            entry = CustomCommand(
                name=name,
                command=clean,
                display_name=display_name,
                description=description,
                timeout=timeout,
                requires_stop=requires_stop,
                dangerous=dangerous,
            )
            self._platform.services.save(
                service.model_copy(
                    update={
                        "custom_commands": [*service.custom_commands, entry],
                        "updated_at": self._platform.now_iso(),
                    }
                )
            )
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(
            ok=True, op=op, data={"service": service.name, "command": entry.model_dump()}
        )

    @traced
    def remove_custom_command(self, service_id: str, name: str) -> ServiceResult:
        op = "remove_custom_command"
        try:
            service = self._platform.services.require(service_id)
            if service.find_custom_command(name) is None:
                msg = f"Custom command '{name}' not found on {service.name}"
                raise NotFoundError(msg, detail={"command": name})
            remaining = [c for c in service.custom_commands if c.name != name]
            self._platform.services.save(
                service.model_copy(
                    update={"custom_commands": remaining, "updated_at": self._platform.now_iso()}
                )
            )
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(ok=True, op=op, data={"service": service.name, "removed": name})

    @traced
    def list_custom_commands(self, service_id: str) -> ServiceResult:
        op = "list_custom_commands"
        try:
            service = self._platform.services.require(service_id)
        except TwoineError as exc:
            return self._failure(op, exc)
        items = [c.model_dump() for c in service.custom_commands]
        return ServiceResult(
            ok=True, op=op, data={"service": service.name, "count": len(items), "items": items}
        )

    @traced
    def execute_custom_command(self, service_id: str, name: str) -> ServiceResult:
        """Run a named custom command as the site user.

        With ``requires_stop`` the service is stopped first and, if it was
        running, restarted afterwards even when the command failed. A
        restart failure is a warning; the command's own outcome is what
        the result reports.
        """
        op = "execute_custom_command"
        warnings: list[str] = []
        platform = self._platform
        try:
            service = platform.services.require(service_id)
            site = platform.sites.require(service.site_id)
            entry = service.find_custom_command(name)
            if entry is None:
                msg = f"Custom command '{name}' not found on {service.name}"
                raise NotFoundError(msg, detail={"command": name})
            command = validate_custom_command(entry.command)
        except TwoineError as exc:
            return self._failure(op, exc)

        was_running = False
        if entry.requires_stop:
            was_running = platform.supervisor.status(service.unit.name).running
            if was_running:
                stopped = self.stop_service(service.id)
                if not stopped.ok:
                    return stopped.model_copy(update={"op": op})

        outcome: CommandResult | None = None
        error: TwoineError | None = None
        try:
            with trace_span("custom_command"):
                outcome = self._run_as_site_user(site, service, command, timeout=entry.timeout)
        except TwoineError as exc:
            error = exc

        if was_running:
            restarted = self.start_service(service.id)
            if not restarted.ok and restarted.error is not None:
                warnings.append(f"Restart after '{name}' failed: {restarted.error.message}")

        if error is not None:
            return self._failure(op, error, warnings=warnings, data={"command": name})
        assert outcome is not None
        data = {
            "service": service.name,
            "command": name,
            **_command_output(outcome),
            "restarted": was_running,
        }
        if not outcome.ok:
            failure = _command_failed(f"Command '{name}'", outcome)
            return self._failure(op, failure, warnings=warnings, data=data)
        return ServiceResult(ok=True, op=op, data=data, warnings=warnings)
