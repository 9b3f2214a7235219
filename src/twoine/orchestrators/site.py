"""SiteOrchestrator: tenant lifecycle.

Create pipeline: VALIDATE → PORTS → PERSIST (creating) → OS USER → TREE → SFTP → ACTIVE

A failure before ``active`` leaves the record in ``error`` with the
causing message; it is never rolled back, so an operator can inspect
and retry. Aggregate start/stop walk the site's services by priority
and collect each outcome without aborting the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from twoine.domain.entities import Site, SiteLimits, new_site
from twoine.domain.errors import ConflictError, TwoineError, ValidationError
from twoine.domain.lifecycle import (
    SITE_TRANSITIONS,
    CascadeAction,
    SiteStatus,
    is_valid_transition,
)
from twoine.domain.ports import next_port_range
from twoine.domain.validation import validate_environment, validate_site_name
from twoine.infrastructure.filesystem import (
    best_effort,
    is_strict_subpath,
    remove_tree,
    resolve_within,
)
from twoine.orchestrators._helpers import batch_outcome
from twoine.orchestrators.base import BaseOrchestrator
from twoine.orchestrators.result import ServiceResult
from twoine.orchestrators.service import ServiceOrchestrator
from twoine.orchestrators.telemetry import trace_span, traced

if TYPE_CHECKING:
    from twoine.infrastructure.platform import Platform

logger = logging.getLogger(__name__)


class SiteOrchestrator(BaseOrchestrator):
    """Provisions, controls and removes tenants."""

    def __init__(self, platform: Platform) -> None:
        super().__init__(platform)
        self._services = ServiceOrchestrator(platform)

    def _set_status(
        self,
        site: Site,
        status: SiteStatus,
        warnings: list[str],
        *,
        error: str | None = None,
        **changes: Any,
    ) -> Site:
        """Persist a status change and notify. Invalid transitions raise."""
        previous = site.status
        if status != previous and not is_valid_transition(previous, status, SITE_TRANSITIONS):
            msg = f"Site {site.name} cannot go from {previous} to {status}"
            raise ConflictError(msg, detail={"from": str(previous), "to": str(status)})
        updated = site.model_copy(
            update={
                **changes,
                "status": status,
                "error_message": error,
                "updated_at": self._platform.now_iso(),
            }
        )
        self._platform.sites.save(updated)
        if status != previous:
            self._dispatch_event(
                "site_status_changed",
                {"site": site.name, "previous": str(previous), "current": str(status)},
                warnings,
            )
        return updated

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @traced
    def create_site(
        self,
        name: str,
        *,
        display_name: str | None = None,
        description: str = "",
        owner: str | None = None,
        environment: Mapping[str, object] | None = None,
    ) -> ServiceResult:
        """Create the record, the OS user, the directory tree and the SFTP account."""
        op = "create_site"
        warnings: list[str] = []
        platform = self._platform
        cfg = self._settings.sites

        try:
            validate_site_name(name)
            env = validate_environment(environment or {})
            if platform.sites.get_by_name(name) is not None:
                msg = f"Site '{name}' already exists"
                raise ConflictError(msg, detail={"site": name})
            port_range = next_port_range(
                platform.sites.max_port_end(), base=cfg.port_base, size=cfg.ports_per_site
            )
            site = new_site(
                name,
                sites_dir=str(self._settings.paths.sites_dir),
                port_range=port_range,
                now=platform.now_iso(),
                display_name=display_name,
                description=description,
                owner=owner,
                limits=SiteLimits(
                    max_memory_mb=cfg.max_memory_mb,
                    max_cpu_percent=cfg.max_cpu_percent,
                    max_disk_mb=cfg.max_disk_mb,
                ),
                environment=env,
            )
            site = platform.sites.add(site.model_copy(update={"status": SiteStatus.CREATING}))
        except TwoineError as exc:
            return self._failure(op, exc)

        sftp: dict[str, Any] | None = None
        try:
            with trace_span("os_user"):
                os_user = platform.os_users.ensure(site)
            site = platform.sites.save(site.model_copy(update={"os_user": os_user}))
            with trace_span("directory_tree"):
                warnings.extend(platform.os_users.provision_tree(site))
            if self._settings.sftp.enabled:
                sftp = self._register_sftp(site, warnings)
            site = self._set_status(
                site,
                SiteStatus.ACTIVE,
                warnings,
                sftp_username=sftp["username"] if sftp else None,
            )
        except TwoineError as exc:
            best_effort(
                "site error status",
                self._set_status,
                site,
                SiteStatus.ERROR,
                warnings,
                error=exc.message,
            )
            return self._failure(
                op, exc, warnings=warnings, data={"site": site.name, "id": site.id}
            )

        logger.info(
            "Created site %s (ports %d-%d)", site.name, site.port_range.start, site.port_range.end
        )
        data: dict[str, Any] = {"site": site.model_dump(mode="json")}
        if sftp is not None:
            data["sftp"] = sftp
        return ServiceResult(ok=True, op=op, data=data, warnings=warnings)

    def _register_sftp(self, site: Site, warnings: list[str]) -> dict[str, Any] | None:
        """Best-effort SFTP account; the password is returned once, never stored."""
        try:
            with trace_span("sftp_account"):
                result = self._platform.sftp.create_account(site.name)
        except TwoineError as exc:
            logger.warning("SFTP account for %s not created: %s", site.name, exc)
            warnings.append(f"SFTP account not created: {exc.message}")
            return None
        return {
            "username": result.username,
            "home_dir": result.home_dir,
            "password": result.password,
        }

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    @traced
    def delete_site(
        self,
        site_id: str,
        *,
        force: bool = False,
        remove_files: bool = False,
        database_action: CascadeAction = CascadeAction.UNLINK,
    ) -> ServiceResult:
        """Tear down services, databases (per *database_action*), SFTP and OS user.

        Running services abort the deletion unless *force*. With
        *remove_files* the site root is removed, and only when it is a
        strict subpath of the configured sites directory.
        """
        op = "delete_site"
        warnings: list[str] = []
        platform = self._platform

        try:
            site = platform.sites.require(site_id)
            services = platform.services.list_for_site(site.id, descending=True)
            statuses = platform.supervisor.batch_status([s.unit.name for s in services])
            running = [s.name for s in services if statuses[s.unit.name].running]
            if running and not force:
                msg = f"Site {site.name} has running services: {', '.join(running)}"
                raise ConflictError(msg, detail={"running": running})
            if remove_files and not is_strict_subpath(
                site.paths.root, self._settings.paths.sites_dir
            ):
                msg = f"Refusing to remove {site.paths.root}: not inside the sites directory"
                raise ValidationError(msg, detail={"path": site.paths.root})
            db_orchestrator = None
            if platform.databases.list_databases(site_id=site.id):
                from twoine.orchestrators.database import DatabaseOrchestrator

                db_orchestrator = DatabaseOrchestrator(platform)
            site = self._set_status(site, SiteStatus.DELETING, warnings)
        except TwoineError as exc:
            return self._failure(op, exc)

        removed_services: list[str] = []
        try:
            for service in services:
                with trace_span(f"teardown:{service.name}"):
                    error = best_effort(
                        f"unit teardown {service.unit.name}",
                        platform.supervisor.teardown,
                        service.unit.name,
                    )
                if error:
                    warnings.append(f"{service.name}: unit teardown failed: {error}")
                platform.services.remove(service.id)
                removed_services.append(service.name)

            databases: dict[str, Any] = {}
            if db_orchestrator is not None:
                cascade = db_orchestrator.handle_site_deletion(site.id, database_action)
                databases = cascade.data
                warnings.extend(cascade.warnings)

            if site.sftp_username:
                error = best_effort(
                    "SFTP account removal", platform.sftp.delete_account, site.name
                )
                if error:
                    warnings.append(f"SFTP account not removed: {error}")

            error = best_effort(
                f"OS user removal {site.os_user.username}",
                platform.os_users.delete,
                site.os_user.username,
            )
            if error:
                warnings.append(f"OS user not removed: {error}")

            if remove_files:
                error = best_effort(
                    "site tree removal",
                    remove_tree,
                    platform.runner,
                    site.paths.root,
                    root=self._settings.paths.sites_dir,
                )
                if error:
                    warnings.append(f"Site files not removed: {error}")

            site = self._set_status(site, SiteStatus.DELETED, warnings)
        except TwoineError as exc:
            best_effort(
                "site error status",
                self._set_status,
                site,
                SiteStatus.ERROR,
                warnings,
                error=exc.message,
            )
            return self._failure(op, exc, warnings=warnings)

        logger.info("Deleted site %s", site.name)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "site": site.name,
                "id": site.id,
                "services_removed": removed_services,
                "files_removed": remove_files,
                "databases": databases,
            },
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Aggregate control
    # ------------------------------------------------------------------

    def _run_batch(self, op: str, site_id: str, *, start: bool) -> ServiceResult:
        warnings: list[str] = []
        platform = self._platform
        try:
            site = platform.sites.require(site_id)
            if site.status not in (SiteStatus.ACTIVE, SiteStatus.STOPPED):
                msg = f"Site {site.name} is {site.status}"
                raise ConflictError(msg, detail={"status": str(site.status)})
        except TwoineError as exc:
            return self._failure(op, exc)

        succeeded: list[dict[str, object]] = []
        failed: list[dict[str, object]] = []
        action = self._services.start_service if start else self._services.stop_service
        for service in platform.services.list_for_site(site.id, descending=not start):
            if start and not service.auto_start:
                continue
            result = action(service.id)
            if result.ok:
                succeeded.append({"name": service.name, "changed": result.data.get("changed")})
            else:
                message = result.error.message if result.error else "unknown error"
                failed.append({"name": service.name, "error": message})
            warnings.extend(result.warnings)

        target = SiteStatus.ACTIVE if start else SiteStatus.STOPPED
        try:
            site = self._set_status(site, target, warnings)
        except TwoineError as exc:
            return self._failure(op, exc, warnings=warnings)

        data, batch_warnings = batch_outcome(succeeded, failed)
        data["site"] = site.name
        return ServiceResult(ok=True, op=op, data=data, warnings=[*warnings, *batch_warnings])

    @traced
    def start_site(self, site_id: str) -> ServiceResult:
        """Start every ``auto_start`` service, lowest ``start_priority`` first."""
        return self._run_batch("start_site", site_id, start=True)

    @traced
    def stop_site(self, site_id: str) -> ServiceResult:
        """Stop every service, highest ``start_priority`` first."""
        return self._run_batch("stop_site", site_id, start=False)

    @traced
    def restart_site(self, site_id: str) -> ServiceResult:
        op = "restart_site"
        stopped = self.stop_site(site_id)
        if not stopped.ok:
            return stopped.model_copy(update={"op": op})
        started = self.start_site(site_id)
        return started.model_copy(
            update={
                "op": op,
                "data": {**started.data, "stop": stopped.data},
                "warnings": [*stopped.warnings, *started.warnings],
            }
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @traced
    def get_site(self, site_id: str) -> ServiceResult:
        op = "get_site"
        try:
            site = self._platform.sites.require(site_id)
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(ok=True, op=op, data={"site": site.model_dump(mode="json")})

    @traced
    def list_sites(self, *, status: str | None = None) -> ServiceResult:
        op = "list_sites"
        items = [
            {
                "id": s.id,
                "name": s.name,
                "status": str(s.status),
                "ports": f"{s.port_range.start}-{s.port_range.end}",
                "os_user": s.os_user.username,
                "created_at": s.created_at,
            }
            for s in self._platform.sites.list_sites(status=status)
        ]
        return ServiceResult(ok=True, op=op, data={"count": len(items), "items": items})

    @traced
    def get_site_info(self, site_id: str) -> ServiceResult:
        """Site record plus its services with live unit status, domains and databases."""
        op = "get_site_info"
        platform = self._platform
        try:
            site = platform.sites.require(site_id)
            services = platform.services.list_for_site(site.id)
            with trace_span("batch_status"):
                units = platform.supervisor.batch_status([s.unit.name for s in services])
        except TwoineError as exc:
            return self._failure(op, exc)

        return ServiceResult(
            ok=True,
            op=op,
            data={
                "site": site.model_dump(mode="json"),
                "services": [
                    {
                        "name": s.name,
                        "port": s.port,
                        "unit": s.unit.name,
                        "desired": str(s.status.desired),
                        "active": units[s.unit.name].active,
                        "pid": units[s.unit.name].pid,
                    }
                    for s in services
                ],
                "domains": [d.hostname for d in platform.domains.list_domains(site_id=site.id)],
                "databases": [
                    {"name": db.name, "type": str(db.type), "status": str(db.status)}
                    for db in platform.databases.list_databases(site_id=site.id)
                ],
            },
        )

    # ------------------------------------------------------------------
    # Environment / paths / SFTP
    # ------------------------------------------------------------------

    @traced
    def update_environment(
        self,
        site_id: str,
        environment: Mapping[str, object],
        *,
        replace: bool = False,
        unset: list[str] | None = None,
    ) -> ServiceResult:
        """Merge (or replace) site variables, then rewrite every service's env file."""
        op = "update_environment"
        warnings: list[str] = []
        platform = self._platform
        try:
            site = platform.sites.require(site_id)
            clean = validate_environment(environment)
            merged = clean if replace else {**site.environment, **clean}
            for key in unset or []:
                merged.pop(key, None)
            site = platform.sites.save(
                site.model_copy(
                    update={"environment": merged, "updated_at": platform.now_iso()}
                )
            )
        except TwoineError as exc:
            return self._failure(op, exc)

        rewritten: list[str] = []
        for service in platform.services.list_for_site(site.id):
            error = best_effort(
                f"env file {service.name}", self._services.write_env_file, site, service
            )
            if error:
                warnings.append(f"{service.name}: env file not rewritten: {error}")
            else:
                rewritten.append(service.name)
        if rewritten:
            warnings.append("Restart the site's services to apply the new environment")
        return ServiceResult(
            ok=True,
            op=op,
            data={"site": site.name, "environment": merged, "services_updated": rewritten},
            warnings=warnings,
        )

    @traced
    def resolve_path(self, site_id: str, relative: str = "") -> ServiceResult:
        """Absolute path under the site root; traversal outside it is rejected."""
        op = "resolve_path"
        try:
            site = self._platform.sites.require(site_id)
            path = resolve_within(site.paths.root, relative)
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(ok=True, op=op, data={"site": site.name, "path": str(path)})

    @traced
    def reset_sftp_password(self, site_id: str) -> ServiceResult:
        """Rotate the SFTP password; the new one is returned once."""
        op = "reset_sftp_password"
        try:
            site = self._platform.sites.require(site_id)
            result = self._platform.sftp.reset_password(site.name)
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(
            ok=True,
            op=op,
            data={"site": site.name, "username": result.username, "password": result.password},
        )

    @traced
    def set_sftp_enabled(self, site_id: str, *, enabled: bool) -> ServiceResult:
        op = "set_sftp_enabled"
        try:
            site = self._platform.sites.require(site_id)
            result = self._platform.sftp.disable_account(site.name, enable=enabled)
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(
            ok=True,
            op=op,
            data={"site": site.name, "username": result.username, "enabled": enabled},
        )
