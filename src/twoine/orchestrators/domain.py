"""DomainOrchestrator: reverse-proxy virtual hosts and their certificates.

Add pipeline: VALIDATE → UNIQUE → TARGET → PERSIST (pending) → CERT → CONFIG → RELOAD → ACTIVE

Validation happens before anything touches the filesystem. A failed
certificate marks the domain ``error`` and stops there; a failed proxy
step also rolls back the config, the symlink and the certificate, each
rollback step swallowing its own failure so the original error surfaces.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from twoine.domain.entities import (
    Domain,
    Service,
    Site,
    domain_cert_paths,
    domain_proxy_info,
    expected_dns_records,
    new_domain,
)
from twoine.domain.errors import ConflictError, NotFoundError, TwoineError, ValidationError
from twoine.domain.lifecycle import (
    DOMAIN_TRANSITIONS,
    DomainStatus,
    DomainType,
    is_valid_transition,
)
from twoine.domain.validation import normalize_domain
from twoine.infrastructure.filesystem import best_effort
from twoine.orchestrators.base import BaseOrchestrator
from twoine.orchestrators.result import ServiceResult
from twoine.orchestrators.telemetry import trace_span, traced

logger = logging.getLogger(__name__)


class DomainOrchestrator(BaseOrchestrator):
    """Adds, re-points and removes domains; owns the platform domain singleton."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_status(
        self,
        domain: Domain,
        status: DomainStatus,
        warnings: list[str],
        *,
        error: str | None = None,
        **changes: Any,
    ) -> Domain:
        previous = domain.status
        if status != previous and not is_valid_transition(previous, status, DOMAIN_TRANSITIONS):
            msg = f"Domain {domain.hostname} cannot go from {previous} to {status}"
            raise ConflictError(msg, detail={"from": str(previous), "to": str(status)})
        updated = domain.model_copy(
            update={
                **changes,
                "status": status,
                "error_message": error,
                "updated_at": self._platform.now_iso(),
            }
        )
        self._platform.domains.save(updated)
        if status != previous or error:
            self._dispatch_event(
                "domain_status_changed",
                {"domain": updated.hostname, "status": str(status), "error": error},
                warnings,
            )
        return updated

    def _require_available(self, hostname: str) -> None:
        if self._platform.domains.get_by_hostname(hostname) is not None:
            msg = f"Domain '{hostname}' is already registered"
            raise ConflictError(msg, detail={"domain": hostname})

    def _resolve_target(
        self, site_id: str, service_id: str | None, target_port: int | None
    ) -> tuple[Site, Service | None, int | None]:
        """Site, optional service of that site, and the port to proxy to."""
        site = self._platform.sites.require(site_id)
        service = None
        port = target_port
        if service_id:
            service = self._platform.services.require(service_id)
            if service.site_id != site.id:
                msg = "Service does not belong to the specified site"
                raise ValidationError(msg, detail={"site": site.name, "service": service.name})
            port = port or service.port
        return site, service, port

    def _site_name(self, domain: Domain) -> str | None:
        if domain.site_id is None:
            return None
        site = self._platform.sites.get(domain.site_id, include_deleted=True)
        return site.name if site is not None else None

    def _issue_certificate(self, domain: Domain) -> Domain:
        """Issue the domain's certificate and stamp its validity window."""
        pki = self._platform.pki
        assert domain.ssl.cert_path is not None and domain.ssl.key_path is not None
        with trace_span("certificate"):
            pki.issue(domain.hostname, domain.ssl.cert_path, domain.ssl.key_path)
        now = self._platform.now()
        ssl = domain.ssl.model_copy(
            update={
                "generated_at": now.isoformat(),
                "expires_at": (now + timedelta(days=pki.validity_days)).isoformat(),
            }
        )
        return domain.model_copy(update={"ssl": ssl})

    def _apply_proxy(self, domain: Domain) -> Domain:
        """Write, enable and reload; returns the domain with proxy state updated."""
        proxy = self._platform.proxy
        with trace_span("proxy_config"):
            text = proxy.render_config(domain, site_name=self._site_name(domain))
            proxy.write_config(domain, text)
            proxy.enable(domain)
        with trace_span("proxy_reload"):
            proxy.reload()
        return domain.model_copy(
            update={
                "proxy": domain.proxy.model_copy(
                    update={"configured": True, "last_reload": self._platform.now_iso()}
                )
            }
        )

    def _rollback(self, domain: Domain, warnings: list[str]) -> None:
        proxy = self._platform.proxy
        steps: list[tuple[str, Any, tuple[Any, ...]]] = [
            ("proxy disable", proxy.disable, (domain,)),
            ("proxy config removal", proxy.remove_config, (domain,)),
        ]
        if domain.ssl.enabled:
            steps.append(("certificate removal", self._platform.pki.remove, (domain.hostname,)))
        steps.append(("proxy reload", proxy.reload, ()))
        for label, func, args in steps:
            error = best_effort(f"rollback {domain.hostname}: {label}", func, *args)
            if error:
                warnings.append(f"Rollback: {label} failed: {error}")

    # ------------------------------------------------------------------
    # Add / remove
    # ------------------------------------------------------------------

    def _add(
        self,
        op: str,
        hostname: str,
        *,
        domain_type: DomainType,
        site_id: str | None,
        service_id: str | None,
        target_port: int | None,
        enable_ssl: bool,
    ) -> ServiceResult:
        warnings: list[str] = []
        platform = self._platform
        paths = self._settings.paths
        domains_cfg = self._settings.domains

        try:
            normalized = normalize_domain(hostname)
            self._require_available(normalized)
            port = target_port
            if domain_type == DomainType.SITE:
                if not site_id:
                    raise ValidationError(
                        "Site ID is required for site domains", detail={"field": "site_id"}
                    )
                site, _, port = self._resolve_target(site_id, service_id, target_port)
                site_id = site.id
            elif platform.domains.get_platform() is not None:
                msg = "Platform domain already configured. Use updatePlatformDomain instead."
                raise ConflictError(msg)
            if not port:
                raise ValidationError("Target port is required", detail={"field": "target_port"})
            domain = new_domain(
                normalized,
                certs_dir=str(paths.certs_dir),
                nginx_available=str(paths.nginx_available),
                nginx_enabled=str(paths.nginx_enabled),
                now=platform.now_iso(),
                domain_type=domain_type,
                site_id=site_id,
                service_id=service_id if domain_type == DomainType.SITE else None,
                target_port=port,
                enable_ssl=enable_ssl,
                dns_records=expected_dns_records(
                    normalized, domains_cfg.server_ip, domains_cfg.server_ipv6
                ),
            )
            platform.domains.add(domain)
        except TwoineError as exc:
            return self._failure(op, exc)

        if domain.ssl.enabled:
            try:
                domain = self._issue_certificate(domain)
            except TwoineError as exc:
                best_effort(
                    "domain error status",
                    self._set_status,
                    domain,
                    DomainStatus.ERROR,
                    warnings,
                    error=f"Certificate generation failed: {exc.message}",
                )
                return self._failure(op, exc, warnings=warnings)

        try:
            domain = self._set_status(domain, DomainStatus.CONFIGURING, warnings)
            domain = self._apply_proxy(domain)
            domain = self._set_status(domain, DomainStatus.ACTIVE, warnings)
        except TwoineError as exc:
            self._rollback(domain, warnings)
            best_effort(
                "domain error status",
                self._set_status,
                domain,
                DomainStatus.ERROR,
                warnings,
                error=f"Nginx configuration failed: {exc.message}",
            )
            self._alert(
                "domain",
                f"Failed to configure {domain.hostname}: {exc.message}",
                warnings,
            )
            return self._failure(op, exc, warnings=warnings)

        logger.info("Added domain %s -> %s", domain.hostname, domain.target)
        return ServiceResult(
            ok=True,
            op=op,
            data={"domain": domain.model_dump(mode="json")},
            warnings=warnings,
        )

    @traced
    def add_domain(
        self,
        hostname: str,
        *,
        site_id: str | None = None,
        service_id: str | None = None,
        target_port: int | None = None,
        enable_ssl: bool = True,
    ) -> ServiceResult:
        """Register a site domain and bring its virtual host online."""
        return self._add(
            "add_domain",
            hostname,
            domain_type=DomainType.SITE,
            site_id=site_id,
            service_id=service_id,
            target_port=target_port,
            enable_ssl=enable_ssl,
        )

    @traced
    def remove_domain(self, domain_id: str, *, force: bool = False) -> ServiceResult:
        """Disable and remove the virtual host and certificate, then soft-delete.

        Without *force* the first failing step aborts the removal; with it
        every step is attempted and failures become warnings. The platform
        domain is only removed with *force*.
        """
        op = "remove_domain"
        warnings: list[str] = []
        platform = self._platform
        try:
            domain = platform.domains.require(domain_id)
            if domain.type == DomainType.PLATFORM and not force:
                msg = "Cannot delete platform domain without force flag"
                raise ConflictError(msg, detail={"domain": domain.hostname})

            proxy = platform.proxy
            steps: list[tuple[str, Any, tuple[Any, ...]]] = [
                ("proxy disable", proxy.disable, (domain,)),
                ("proxy config removal", proxy.remove_config, (domain,)),
                ("proxy reload", proxy.reload, ()),
            ]
            if domain.ssl.enabled:
                steps.append(("certificate removal", platform.pki.remove, (domain.hostname,)))
            for label, func, args in steps:
                if force:
                    error = best_effort(f"{domain.hostname}: {label}", func, *args)
                    if error:
                        warnings.append(f"{label} failed: {error}")
                else:
                    func(*args)

            domain = self._set_status(
                domain,
                DomainStatus.DELETED,
                warnings,
                proxy=domain.proxy.model_copy(update={"configured": False}),
            )
        except TwoineError as exc:
            return self._failure(op, exc, warnings=warnings)

        logger.info("Removed domain %s", domain.hostname)
        return ServiceResult(
            ok=True,
            op=op,
            data={"domain": domain.hostname, "id": domain.id},
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    @traced
    def assign_domain(
        self,
        domain_id: str,
        site_id: str,
        *,
        service_id: str | None = None,
        target_port: int | None = None,
    ) -> ServiceResult:
        """Re-point a domain at another site/service/port and reload."""
        op = "assign_domain"
        warnings: list[str] = []
        try:
            domain = self._platform.domains.require(domain_id)
            if domain.type == DomainType.PLATFORM:
                raise ConflictError(
                    "Cannot reassign platform domain", detail={"domain": domain.hostname}
                )
            site, service, port = self._resolve_target(site_id, service_id, target_port)
            port = port or domain.target_port
            if not port:
                raise ValidationError("Target port is required", detail={"field": "target_port"})
            domain = self._set_status(
                domain,
                DomainStatus.CONFIGURING,
                warnings,
                site_id=site.id,
                service_id=service.id if service else None,
                target_port=port,
            )
        except TwoineError as exc:
            return self._failure(op, exc)

        try:
            domain = self._apply_proxy(domain)
            domain = self._set_status(domain, DomainStatus.ACTIVE, warnings)
        except TwoineError as exc:
            best_effort(
                "domain error status",
                self._set_status,
                domain,
                DomainStatus.ERROR,
                warnings,
                error=f"Nginx reconfiguration failed: {exc.message}",
            )
            return self._failure(op, exc, warnings=warnings)

        logger.info("Assigned domain %s to site %s", domain.hostname, site.name)
        return ServiceResult(
            ok=True,
            op=op,
            data={"domain": domain.model_dump(mode="json"), "site": site.name},
            warnings=warnings,
        )

    @traced
    def unassign_domain(self, domain_id: str) -> ServiceResult:
        """Detach from its site and disable the virtual host; the record stays pending."""
        op = "unassign_domain"
        warnings: list[str] = []
        platform = self._platform
        try:
            domain = platform.domains.require(domain_id)
            if domain.type == DomainType.PLATFORM:
                raise ConflictError(
                    "Cannot unassign platform domain", detail={"domain": domain.hostname}
                )
            for label, func, args in (
                ("proxy disable", platform.proxy.disable, (domain,)),
                ("proxy reload", platform.proxy.reload, ()),
            ):
                error = best_effort(f"{domain.hostname}: {label}", func, *args)
                if error:
                    warnings.append(f"{label} failed: {error}")
            domain = self._set_status(
                domain,
                DomainStatus.PENDING,
                warnings,
                site_id=None,
                service_id=None,
                proxy=domain.proxy.model_copy(update={"configured": False}),
            )
        except TwoineError as exc:
            return self._failure(op, exc, warnings=warnings)

        return ServiceResult(
            ok=True,
            op=op,
            data={"domain": domain.hostname, "status": str(domain.status)},
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Certificates and DNS
    # ------------------------------------------------------------------

    @traced
    def regenerate_certificate(self, domain_id: str) -> ServiceResult:
        """Replace the self-signed certificate and reload the proxy."""
        op = "regenerate_certificate"
        warnings: list[str] = []
        platform = self._platform
        try:
            domain = platform.domains.require(domain_id)
            if not domain.ssl.enabled:
                raise ValidationError(
                    "SSL is not enabled for this domain", detail={"domain": domain.hostname}
                )
            error = best_effort("old certificate removal", platform.pki.remove, domain.hostname)
            if error:
                warnings.append(f"Old certificate not removed: {error}")
            domain = self._issue_certificate(domain)
            with trace_span("proxy_reload"):
                platform.proxy.reload()
            domain = platform.domains.save(
                domain.model_copy(
                    update={
                        "proxy": domain.proxy.model_copy(
                            update={"last_reload": platform.now_iso()}
                        ),
                        "updated_at": platform.now_iso(),
                    }
                )
            )
        except TwoineError as exc:
            return self._failure(op, exc, warnings=warnings)

        logger.info("Regenerated certificate for %s", domain.hostname)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "domain": domain.hostname,
                "generated_at": domain.ssl.generated_at,
                "expires_at": domain.ssl.expires_at,
            },
            warnings=warnings,
        )

    @traced
    def dns_info(self, domain_id: str) -> ServiceResult:
        """Records the registrar must carry for the domain to reach this server."""
        op = "dns_info"
        try:
            domain = self._platform.domains.require(domain_id)
        except TwoineError as exc:
            return self._failure(op, exc)
        cfg = self._settings.domains
        records = expected_dns_records(domain.hostname, cfg.server_ip, cfg.server_ipv6)
        warnings = [] if records else ["domains.server_ip is not configured"]
        lines = [f"{r.name}. IN {r.type} {r.value}" for r in records]
        instructions = "\n".join(
            [
                "Add the following DNS records at your registrar or DNS host:",
                "",
                *lines,
                "",
                "DNS propagation can take up to 48 hours.",
            ]
        )
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "domain": domain.hostname,
                "server_ip": cfg.server_ip,
                "server_ipv6": cfg.server_ipv6,
                "records": [r.model_dump() for r in records],
                "instructions": instructions,
            },
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @traced
    def get_domain(self, domain_id: str) -> ServiceResult:
        op = "get_domain"
        try:
            domain = self._platform.domains.require(domain_id)
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(
            ok=True,
            op=op,
            data={"domain": domain.model_dump(mode="json"), "site": self._site_name(domain)},
        )

    @traced
    def list_domains(
        self,
        *,
        site_id: str | None = None,
        domain_type: str | None = None,
        status: str | None = None,
    ) -> ServiceResult:
        op = "list_domains"
        try:
            site = self._platform.sites.require(site_id) if site_id else None
            if domain_type is not None:
                DomainType(domain_type)
            if status is not None:
                DomainStatus(status)
        except ValueError as exc:
            return self._failure(op, ValidationError(str(exc)))
        except TwoineError as exc:
            return self._failure(op, exc)
        items = [
            {
                "id": d.id,
                "hostname": d.hostname,
                "type": str(d.type),
                "status": str(d.status),
                "target": d.target,
                "ssl": d.ssl.enabled,
                "site_id": d.site_id,
                "service_id": d.service_id,
            }
            for d in self._platform.domains.list_domains(
                site_id=site.id if site else None, domain_type=domain_type, status=status
            )
        ]
        return ServiceResult(ok=True, op=op, data={"count": len(items), "items": items})

    # ------------------------------------------------------------------
    # Cleanup jobs
    # ------------------------------------------------------------------

    @traced
    def cleanup_orphan_domains(self) -> ServiceResult:
        """Force-remove site domains whose site is gone or deleted."""
        op = "cleanup_orphan_domains"
        warnings: list[str] = []
        cleaned: list[str] = []
        platform = self._platform
        for domain in platform.domains.list_domains(domain_type=DomainType.SITE):
            if domain.site_id is None or platform.sites.get(domain.site_id) is not None:
                continue
            logger.info("Cleaning orphan domain %s", domain.hostname)
            result = self.remove_domain(domain.id, force=True)
            warnings.extend(result.warnings)
            if result.ok:
                cleaned.append(domain.hostname)
            elif result.error is not None:
                warnings.append(f"{domain.hostname}: {result.error.message}")
        return ServiceResult(
            ok=True,
            op=op,
            data={"cleaned": len(cleaned), "domains": cleaned},
            warnings=warnings,
        )

    @traced
    def cleanup_invalid_service_domains(self) -> ServiceResult:
        """Clear references to deleted services and flag those domains as errors."""
        op = "cleanup_invalid_service_domains"
        warnings: list[str] = []
        updated: list[str] = []
        platform = self._platform
        for domain in platform.domains.list_with_service():
            assert domain.service_id is not None
            if platform.services.get(domain.service_id) is not None:
                continue
            try:
                self._set_status(
                    domain,
                    DomainStatus.ERROR,
                    warnings,
                    error="Service has been deleted",
                    service_id=None,
                )
            except TwoineError as exc:
                warnings.append(f"{domain.hostname}: {exc.message}")
                continue
            logger.info("Removed invalid service reference from %s", domain.hostname)
            updated.append(domain.hostname)
        return ServiceResult(
            ok=True,
            op=op,
            data={"updated": len(updated), "domains": updated},
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Platform domain
    # ------------------------------------------------------------------

    @traced
    def setup_platform_domain(
        self, hostname: str, port: int, *, enable_ssl: bool = True
    ) -> ServiceResult:
        """Create the singleton domain that fronts the control panel itself."""
        return self._add(
            "setup_platform_domain",
            hostname,
            domain_type=DomainType.PLATFORM,
            site_id=None,
            service_id=None,
            target_port=port,
            enable_ssl=enable_ssl,
        )

    @traced
    def update_platform_domain(
        self, *, hostname: str | None = None, port: int | None = None
    ) -> ServiceResult:
        """Change the platform hostname and/or port.

        A hostname change removes the old virtual host and certificate
        before the new ones are written. If the new ones then fail, they
        are rolled back and the record is saved under the new hostname
        in ``error``.
        """
        op = "update_platform_domain"
        warnings: list[str] = []
        platform = self._platform
        paths = self._settings.paths
        try:
            domain = platform.domains.get_platform()
            if domain is None:
                raise NotFoundError(
                    "No platform domain configured", detail={"kind": "domain"}
                )
            new_host = normalize_domain(hostname) if hostname else None
            renamed = bool(new_host) and new_host != domain.hostname
            if renamed:
                self._require_available(new_host)
        except TwoineError as exc:
            return self._failure(op, exc)

        if renamed:
            old = domain
            for label, func, args in (
                ("proxy disable", platform.proxy.disable, (old,)),
                ("proxy config removal", platform.proxy.remove_config, (old,)),
                ("certificate removal", platform.pki.remove, (old.hostname,)),
            ):
                error = best_effort(f"{old.hostname}: {label}", func, *args)
                if error:
                    warnings.append(f"{label} failed: {error}")

            ssl = old.ssl
            if ssl.enabled:
                cert_path, key_path = domain_cert_paths(str(paths.certs_dir), new_host)
                ssl = ssl.model_copy(update={"cert_path": cert_path, "key_path": key_path})
            cfg = self._settings.domains
            domain = old.model_copy(
                update={
                    "hostname": new_host,
                    "ssl": ssl,
                    "proxy": domain_proxy_info(
                        str(paths.nginx_available), str(paths.nginx_enabled), new_host
                    ),
                    "dns": old.dns.model_copy(
                        update={
                            "verified": False,
                            "expected_records": expected_dns_records(
                                new_host, cfg.server_ip, cfg.server_ipv6
                            ),
                        }
                    ),
                }
            )
        if port:
            domain = domain.model_copy(update={"target_port": port})

        stage = "Certificate generation"
        try:
            if renamed and domain.ssl.enabled:
                domain = self._issue_certificate(domain)
            stage = "Nginx configuration"
            domain = self._apply_proxy(domain)
            domain = self._set_status(domain, DomainStatus.ACTIVE, warnings)
        except TwoineError as exc:
            if renamed:
                self._rollback(domain, warnings)
            best_effort(
                "domain error status",
                self._set_status,
                domain,
                DomainStatus.ERROR,
                warnings,
                error=f"{stage} failed: {exc.message}",
            )
            self._alert(
                "domain",
                f"Failed to update platform domain {domain.hostname}: {exc.message}",
                warnings,
            )
            return self._failure(op, exc, warnings=warnings)

        logger.info("Updated platform domain %s -> %s", domain.hostname, domain.target)
        return ServiceResult(
            ok=True,
            op=op,
            data={"domain": domain.model_dump(mode="json")},
            warnings=warnings,
        )
