"""AppContext: shared Click context for all commands.

Created once by the root CLI group and handed to every subcommand via
``@click.pass_obj``. Builds the Platform lazily, resolves human
references (site names, ``site service`` pairs), and centralizes result
emission (stdout/stderr routing + exit codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

import click

from twoine.domain.errors import ConfigurationError, NotFoundError, TwoineError
from twoine.orchestrators.base import BaseOrchestrator
from twoine.output.formatters import OutputSettings, format_result

if TYPE_CHECKING:
    from twoine.config.settings import TwoineSettings
    from twoine.infrastructure.platform import Platform
    from twoine.orchestrators.database import DatabaseOrchestrator
    from twoine.orchestrators.result import ServiceResult


class AppContext:
    """Shared context flowing through Click's command hierarchy.

    The platform is initialized on first use so ``--help``, ``--version``
    and ``--examples`` never open the state database.
    """

    def __init__(self, settings: TwoineSettings) -> None:
        self.settings = settings
        self._platform: Platform | None = None

        from twoine.config.logging import configure_logging

        configure_logging(verbose=settings.verbose, log_json=settings.log_json)

        if settings.verbose:
            from twoine.orchestrators.telemetry import enable_telemetry

            enable_telemetry()

    @property
    def platform(self) -> Platform:
        """The platform instance (created lazily on first access)."""
        if self._platform is None:
            from twoine.infrastructure.platform import Platform

            self._platform = Platform(self.settings)
            self._platform.init_event_bus(sync=self.settings.sync)
        return self._platform

    def close(self) -> None:
        if self._platform is not None:
            self._platform.close()
            self._platform = None

    def database_orchestrator(self) -> DatabaseOrchestrator:
        """Build the database orchestrator; a missing encryption key aborts the command."""
        from twoine.orchestrators.database import DatabaseOrchestrator

        try:
            return DatabaseOrchestrator(self.platform)
        except ConfigurationError as exc:
            raise click.ClickException(exc.message) from exc

    # ------------------------------------------------------------------
    # Reference resolution
    # ------------------------------------------------------------------

    def service_id(self, op: str, site_ref: str, service_ref: str) -> str:
        """Id of *service_ref* (id or name) within the site *site_ref*."""
        platform = self.platform
        try:
            site = platform.sites.require(site_ref)
            service = platform.services.get(service_ref) or platform.services.get_by_name(
                site.id, service_ref
            )
            if service is None or service.site_id != site.id:
                msg = f"Service not found: {service_ref} in site {site.name}"
                raise NotFoundError(msg, detail={"site": site.name, "service": service_ref})
        except TwoineError as exc:
            self.fail(op, exc)
        return service.id

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def emit(self, result: ServiceResult) -> None:
        """Format and output a ServiceResult with correct exit semantics.

        * Success (``result.ok``): writes to stdout, returns normally.
          Warnings go to stderr so they don't pollute piped output.
        * Failure: writes to stderr, exits with code 1.
        """
        settings = OutputSettings(
            json_output=self.settings.json_output,
            quiet=self.settings.quiet,
            verbose=self.settings.verbose,
        )
        output = format_result(result, settings=settings)
        if result.ok:
            click.echo(output)
            # In JSON mode, warnings are already in the serialized payload.
            if not settings.json_output:
                for warning in result.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
        else:
            click.echo(output, err=True)
            raise SystemExit(1)

    def fail(self, op: str, exc: TwoineError) -> NoReturn:
        """Emit *exc* as a failed result for *op* and exit 1."""
        self.emit(BaseOrchestrator._failure(op, exc))
        raise SystemExit(1)
