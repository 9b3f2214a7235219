"""Platform: the single dependency injected into every orchestrator.

The Platform owns the state database engine, the process runner, the
clock and the entity repositories, and lazily builds the OS-facing
adapters (supervisor, reverse proxy, PKI, OS users, SFTP, health probe,
database engine drivers) from :class:`TwoineSettings`. Tests substitute
a recording runner, a fixed clock and an httpx mock transport here.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING, Any

from twoine.infrastructure.database.engine import init_database
from twoine.infrastructure.engines import DatabaseEngine, build_engines
from twoine.infrastructure.health import HealthProber
from twoine.infrastructure.osusers import OsUserManager
from twoine.infrastructure.pki import SelfSignedIssuer
from twoine.infrastructure.proxy import NginxProxy
from twoine.infrastructure.repositories import (
    DatabaseRepository,
    DomainRepository,
    ServiceRepository,
    SiteRepository,
)
from twoine.infrastructure.runner import ProcessRunner, SubprocessRunner
from twoine.infrastructure.sftp import SftpProvisioner
from twoine.infrastructure.supervisor import SystemdSupervisor

if TYPE_CHECKING:
    import httpx
    from sqlalchemy.engine import Engine

    from twoine.config.settings import TwoineSettings
    from twoine.domain.lifecycle import DatabaseEngineType

logger = logging.getLogger(__name__)


class Platform:
    """Repositories plus OS adapters for one control process.

    Constructed once at CLI startup and stored in ``click.Context.obj``.
    Orchestrators receive the Platform via :class:`BaseOrchestrator`.
    """

    def __init__(
        self,
        settings: TwoineSettings,
        *,
        runner: ProcessRunner | None = None,
        clock: Callable[[], datetime] | None = None,
        engine: Engine | None = None,
        http_transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._engine: Engine = engine or init_database(settings.paths.state_dir)
        self._runner: ProcessRunner = runner or SubprocessRunner(use_sudo=settings.use_sudo)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._http_transport = http_transport
        self._event_bus: Any | None = None

        self.sites = SiteRepository(self._engine)
        self.services = ServiceRepository(self._engine)
        self.domains = DomainRepository(self._engine)
        self.databases = DatabaseRepository(self._engine)

    # ------------------------------------------------------------------
    # Core collaborators
    # ------------------------------------------------------------------

    @property
    def settings(self) -> TwoineSettings:
        return self._settings

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def runner(self) -> ProcessRunner:
        return self._runner

    @property
    def staging_dir(self) -> Path:
        """Private scratch directory for atomically installed files."""
        return self._settings.paths.state_dir / "staging"

    def now(self) -> datetime:
        return self._clock()

    def now_iso(self) -> str:
        return self._clock().isoformat()

    @property
    def event_bus(self) -> Any | None:
        """The plugin event bus (None if not initialized)."""
        return self._event_bus

    # ------------------------------------------------------------------
    # OS adapters
    # ------------------------------------------------------------------

    @cached_property
    def supervisor(self) -> SystemdSupervisor:
        cfg = self._settings.supervisor
        return SystemdSupervisor(
            self._runner,
            unit_dir=self._settings.paths.unit_dir,
            staging_dir=self.staging_dir,
            unit_prefix=cfg.unit_prefix,
            timeout=cfg.command_timeout,
            concurrency=cfg.status_concurrency,
            clock=self._clock,
            override_root=self._settings.paths.state_dir,
        )

    @cached_property
    def proxy(self) -> NginxProxy:
        return NginxProxy(
            self._runner,
            staging_dir=self.staging_dir,
            timeout=self._settings.domains.command_timeout,
            clock=self._clock,
            override_root=self._settings.paths.state_dir,
        )

    @cached_property
    def pki(self) -> SelfSignedIssuer:
        cfg = self._settings.domains
        return SelfSignedIssuer(
            self._runner,
            certs_dir=self._settings.paths.certs_dir,
            days=cfg.cert_days,
            key_bits=cfg.key_bits,
            organization=cfg.cert_org,
            country=cfg.cert_country,
        )

    @cached_property
    def os_users(self) -> OsUserManager:
        return OsUserManager(self._runner, control_user=self._settings.sites.control_user)

    @cached_property
    def sftp(self) -> SftpProvisioner:
        return SftpProvisioner(
            self._runner,
            scripts_dir=self._settings.paths.scripts_dir,
            sites_dir=self._settings.paths.sites_dir,
            timeout=self._settings.sftp.timeout,
        )

    @cached_property
    def health(self) -> HealthProber:
        return HealthProber(transport=self._http_transport)

    @cached_property
    def db_engines(self) -> dict[DatabaseEngineType, DatabaseEngine]:
        return build_engines(self._runner, self._settings.databases)

    def env_template(self) -> Any:
        """The environment-file template, honouring operator overrides."""
        from twoine.infrastructure.templates import build_template_environment

        env = build_template_environment("env", override_root=self._settings.paths.state_dir)
        return env.get_template("service.env.j2")

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    def init_event_bus(self, *, sync: bool = False, plugins: Sequence[object] = ()) -> None:
        """Initialize the plugin event bus.

        Creates a PluginManager, discovers entry-point plugins, registers
        the built-in webhook notifier when a URL is configured plus any
        in-process *plugins*, and wires up the EventBus. Called by
        AppContext when the platform is first accessed.
        """
        from twoine.plugins.builtins.webhook import WebhookNotifier
        from twoine.plugins.event_bus import EventBus
        from twoine.plugins.manager import PluginManager

        pm = PluginManager()
        pm.discover_and_load()

        notifications = self._settings.notifications
        if notifications.webhook_url:
            notifier = WebhookNotifier(
                notifications.webhook_url,
                timeout=notifications.timeout,
                transport=self._http_transport,
            )
            pm.register_plugin(notifier, name="webhook-builtin")
        for plugin in plugins:
            pm.register_plugin(plugin)

        self._event_bus = EventBus(self._engine, pm, sync=sync)

    def close(self) -> None:
        """Flush in-flight events and release the database engine."""
        if self._event_bus is not None:
            self._event_bus.shutdown()
        self._engine.dispose()
