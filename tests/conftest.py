"""Shared pytest fixtures and test helpers for twoine tests.

Nothing here touches the host: every external process goes through
:class:`FakeRunner`, HTTP goes through an ``httpx.MockTransport`` and
all configured paths live under ``tmp_path``.
"""

from __future__ import annotations

import functools
import json
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pluggy
import pytest
from click.testing import CliRunner, Result

from twoine.config.models import (
    DatabasesConfig,
    DomainsConfig,
    EngineConfig,
    PathsConfig,
)
from twoine.config.settings import TwoineSettings
from twoine.domain.errors import ExternalCommandError
from twoine.infrastructure.platform import Platform
from twoine.infrastructure.runner import SHORT_TIMEOUT, CommandResult
from twoine.orchestrators.telemetry import disable_telemetry

ENCRYPTION_KEY = "00112233445566778899aabbccddeeff" * 2
FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)

hookimpl = pluggy.HookimplMarker("twoine")


# ---------------------------------------------------------------------------
# Process boundary
# ---------------------------------------------------------------------------


@dataclass
class Call:
    argv: tuple[str, ...]
    input: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    privileged: bool = False
    timeout: float = SHORT_TIMEOUT


class FakeRunner:
    """Recording ProcessRunner.

    Every call is recorded. ``fail(*prefix)`` makes matching calls exit 1;
    ``respond(*prefix, stdout=...)`` sets their output. ``systemctl``
    start/stop/restart flip a per-unit active flag that ``is-active`` and
    ``show`` report back, so the service state machine sees consistent
    answers.
    """

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self.active: set[str] = set()
        self._failures: list[tuple[tuple[str, ...], str]] = []
        self._outputs: list[tuple[tuple[str, ...], str]] = []

    def fail(self, *prefix: str, stderr: str = "simulated failure") -> None:
        self._failures.append((prefix, stderr))

    def respond(self, *prefix: str, stdout: str) -> None:
        self._outputs.append((prefix, stdout))

    def clear_failures(self) -> None:
        self._failures.clear()

    def argvs(self) -> list[tuple[str, ...]]:
        return [c.argv for c in self.calls]

    def find(self, *prefix: str) -> list[Call]:
        return [c for c in self.calls if c.argv[: len(prefix)] == prefix]

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float = SHORT_TIMEOUT,
        input: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        privileged: bool = False,
        check: bool = True,
    ) -> CommandResult:
        args = tuple(argv)
        self.calls.append(Call(args, input, dict(env or {}), cwd, privileged, timeout))
        for prefix, stderr in self._failures:
            if args[: len(prefix)] == prefix:
                result = CommandResult(argv=args, returncode=1, stderr=stderr)
                if check:
                    raise ExternalCommandError(
                        f"{' '.join(args[:2])} exited with status 1: {stderr}",
                        argv=args,
                        returncode=1,
                        stderr=stderr,
                    )
                return result
        return CommandResult(argv=args, returncode=0, stdout=self._stdout(args))

    def _stdout(self, args: tuple[str, ...]) -> str:
        systemctl = args[:1] == ("systemctl",) and len(args) >= 3
        if systemctl and args[1] in ("start", "restart"):
            self.active.add(args[2])
        elif systemctl and args[1] == "stop":
            self.active.discard(args[2])
        for prefix, stdout in self._outputs:
            if args[: len(prefix)] == prefix:
                return stdout
        if systemctl:
            verb, unit = args[1], args[2]
            if verb == "is-active":
                return "active\n" if unit in self.active else "inactive\n"
            if verb == "is-enabled":
                return "enabled\n"
            if verb == "show":
                if unit in self.active:
                    return "MainPID=4242\nMemoryCurrent=1048576\nNRestarts=0\nResult=success\n"
                return "MainPID=0\nMemoryCurrent=[not set]\nNRestarts=0\nResult=success\n"
        return ""


class HttpStub:
    """``httpx.MockTransport`` handler answering every request with ``status``."""

    def __init__(self) -> None:
        self.status = 200
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json={"ok": self.status < 400})


class EventRecorder:
    """In-process plugin capturing every notification."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, hook: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == hook]

    @hookimpl
    def service_status_changed(
        self, site: str, service: str, previous: str, current: str, error: str | None
    ) -> None:
        self.events.append(
            (
                "service_status_changed",
                {
                    "site": site,
                    "service": service,
                    "previous": previous,
                    "current": current,
                    "error": error,
                },
            )
        )

    @hookimpl
    def site_status_changed(self, site: str, previous: str, current: str) -> None:
        self.events.append(
            ("site_status_changed", {"site": site, "previous": previous, "current": current})
        )

    @hookimpl
    def domain_status_changed(self, domain: str, status: str, error: str | None) -> None:
        self.events.append(
            ("domain_status_changed", {"domain": domain, "status": status, "error": error})
        )

    @hookimpl
    def database_status_changed(self, database: str, site: str | None, status: str) -> None:
        self.events.append(
            ("database_status_changed", {"database": database, "site": site, "status": status})
        )

    @hookimpl
    def alert_raised(self, level: str, source: str, message: str, detail: dict[str, Any]) -> None:
        self.events.append(
            ("alert_raised", {"level": level, "source": source, "message": message})
        )


# ---------------------------------------------------------------------------
# Settings and platform
# ---------------------------------------------------------------------------


def make_paths(root: Path) -> PathsConfig:
    return PathsConfig(
        state_dir=root / "state",
        sites_dir=root / "sites",
        scripts_dir=root / "scripts",
        certs_dir=root / "certs",
        nginx_available=root / "nginx" / "sites-available",
        nginx_enabled=root / "nginx" / "sites-enabled",
        unit_dir=root / "systemd",
    )


def make_settings(root: Path, **overrides: Any) -> TwoineSettings:
    """Settings rooted at *root* with every engine's admin password configured."""
    databases = DatabasesConfig(
        encryption_key=ENCRYPTION_KEY,
        mysql=EngineConfig(port=3306, admin_password="mysql-admin-secret"),
        postgresql=EngineConfig(
            port=5432, admin_db="postgres", admin_password="pg-admin-secret"
        ),
        mongodb=EngineConfig(port=27017, admin_db="admin", admin_password="mongo-admin-secret"),
    )
    values: dict[str, Any] = {
        "use_sudo": False,
        "sync": True,
        "paths": make_paths(root),
        "databases": databases,
        "domains": DomainsConfig(server_ip="203.0.113.10"),
    }
    values.update(overrides)
    return TwoineSettings.from_cli(start_dir=root, **values)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host configuration out of every test."""
    monkeypatch.delenv("TWOINE_CONFIG", raising=False)
    monkeypatch.delenv("TWOINE_DATABASES__ENCRYPTION_KEY", raising=False)


@pytest.fixture(autouse=True)
def _telemetry_off() -> Iterator[None]:
    """``-v`` enables telemetry for the whole context; reset it after each test."""
    yield
    disable_telemetry()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def settings(tmp_path: Path) -> TwoineSettings:
    return make_settings(tmp_path)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def http_stub() -> HttpStub:
    return HttpStub()


@pytest.fixture
def platform(
    settings: TwoineSettings, runner: FakeRunner, http_stub: HttpStub
) -> Iterator[Platform]:
    """Platform on a temp state directory with a fixed clock and no real I/O."""
    p = Platform(
        settings,
        runner=runner,
        clock=lambda: FIXED_NOW,
        http_transport=httpx.MockTransport(http_stub),
    )
    try:
        yield p
    finally:
        p.close()


@pytest.fixture
def events(platform: Platform) -> EventRecorder:
    """Synchronous event bus with a recording plugin attached."""
    recorder = EventRecorder()
    platform.init_event_bus(sync=True, plugins=[recorder])
    return recorder


# ---------------------------------------------------------------------------
# Shared test helpers (used across orchestrator test modules)
# ---------------------------------------------------------------------------


def create_site(platform: Platform, name: str = "demo1", **kwargs: Any) -> dict[str, Any]:
    """Create a site via SiteOrchestrator, asserting success."""
    from twoine.orchestrators.site import SiteOrchestrator

    result = SiteOrchestrator(platform).create_site(name, **kwargs)
    assert result.ok, result.error
    return result.data["site"]


def create_service(
    platform: Platform, site: str, name: str, **kwargs: Any
) -> dict[str, Any]:
    """Create a service via ServiceOrchestrator, asserting success."""
    from twoine.orchestrators.service import ServiceOrchestrator

    kwargs.setdefault("start_command", "npm start")
    result = ServiceOrchestrator(platform).create_service(site, name, **kwargs)
    assert result.ok, result.error
    return result.data["service"]


def create_database(
    platform: Platform, site: str, name: str, engine_type: str = "mysql"
) -> dict[str, Any]:
    """Create a database via DatabaseOrchestrator, asserting success."""
    from twoine.orchestrators.database import DatabaseOrchestrator

    result = DatabaseOrchestrator(platform).create_database(site, name, engine_type)
    assert result.ok, result.error
    return result.data


# ---------------------------------------------------------------------------
# CLI harness
# ---------------------------------------------------------------------------


def write_config(root: Path) -> Path:
    """A ``twoine.toml`` mirroring :func:`make_settings`, for CLI tests."""
    paths = make_paths(root)
    lines = ["use_sudo = false", "", "[paths]"]
    lines.extend(f'{name} = "{value}"' for name, value in paths.model_dump().items())
    lines.extend(
        [
            "",
            "[domains]",
            'server_ip = "203.0.113.10"',
            "",
            "[databases]",
            f'encryption_key = "{ENCRYPTION_KEY}"',
            "",
            "[databases.mysql]",
            "port = 3306",
            'admin_password = "mysql-admin-secret"',
            "",
            "[databases.postgresql]",
            "port = 5432",
            'admin_db = "postgres"',
            'admin_password = "pg-admin-secret"',
        ]
    )
    path = root / "twoine.toml"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@dataclass
class CliHarness:
    """Invokes the root CLI against a temp config with a recording runner."""

    runner: CliRunner
    fake: FakeRunner

    def invoke(self, *args: str, input: str | None = None) -> Result:
        from twoine.cli import cli

        return self.runner.invoke(cli, ["--sync", *args], input=input)

    def json(self, *args: str) -> dict[str, Any]:
        result = self.invoke("--json", *args)
        return json.loads(result.output)


@pytest.fixture
def app_cli(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, cli_runner: CliRunner, runner: FakeRunner
) -> CliHarness:
    """CLI wired to ``tmp_path``: config discovered from cwd, OS calls recorded."""
    write_config(tmp_path)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        "twoine.infrastructure.platform.Platform",
        functools.partial(Platform, runner=runner, clock=lambda: FIXED_NOW),
    )
    return CliHarness(cli_runner, runner)
