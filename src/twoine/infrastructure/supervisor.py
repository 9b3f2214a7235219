"""Process supervisor adapter over systemd.

Every public method validates the unit name before any external call;
this is the single choke point against unit-name injection. Unit files
are staged privately and moved into ``unit_dir`` with a privileged
``mv`` so systemd never reads a half-written file.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from pydantic import BaseModel

from twoine.domain.entities import Service, Site
from twoine.domain.errors import TwoineError, ValidationError
from twoine.domain.validation import validate_unit_name
from twoine.infrastructure.filesystem import install_file, remove_file
from twoine.infrastructure.runner import ProcessRunner
from twoine.infrastructure.templates import build_template_environment

logger = logging.getLogger(__name__)

_SHOW_PROPERTIES = "MainPID,ActiveEnterTimestamp,MemoryCurrent,CPUUsageNSec,NRestarts,Result"
_NOT_SET = {"", "[not set]"}


class UnitStatus(BaseModel):
    """Structured snapshot of one unit as reported by ``systemctl``."""

    model_config = {"frozen": True}

    name: str
    active: str = "unknown"
    enabled: bool = False
    pid: int | None = None
    uptime_seconds: int | None = None
    memory_bytes: int | None = None
    cpu_seconds: float | None = None
    restart_count: int = 0
    last_result: str | None = None
    error: str | None = None

    @property
    def running(self) -> bool:
        return self.active == "active"


class SystemdSupervisor:
    """Install, control and introspect ``<prefix>-<site>-<service>`` units.

    Parameters:
        runner: OS process boundary.
        unit_dir: Directory systemd loads unit files from.
        staging_dir: Private scratch directory for atomic writes.
        unit_prefix: Required first segment of every managed unit name.
        timeout: Per-call timeout for ``systemctl``.
        concurrency: Parallel status queries in :meth:`batch_status`.
        clock: Source of "now" for uptime computation.
        override_root: Directory holding operator template overrides.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        unit_dir: Path,
        staging_dir: Path,
        unit_prefix: str = "twoine",
        timeout: float = 30,
        concurrency: int = 10,
        clock: Callable[[], datetime] | None = None,
        override_root: Path | None = None,
    ) -> None:
        self._runner = runner
        self._unit_dir = unit_dir
        self._staging_dir = staging_dir
        self._prefix = unit_prefix
        self._timeout = timeout
        self._concurrency = max(1, concurrency)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._templates = build_template_environment("systemd", override_root=override_root)

    # ------------------------------------------------------------------
    # Name guard
    # ------------------------------------------------------------------

    def check_name(self, unit: str) -> str:
        """Validate *unit* and require the managed prefix."""
        validate_unit_name(unit)
        if not unit.startswith(f"{self._prefix}-"):
            msg = f"Unit name must start with '{self._prefix}-': {unit}"
            raise ValidationError(msg, detail={"field": "unit", "value": unit})
        return unit

    def unit_path(self, unit: str) -> Path:
        return self._unit_dir / f"{self.check_name(unit)}.service"

    def _systemctl(self, *args: str, check: bool = True, privileged: bool = True) -> str:
        result = self._runner.run(
            ["systemctl", *args], timeout=self._timeout, privileged=privileged, check=check
        )
        return result.stdout

    # ------------------------------------------------------------------
    # Unit files
    # ------------------------------------------------------------------

    def install(self, unit: str, text: str) -> None:
        """Atomically write the unit file (mode 644, owned by root)."""
        path = self.unit_path(unit)
        install_file(self._runner, text, str(path), staging_dir=self._staging_dir, mode="644")
        logger.debug("Installed unit file %s", path)

    def remove(self, unit: str) -> None:
        remove_file(self._runner, str(self.unit_path(unit)))

    def exists(self, unit: str) -> bool:
        """True when the unit file is present. Invalid names simply do not exist."""
        try:
            return self.unit_path(unit).is_file()
        except ValidationError:
            return False

    def render_unit(
        self,
        service: Service,
        site: Site,
        *,
        wants: Sequence[str] = (),
        restart_policy: str = "always",
        restart_sec: int = 5,
        timeout_start: int = 30,
        timeout_stop: int = 30,
        start_limit_interval: int = 60,
        start_limit_burst: int = 5,
    ) -> str:
        """Unit text for *service* running as *site*'s OS user."""
        template = self._templates.get_template("service.unit.j2")
        return template.render(
            site_name=site.name,
            service_name=service.name,
            display_name=service.display_name,
            unit_name=service.unit.name,
            wants=[f"{self.check_name(w)}.service" for w in wants],
            start_limit_interval=start_limit_interval,
            start_limit_burst=start_limit_burst,
            user=site.os_user.username,
            group=site.os_user.username,
            working_dir=service.working_dir,
            exec_start=exec_start_line(service),
            exec_stop=service.commands.stop,
            restart_policy=restart_policy,
            restart_sec=restart_sec,
            timeout_start=timeout_start,
            timeout_stop=timeout_stop,
            port=service.port,
            read_write_paths=[
                service.working_dir,
                site.paths.logs,
                site.paths.data,
                site.paths.tmp,
            ],
            memory_mb=service.resources.memory_mb,
            cpu_percent=service.resources.cpu_percent,
            logs_dir=site.paths.logs,
        )

    # ------------------------------------------------------------------
    # Control verbs
    # ------------------------------------------------------------------

    def reload_manager(self) -> None:
        self._systemctl("daemon-reload")

    def enable(self, unit: str) -> None:
        self._systemctl("enable", f"{self.check_name(unit)}.service")

    def disable(self, unit: str) -> None:
        self._systemctl("disable", f"{self.check_name(unit)}.service")

    def start(self, unit: str) -> None:
        self._systemctl("start", f"{self.check_name(unit)}.service")

    def stop(self, unit: str) -> None:
        self._systemctl("stop", f"{self.check_name(unit)}.service")

    def restart(self, unit: str) -> None:
        self._systemctl("restart", f"{self.check_name(unit)}.service")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def status(self, unit: str) -> UnitStatus:
        """Query ``is-active``, ``is-enabled`` and ``show`` for *unit*.

        A failing ``show`` call is reported in ``error`` rather than raised;
        only an invalid unit name raises.
        """
        name = f"{self.check_name(unit)}.service"
        active = self._systemctl("is-active", name, check=False, privileged=False).strip()
        enabled = self._systemctl("is-enabled", name, check=False, privileged=False).strip()
        fields: dict[str, object] = {
            "name": unit,
            "active": active or "unknown",
            "enabled": enabled == "enabled",
        }
        try:
            shown = self._systemctl(
                "show", name, f"--property={_SHOW_PROPERTIES}", privileged=False
            )
        except TwoineError as exc:
            return UnitStatus(**fields, error=str(exc))  # type: ignore[arg-type]

        props = _parse_properties(shown)
        fields.update(self._interpret(props))
        return UnitStatus(**fields)  # type: ignore[arg-type]

    def _interpret(self, props: dict[str, str]) -> dict[str, object]:
        out: dict[str, object] = {}
        pid = _to_int(props.get("MainPID"))
        if pid:
            out["pid"] = pid

        started = _parse_timestamp(props.get("ActiveEnterTimestamp", ""))
        if started is not None:
            out["uptime_seconds"] = max(0, int((self._clock() - started).total_seconds()))

        memory = _to_int(props.get("MemoryCurrent"))
        if memory is not None:
            out["memory_bytes"] = memory

        cpu_ns = _to_int(props.get("CPUUsageNSec"))
        if cpu_ns is not None:
            out["cpu_seconds"] = round(cpu_ns / 1_000_000_000, 3)

        out["restart_count"] = _to_int(props.get("NRestarts")) or 0
        result = props.get("Result")
        if result and result != "success":
            out["last_result"] = result
        return out

    def batch_status(self, units: Sequence[str]) -> dict[str, UnitStatus]:
        """Status of many units, with at most ``concurrency`` queries in flight.

        Names are all validated before the first query. A unit whose
        query fails outright is reported with ``active='error'``.
        """
        for unit in units:
            self.check_name(unit)
        if not units:
            return {}

        def _one(unit: str) -> UnitStatus:
            try:
                return self.status(unit)
            except TwoineError as exc:
                return UnitStatus(name=unit, active="error", error=str(exc))

        with ThreadPoolExecutor(max_workers=min(self._concurrency, len(units))) as pool:
            return {s.name: s for s in pool.map(_one, units)}

    def list_units(self) -> list[dict[str, str]]:
        """All loaded units carrying the managed prefix."""
        out = self._systemctl(
            "list-units",
            "--type=service",
            "--all",
            "--no-legend",
            "--no-pager",
            "--plain",
            f"{self._prefix}-*",
            check=False,
            privileged=False,
        )
        units: list[dict[str, str]] = []
        for line in out.splitlines():
            parts = line.split(None, 4)
            if len(parts) < 4 or not parts[0].endswith(".service"):
                continue
            name = parts[0].removesuffix(".service")
            if not name.startswith(f"{self._prefix}-"):
                continue
            units.append(
                {
                    "name": name,
                    "load": parts[1],
                    "active": parts[2],
                    "sub": parts[3],
                    "description": parts[4] if len(parts) > 4 else "",
                }
            )
        return units

    # ------------------------------------------------------------------
    # Composite operations
    # ------------------------------------------------------------------

    def setup(self, unit: str, text: str, *, start: bool = False) -> None:
        """Install, reload, enable and optionally start."""
        self.install(unit, text)
        self.reload_manager()
        self.enable(unit)
        if start:
            self.start(unit)

    def teardown(self, unit: str) -> None:
        """Stop, disable, remove and reload.

        Stop/disable failures are swallowed: the unit may already be
        stopped, disabled or gone.
        """
        self.check_name(unit)
        for verb in (self.stop, self.disable):
            try:
                verb(unit)
            except TwoineError as exc:
                logger.debug("teardown %s: %s", unit, exc)
        self.remove(unit)
        self.reload_manager()

    def update(self, unit: str, text: str, *, restart_if_running: bool = True) -> bool:
        """Rewrite the unit file; restart when it was running. Returns True if restarted."""
        was_running = self.status(unit).running
        self.install(unit, text)
        self.reload_manager()
        if was_running and restart_if_running:
            self.restart(unit)
            return True
        return False


def _parse_properties(text: str) -> dict[str, str]:
    props: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip():
            props[key.strip()] = value.strip()
    return props


def _to_int(value: str | None) -> int | None:
    if value is None or value in _NOT_SET:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_timestamp(value: str) -> datetime | None:
    """Parse systemd's ``Mon 2024-01-15 10:30:00 UTC`` timestamp format."""
    parts = value.split()
    if len(parts) < 3:
        return None
    try:
        parsed = datetime.strptime(f"{parts[1]} {parts[2]}", "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None
    if len(parts) > 3 and parts[3] in {"UTC", "GMT"}:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def exec_start_line(service: Service) -> str:
    """Absolute-path ``ExecStart`` for the service's start command.

    The runtime binary replaces a matching bare program name, local
    scripts resolve against the working directory, and any other bare
    program is looked up through ``/usr/bin/env``.
    """
    program, _, args = service.commands.start.strip().partition(" ")
    binary = service.runtime.binary
    if binary and program == PurePosixPath(binary).name:
        resolved = binary
    elif program.startswith("./"):
        resolved = str(PurePosixPath(service.working_dir) / program[2:])
    elif program.startswith("/"):
        resolved = program
    else:
        resolved = f"/usr/bin/env {program}"
    return f"{resolved} {args}".rstrip()
