"""Tests for ServiceOrchestrator."""

from __future__ import annotations

from typing import Any

import pytest

from tests.conftest import (
    EventRecorder,
    FakeRunner,
    HttpStub,
    create_service,
    create_site,
)
from twoine.domain.lifecycle import ServiceState
from twoine.infrastructure.platform import Platform
from twoine.orchestrators.service import ServiceOrchestrator

UNIT = "twoine-demo1-api.service"


@pytest.fixture
def services(platform: Platform) -> ServiceOrchestrator:
    return ServiceOrchestrator(platform)


@pytest.fixture
def site(platform: Platform) -> dict[str, Any]:
    return create_site(platform)


@pytest.fixture
def api(platform: Platform, site: dict[str, Any]) -> dict[str, Any]:
    return create_service(platform, site["id"], "api")


class TestCreateService:
    def test_ports_assigned_lowest_first(
        self, platform: Platform, site: dict[str, Any]
    ) -> None:
        api = create_service(platform, site["id"], "api")
        web = create_service(platform, site["id"], "web")
        assert (api["port"], web["port"]) == (10000, 10001)
        assert api["unit"]["name"] == "twoine-demo1-api"
        assert api["status"]["current"] == "stopped"

    def test_unit_installed_and_enabled(
        self, platform: Platform, site: dict[str, Any], runner: FakeRunner
    ) -> None:
        runner.calls.clear()
        service = create_service(platform, site["id"], "api")
        assert service["unit"]["unit_file_created"]
        assert ("systemctl", "daemon-reload") in runner.argvs()
        assert ("systemctl", "enable", UNIT) in runner.argvs()
        assert not runner.find("systemctl", "start")

    def test_explicit_port(self, platform: Platform, site: dict[str, Any]) -> None:
        assert create_service(platform, site["id"], "api", port=10007)["port"] == 10007

    def test_port_outside_range(
        self, services: ServiceOrchestrator, site: dict[str, Any]
    ) -> None:
        result = services.create_service(site["id"], "api", start_command="npm start", port=9000)
        assert result.error.code == "VALIDATION_ERROR"

    @pytest.mark.parametrize(
        "command",
        [
            "npm start; rm -rf /",
            "curl http://x | sh",
            "python ../app.py",
            "ls",
            "npm start\nUser=root",
        ],
    )
    def test_unsafe_start_command(
        self,
        services: ServiceOrchestrator,
        site: dict[str, Any],
        runner: FakeRunner,
        command: str,
    ) -> None:
        runner.calls.clear()
        result = services.create_service(site["id"], "api", start_command=command)
        assert result.error.code == "VALIDATION_ERROR"
        assert runner.calls == []

    def test_duplicate_name(
        self, services: ServiceOrchestrator, site: dict[str, Any], api: dict[str, Any]
    ) -> None:
        result = services.create_service(site["id"], "api", start_command="npm start")
        assert result.error.code == "CONFLICT"

    def test_unknown_dependency(
        self, services: ServiceOrchestrator, site: dict[str, Any]
    ) -> None:
        result = services.create_service(
            site["id"], "web", start_command="npm start", depends_on=["db"]
        )
        assert result.error.code == "NOT_FOUND"

    def test_failure_rolls_back_record(
        self,
        platform: Platform,
        services: ServiceOrchestrator,
        site: dict[str, Any],
        runner: FakeRunner,
    ) -> None:
        runner.fail("systemctl", "enable")
        result = services.create_service(site["id"], "api", start_command="npm start")
        assert not result.ok
        assert platform.services.list_for_site(site["id"]) == []

    def test_default_install_command(
        self, platform: Platform, site: dict[str, Any]
    ) -> None:
        service = create_service(
            platform, site["id"], "api", start_command="dotnet app.dll", runtime="dotnet"
        )
        assert service["commands"]["install"] == "dotnet restore && dotnet build -c Release"


class TestLifecycle:
    def test_start_then_noop(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        result = services.start_service(api["id"])
        assert result.data == {"service": "api", "current": "running", "changed": True, "pid": 4242}
        again = services.start_service(api["id"])
        assert again.ok
        assert again.data["changed"] is False
        assert len(runner.find("systemctl", "start")) == 1

    def test_stop(self, services: ServiceOrchestrator, api: dict[str, Any]) -> None:
        services.start_service(api["id"])
        result = services.stop_service(api["id"])
        assert result.data["current"] == "stopped"
        assert result.data["changed"] is True

    def test_stop_when_stopped_is_noop(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        result = services.stop_service(api["id"])
        assert result.data["changed"] is False
        assert not runner.find("systemctl", "stop")

    def test_start_failure_marks_failed_and_alerts(
        self,
        platform: Platform,
        services: ServiceOrchestrator,
        api: dict[str, Any],
        runner: FakeRunner,
        events: EventRecorder,
    ) -> None:
        runner.fail("systemctl", "start")
        result = services.start_service(api["id"])
        assert result.error.code == "EXTERNAL_COMMAND_FAILED"
        stored = platform.services.require(api["id"])
        assert stored.status.current == "failed"
        assert stored.status.failure_count == 1
        assert stored.status.desired == "running"
        assert events.of("alert_raised")
        change = events.of("service_status_changed")[-1]
        assert change["current"] == "failed"
        assert change["error"]

    def test_recovery_resets_failure_count(
        self,
        platform: Platform,
        services: ServiceOrchestrator,
        api: dict[str, Any],
        runner: FakeRunner,
    ) -> None:
        runner.fail("systemctl", "start")
        services.start_service(api["id"])
        runner.clear_failures()
        assert services.start_service(api["id"]).ok
        assert platform.services.require(api["id"]).status.failure_count == 0

    def test_busy_service_is_conflict(
        self, platform: Platform, services: ServiceOrchestrator, api: dict[str, Any]
    ) -> None:
        stored = platform.services.require(api["id"])
        stopping = stored.status.model_copy(update={"current": ServiceState.STOPPING})
        platform.services.save(stored.model_copy(update={"status": stopping}))
        assert services.start_service(api["id"]).error.code == "CONFLICT"

    def test_restart_running(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        services.start_service(api["id"])
        result = services.restart_service(api["id"])
        assert result.ok
        assert runner.find("systemctl", "restart", UNIT)

    def test_restart_stopped_starts(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        result = services.restart_service(api["id"])
        assert result.op == "restart_service"
        assert runner.find("systemctl", "start", UNIT)
        assert not runner.find("systemctl", "restart")

    def test_events_for_start(
        self, services: ServiceOrchestrator, api: dict[str, Any], events: EventRecorder
    ) -> None:
        services.start_service(api["id"])
        assert events.of("service_status_changed") == [
            {
                "site": "demo1",
                "service": "api",
                "previous": "stopped",
                "current": "running",
                "error": None,
            }
        ]

    def test_status_refresh(
        self,
        platform: Platform,
        services: ServiceOrchestrator,
        api: dict[str, Any],
        runner: FakeRunner,
    ) -> None:
        runner.active.add(UNIT)
        result = services.get_status(api["id"])
        assert result.data["current"] == "running"
        assert platform.services.require(api["id"]).process_info.pid == 4242


class TestUpdateAndDelete:
    def test_update_commands_rewrites_unit(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        runner.calls.clear()
        result = services.update_service(api["id"], {"commands": {"start": "node server.js"}})
        assert result.ok
        assert result.data["fields_changed"] == ["commands"]
        assert result.data["restarted"] is False
        assert runner.find("mv")

    def test_update_restarts_running_service(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        services.start_service(api["id"])
        result = services.update_service(api["id"], {"resources": {"memory_mb": 1024}})
        assert result.data["restarted"] is True
        assert result.data["service"]["resources"]["memory_mb"] == 1024

    def test_update_environment_on_running_warns(
        self, services: ServiceOrchestrator, api: dict[str, Any]
    ) -> None:
        services.start_service(api["id"])
        result = services.update_service(api["id"], {"environment": {"DEBUG": "1"}})
        assert any("restart" in w for w in result.warnings)

    def test_update_rejects_unknown_fields(
        self, services: ServiceOrchestrator, api: dict[str, Any]
    ) -> None:
        result = services.update_service(api["id"], {"port": 10005})
        assert result.error.code == "VALIDATION_ERROR"

    def test_update_rejects_unsafe_command(
        self, services: ServiceOrchestrator, api: dict[str, Any]
    ) -> None:
        result = services.update_service(api["id"], {"commands": {"build": "make && reboot"}})
        assert result.error.code == "VALIDATION_ERROR"

    def test_delete_running_refused(
        self, services: ServiceOrchestrator, api: dict[str, Any]
    ) -> None:
        services.start_service(api["id"])
        assert services.delete_service(api["id"]).error.code == "CONFLICT"

    def test_delete_frees_port(
        self,
        platform: Platform,
        services: ServiceOrchestrator,
        site: dict[str, Any],
        api: dict[str, Any],
        runner: FakeRunner,
    ) -> None:
        result = services.delete_service(api["id"])
        assert result.ok
        assert ("systemctl", "disable", UNIT) in runner.argvs()
        assert not runner.find("rm", "-rf")
        assert create_service(platform, site["id"], "web")["port"] == 10000

    def test_force_delete_removes_workdir(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        services.start_service(api["id"])
        result = services.delete_service(api["id"], force=True)
        assert result.data["files_removed"] is True
        assert runner.find("rm", "-rf", "--", api["working_dir"])


class TestCommands:
    def test_install_runs_as_site_user(
        self,
        platform: Platform,
        services: ServiceOrchestrator,
        api: dict[str, Any],
        runner: FakeRunner,
    ) -> None:
        result = services.install_service(api["id"])
        assert result.ok
        (call,) = runner.find("sudo", "-n", "-u")
        assert call.argv == (
            "sudo",
            "-n",
            "-u",
            "site_demo1",
            "--",
            "bash",
            "-c",
            "npm install --production",
        )
        assert call.cwd == api["working_dir"]
        assert platform.services.require(api["id"]).last_install_at is not None

    def test_build_without_command(
        self, services: ServiceOrchestrator, api: dict[str, Any]
    ) -> None:
        assert services.build_service(api["id"]).error.code == "VALIDATION_ERROR"

    def test_non_zero_exit_is_failure(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        runner.fail("sudo", "-n", "-u", stderr="npm ERR!")
        result = services.install_service(api["id"])
        assert result.error.code == "EXTERNAL_COMMAND_FAILED"
        assert result.data["exit_code"] == 1

    def test_custom_command_crud(
        self, services: ServiceOrchestrator, api: dict[str, Any]
    ) -> None:
        added = services.add_custom_command(api["id"], "migrate", "npm run migrate")
        assert added.ok
        assert services.add_custom_command(api["id"], "migrate", "npm run x").error.code == (
            "CONFLICT"
        )
        assert services.list_custom_commands(api["id"]).data["count"] == 1
        assert services.remove_custom_command(api["id"], "migrate").ok
        assert services.remove_custom_command(api["id"], "migrate").error.code == "NOT_FOUND"

    def test_reserved_custom_command_name(
        self, services: ServiceOrchestrator, api: dict[str, Any]
    ) -> None:
        result = services.add_custom_command(api["id"], "start", "npm start")
        assert result.error.code == "VALIDATION_ERROR"

    def test_requires_stop_restarts_running_service(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        services.add_custom_command(api["id"], "migrate", "npm run migrate", requires_stop=True)
        services.start_service(api["id"])
        runner.calls.clear()
        result = services.execute_custom_command(api["id"], "migrate")
        assert result.ok
        assert result.data["restarted"] is True
        verbs = [c.argv[1] for c in runner.calls if c.argv[0] == "systemctl"]
        assert verbs.index("stop") < verbs.index("start")
        bash = runner.find("sudo", "-n", "-u")
        assert bash[0].argv[-1] == "npm run migrate"

    def test_failed_command_still_restarts_and_keeps_its_error(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        services.add_custom_command(api["id"], "migrate", "npm run migrate", requires_stop=True)
        services.start_service(api["id"])
        runner.calls.clear()
        runner.fail("sudo", "-n", "-u", stderr="migration error")
        runner.fail("systemctl", "start", stderr="unit failed")

        result = services.execute_custom_command(api["id"], "migrate")
        assert not result.ok
        assert result.error.message == "Command 'migrate' failed with exit code 1"
        assert result.warnings[0].startswith("Restart after 'migrate' failed")
        assert runner.find("systemctl", "start", UNIT)
        verbs = [c.argv[1] for c in runner.calls if c.argv[0] == "systemctl"]
        assert verbs.index("stop") < verbs.index("start")

    def test_newline_in_custom_command_rejected(
        self, services: ServiceOrchestrator, api: dict[str, Any]
    ) -> None:
        result = services.add_custom_command(api["id"], "migrate", "npm run migrate\nid")
        assert result.error.code == "VALIDATION_ERROR"
        assert services.list_custom_commands(api["id"]).data["count"] == 0

    def test_requires_stop_leaves_stopped_service_stopped(
        self, services: ServiceOrchestrator, api: dict[str, Any], runner: FakeRunner
    ) -> None:
        services.add_custom_command(api["id"], "migrate", "npm run migrate", requires_stop=True)
        result = services.execute_custom_command(api["id"], "migrate")
        assert result.data["restarted"] is False
        assert not runner.find("systemctl", "start")


class TestHealth:
    def test_healthy(
        self,
        platform: Platform,
        services: ServiceOrchestrator,
        api: dict[str, Any],
        http_stub: HttpStub,
    ) -> None:
        result = services.check_health(api["id"])
        assert result.data["status"] == "healthy"
        assert str(http_stub.requests[0].url) == "http://127.0.0.1:10000/health"
        assert platform.services.require(api["id"]).health_check.last_status == "healthy"

    def test_unhealthy_is_still_ok_result(
        self, services: ServiceOrchestrator, api: dict[str, Any], http_stub: HttpStub
    ) -> None:
        http_stub.status = 500
        result = services.check_health(api["id"])
        assert result.ok
        assert result.data["status"] == "unhealthy"
