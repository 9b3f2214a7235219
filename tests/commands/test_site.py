"""Tests for the ``twoine site`` command group."""

from __future__ import annotations

from tests.conftest import CliHarness


class TestCreate:
    def test_create_site(self, app_cli: CliHarness) -> None:
        result = app_cli.invoke("site", "create", "demo1", "--env", "NODE_ENV=production")
        assert result.exit_code == 0
        assert "create_site" in result.output
        assert "name: demo1" in result.output
        assert "ports: 10000-10009" in result.output

    def test_create_json(self, app_cli: CliHarness) -> None:
        data = app_cli.json("site", "create", "demo1", "--env", "URL=a=b")
        assert data["ok"] is True
        assert data["data"]["site"]["environment"] == {"URL": "a=b"}
        assert data["data"]["sftp"]["password"]

    def test_bad_env_assignment(self, app_cli: CliHarness) -> None:
        result = app_cli.invoke("site", "create", "demo1", "--env", "NOEQUALS")
        assert result.exit_code == 2
        assert "KEY=VALUE" in result.output

    def test_invalid_name_exits_1(self, app_cli: CliHarness) -> None:
        result = app_cli.invoke("site", "create", "Bad Name")
        assert result.exit_code == 1
        assert "VALIDATION_ERROR" in result.output
        assert app_cli.fake.calls == []

    def test_quiet_error(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1")
        result = app_cli.invoke("-q", "site", "create", "demo1")
        assert result.exit_code == 1
        assert "ERROR: create_site:" in result.output


class TestQueries:
    def test_list_quiet_prints_ids(self, app_cli: CliHarness) -> None:
        first = app_cli.json("site", "create", "demo1")["data"]["site"]["id"]
        second = app_cli.json("site", "create", "demo2")["data"]["site"]["id"]
        result = app_cli.invoke("-q", "site", "list")
        assert result.exit_code == 0
        assert set(result.output.split()) == {first, second}

    def test_list_table(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1")
        result = app_cli.invoke("site", "list", "--status", "active")
        assert result.exit_code == 0
        assert "demo1" in result.output
        assert "1 sites" in result.output

    def test_info(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1")
        result = app_cli.invoke("site", "info", "demo1")
        assert result.exit_code == 0
        assert "os user: site_demo1" in result.output

    def test_missing_site(self, app_cli: CliHarness) -> None:
        result = app_cli.invoke("site", "info", "ghost")
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_path_traversal_rejected(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1")
        ok = app_cli.json("site", "path", "demo1", "services/api")
        assert ok["data"]["path"].endswith("demo1/services/api")
        result = app_cli.invoke("site", "path", "demo1", "../../etc")
        assert result.exit_code == 1
        assert "escapes site root" in result.output


class TestLifecycle:
    def test_start_and_stop(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1")
        app_cli.invoke("service", "create", "demo1", "api", "--start", "npm start")
        started = app_cli.json("site", "start", "demo1")
        assert started["data"]["succeeded"] == [{"name": "api", "changed": True}]
        stopped = app_cli.json("site", "stop", "demo1")
        assert stopped["data"]["failed"] == []

    def test_partial_failure_is_still_exit_0(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1")
        app_cli.invoke("service", "create", "demo1", "api", "--start", "npm start")
        app_cli.fake.fail("systemctl", "start")
        result = app_cli.invoke("site", "start", "demo1")
        assert result.exit_code == 0
        assert "partial failure" in result.output
        assert "WARNING:" in result.output

    def test_env_update(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1", "--env", "A=1", "--env", "B=2")
        data = app_cli.json("site", "env", "demo1", "--set", "C=3", "--unset", "A")
        assert data["data"]["environment"] == {"B": "2", "C": "3"}

    def test_delete(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1")
        data = app_cli.json("site", "delete", "demo1", "--databases", "keep")
        assert data["ok"] is True
        assert data["data"]["site"] == "demo1"
        assert app_cli.json("site", "list")["data"]["count"] == 0


class TestSftp:
    def test_reset_password(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1")
        result = app_cli.invoke("site", "sftp", "reset-password", "demo1")
        assert result.exit_code == 0
        assert "password" in result.output

    def test_disable(self, app_cli: CliHarness) -> None:
        app_cli.invoke("site", "create", "demo1")
        data = app_cli.json("site", "sftp", "disable", "demo1")
        assert data["data"]["enabled"] is False
