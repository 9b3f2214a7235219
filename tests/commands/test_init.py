"""Tests for the init and upgrade CLI commands."""

from __future__ import annotations

from pathlib import Path

from tests.conftest import CliHarness


class TestInitCommand:
    def test_creates_stamped_state_database(self, app_cli: CliHarness, tmp_path: Path) -> None:
        data = app_cli.json("init")
        assert data["ok"] is True
        assert data["data"] == {"stamped": True, "current": "001_baseline"}
        assert (tmp_path / "state" / "twoine.db").is_file()

    def test_rich_output(self, app_cli: CliHarness) -> None:
        result = app_cli.invoke("init")
        assert result.exit_code == 0
        assert "upgrade" in result.output
        assert "current: 001_baseline" in result.output


class TestUpgradeCommand:
    def test_check_after_init(self, app_cli: CliHarness) -> None:
        app_cli.invoke("init")
        data = app_cli.json("upgrade", "--check")
        assert data["ok"] is True
        assert data["data"]["pending_count"] == 0

    def test_apply_unstamped_database(self, app_cli: CliHarness, tmp_path: Path) -> None:
        data = app_cli.json("upgrade")
        assert data["ok"] is True
        assert data["data"]["applied_count"] == 1
        assert Path(data["data"]["backup_path"]).parent == tmp_path / "state" / "backups"

    def test_apply_is_idempotent(self, app_cli: CliHarness) -> None:
        app_cli.invoke("upgrade")
        result = app_cli.invoke("upgrade")
        assert result.exit_code == 0
        assert "already up to date" in result.output.lower()
