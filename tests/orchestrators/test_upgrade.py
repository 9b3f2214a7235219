"""Tests for UpgradeOrchestrator: state-database migration with Alembic."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

from sqlalchemy import create_engine

from tests.conftest import FIXED_NOW
from twoine.infrastructure.platform import Platform
from twoine.orchestrators.upgrade import UpgradeOrchestrator

# ---------------------------------------------------------------------------
# check_pending()
# ---------------------------------------------------------------------------


class TestCheckPending:
    def test_fresh_install_has_nothing_pending(self, platform: Platform) -> None:
        """A stamped state database is at head."""
        orch = UpgradeOrchestrator(platform)
        orch.stamp_current()

        result = orch.check_pending()
        assert result.ok
        assert result.data["pending_count"] == 0
        assert result.data["current"] == result.data["head"]

    def test_unstamped_database(self, platform: Platform) -> None:
        """Tables created without version tracking show the baseline as pending."""
        result = UpgradeOrchestrator(platform).check_pending()
        assert result.ok
        assert result.data["current"] is None
        assert result.data["pending_count"] == 1
        assert result.data["pending"][0]["revision"] == "001_baseline"

    def test_reports_head(self, platform: Platform) -> None:
        assert UpgradeOrchestrator(platform).check_pending().data["head"] == "001_baseline"


# ---------------------------------------------------------------------------
# apply()
# ---------------------------------------------------------------------------


class TestApply:
    def test_already_current(self, platform: Platform) -> None:
        orch = UpgradeOrchestrator(platform)
        orch.stamp_current()

        result = orch.apply()
        assert result.ok
        assert result.data["applied_count"] == 0
        assert "already up to date" in result.data["message"].lower()

    def test_stamps_existing_tables(self, platform: Platform) -> None:
        orch = UpgradeOrchestrator(platform)
        result = orch.apply()
        assert result.ok
        assert result.data["applied_count"] == 1
        assert orch.check_pending().data["pending_count"] == 0

    def test_backup_named_by_clock(self, platform: Platform) -> None:
        result = UpgradeOrchestrator(platform).apply()
        backup = Path(result.data["backup_path"])
        assert backup.exists()
        assert backup.name == f"twoine-{FIXED_NOW.strftime('%Y%m%dT%H%M%S')}.db"
        assert backup.parent == platform.settings.paths.state_dir / "backups"


# ---------------------------------------------------------------------------
# stamp_current() / _tables_exist()
# ---------------------------------------------------------------------------


class TestStampCurrent:
    def test_stamp_current(self, platform: Platform) -> None:
        result = UpgradeOrchestrator(platform).stamp_current()
        assert result.ok
        assert result.data == {"stamped": True, "current": "001_baseline"}


class TestTablesExist:
    def test_true_after_init(self, platform: Platform) -> None:
        assert UpgradeOrchestrator(platform)._tables_exist() is True

    def test_false_on_empty_db(self, tmp_path: Path) -> None:
        mock_platform = MagicMock()
        mock_platform.engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        assert UpgradeOrchestrator(mock_platform)._tables_exist() is False
