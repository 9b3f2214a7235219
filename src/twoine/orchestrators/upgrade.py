"""UpgradeOrchestrator: state-database migration with Alembic.

Pipeline: BACKUP → MIGRATE → VALIDATE → REPORT
"""

from __future__ import annotations

import logging
import shutil
from typing import Any

from alembic import command
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from alembic.util.exc import CommandError
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from twoine.infrastructure.database.migrations import build_config
from twoine.infrastructure.database.schema import metadata
from twoine.orchestrators.base import BaseOrchestrator
from twoine.orchestrators.result import ServiceError, ServiceResult

logger = logging.getLogger(__name__)

_MIGRATION_ERRORS = (CommandError, SQLAlchemyError, OSError)


class UpgradeOrchestrator(BaseOrchestrator):
    """Reports and applies pending schema revisions."""

    def _db_url(self) -> str:
        return f"sqlite:///{self._settings.db_path}"

    def _tables_exist(self) -> bool:
        """Check if core tables exist (state database created before versioning)."""
        return "sites" in inspect(self._platform.engine).get_table_names()

    def _backup(self) -> str:
        backups = self._settings.paths.state_dir / "backups"
        backups.mkdir(parents=True, exist_ok=True)
        stamp = self._platform.now().strftime("%Y%m%dT%H%M%S")
        target = backups / f"twoine-{stamp}.db"
        shutil.copy2(self._settings.db_path, target)
        return str(target)

    def check_pending(self) -> ServiceResult:
        """List pending migrations without applying."""
        op = "upgrade"

        try:
            cfg = build_config(self._db_url())
            script = ScriptDirectory.from_config(cfg)
            head = script.get_current_head()

            with self._platform.engine.connect() as conn:
                current = MigrationContext.configure(conn).get_current_revision()

            pending: list[dict[str, Any]] = []
            if current != head and head is not None:
                rev_obj = script.get_revision(head)
                while rev_obj is not None and rev_obj.revision != current:
                    pending.append({"revision": rev_obj.revision, "description": rev_obj.doc or ""})
                    down = rev_obj.down_revision
                    if down is None:
                        break
                    rev_obj = script.get_revision(str(down))
        except _MIGRATION_ERRORS as exc:
            return ServiceResult(
                ok=False,
                op=op,
                error=ServiceError(
                    code="CHECK_FAILED", message=f"Failed to check migrations: {exc}"
                ),
            )

        return ServiceResult(
            ok=True,
            op=op,
            data={
                "pending_count": len(pending),
                "pending": pending,
                "current": current,
                "head": head,
            },
        )

    def apply(self) -> ServiceResult:
        """BACKUP → MIGRATE → VALIDATE → REPORT pipeline."""
        op = "upgrade"
        warnings: list[str] = []

        check_result = self.check_pending()
        if not check_result.ok:
            return check_result

        pending_count = check_result.data["pending_count"]
        if pending_count == 0:
            return ServiceResult(
                ok=True,
                op=op,
                data={
                    "applied_count": 0,
                    "current": check_result.data["head"],
                    "message": "State database is already up to date",
                },
            )

        try:
            backup_path = self._backup()
        except OSError as exc:
            return ServiceResult(
                ok=False,
                op=op,
                error=ServiceError(code="BACKUP_FAILED", message=f"Backup failed: {exc}"),
            )

        try:
            cfg = build_config(self._db_url())
            if check_result.data.get("current") is None and self._tables_exist():
                # Tables were created by create_all without version tracking.
                command.stamp(cfg, "head")
            else:
                command.upgrade(cfg, "head")
        except _MIGRATION_ERRORS as exc:
            return ServiceResult(
                ok=False,
                op=op,
                error=ServiceError(
                    code="MIGRATION_FAILED",
                    message=f"Migration failed: {exc}. Backup at: {backup_path}",
                    detail={"backup_path": backup_path},
                ),
            )

        missing = sorted(
            set(metadata.tables) - set(inspect(self._platform.engine).get_table_names())
        )
        if missing:
            warnings.append(f"Post-migration check: missing tables {', '.join(missing)}")

        return ServiceResult(
            ok=True,
            op=op,
            data={
                "applied_count": pending_count,
                "current": check_result.data["head"],
                "backup_path": backup_path,
            },
            warnings=warnings,
        )

    def stamp_current(self) -> ServiceResult:
        """Stamp the state database as at current head (fresh installs)."""
        op = "upgrade"

        try:
            cfg = build_config(self._db_url())
            command.stamp(cfg, "head")
            head = ScriptDirectory.from_config(cfg).get_current_head()
        except _MIGRATION_ERRORS as exc:
            return ServiceResult(
                ok=False,
                op=op,
                error=ServiceError(
                    code="STAMP_FAILED", message=f"Failed to stamp database: {exc}"
                ),
            )
        return ServiceResult(ok=True, op=op, data={"stamped": True, "current": head})
