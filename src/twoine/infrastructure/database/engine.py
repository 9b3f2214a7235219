"""Database engine setup for SQLite with WAL mode.

The control plane's own state (sites, services, domains, databases and
the plugin event WAL) lives at ``{state_dir}/twoine.db``.

SQLAlchemy Core (not ORM) is used because twoine is a short-lived CLI
process: no benefit from session management or identity maps.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from twoine.infrastructure.database.schema import metadata

DB_FILENAME = "twoine.db"


def create_db_engine(db_path: Path) -> Engine:
    """Create a SQLite engine with WAL mode and foreign keys enabled."""
    engine = create_engine(f"sqlite:///{db_path}", echo=False)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def init_database(state_dir: Path) -> Engine:
    """Initialize the state database at ``{state_dir}/twoine.db``.

    Creates ``state_dir`` plus its ``staging/`` directory (private scratch
    space for files later moved into place with privileged ``mv``) and
    all tables from :data:`schema.metadata`.

    Idempotent: safe to call on an existing state directory.
    """
    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / "staging").mkdir(mode=0o700, exist_ok=True)

    engine = create_db_engine(state_dir / DB_FILENAME)
    metadata.create_all(engine)
    return engine
