"""SQLite state database, schema, and migrations via SQLAlchemy Core."""

from twoine.infrastructure.database.engine import create_db_engine, init_database
from twoine.infrastructure.database.schema import (
    databases,
    domains,
    event_wal,
    metadata,
    services,
    sites,
)

__all__ = [
    "create_db_engine",
    "databases",
    "domains",
    "event_wal",
    "init_database",
    "metadata",
    "services",
    "sites",
]
