"""Database engine drivers keyed by engine type."""

from __future__ import annotations

from twoine.config.models import DatabasesConfig
from twoine.domain.lifecycle import DatabaseEngineType
from twoine.infrastructure.engines.base import (
    MASKED_PASSWORD,
    ConnectionTarget,
    DatabaseEngine,
    EngineStats,
)
from twoine.infrastructure.engines.mongodb import MongoDBEngine
from twoine.infrastructure.engines.mysql import MariaDBEngine, MySQLEngine
from twoine.infrastructure.engines.postgresql import PostgreSQLEngine
from twoine.infrastructure.runner import ProcessRunner

__all__ = [
    "MASKED_PASSWORD",
    "ConnectionTarget",
    "DatabaseEngine",
    "EngineStats",
    "build_engines",
]


def build_engines(
    runner: ProcessRunner, config: DatabasesConfig
) -> dict[DatabaseEngineType, DatabaseEngine]:
    """One driver per supported engine type; ``mariadb`` uses the MySQL section."""
    timeout = config.command_timeout
    return {
        DatabaseEngineType.MONGODB: MongoDBEngine(runner, config.mongodb, timeout=timeout),
        DatabaseEngineType.MYSQL: MySQLEngine(runner, config.mysql, timeout=timeout),
        DatabaseEngineType.MARIADB: MariaDBEngine(runner, config.mysql, timeout=timeout),
        DatabaseEngineType.POSTGRESQL: PostgreSQLEngine(runner, config.postgresql, timeout=timeout),
    }
