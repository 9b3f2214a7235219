"""PostgreSQL driver over ``psql``."""

from __future__ import annotations

from collections.abc import Sequence

from twoine.infrastructure.engines.base import (
    ConnectionTarget,
    DatabaseEngine,
    EngineStats,
    sql_literal,
)
from twoine.infrastructure.runner import CommandResult


def _ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class PostgreSQLEngine(DatabaseEngine):
    engine_type = "postgresql"
    url_scheme = "postgresql"

    def _psql(
        self,
        sql: str,
        *,
        database: str | None = None,
        username: str | None = None,
        password: str | None = None,
        host: str | None = None,
        port: int | None = None,
        tuples_only: bool = False,
        check: bool = True,
    ) -> CommandResult:
        argv = [
            "psql",
            "-h",
            host or self.host,
            "-p",
            str(port or self.port),
            "-U",
            username or self._config.admin_user,
            "-d",
            database or self._config.admin_db or "postgres",
            "-v",
            "ON_ERROR_STOP=1",
            "-X",
            "-q",
        ]
        if tuples_only:
            argv += ["-t", "-A", "-F", "|"]
        secret = password if password is not None else self._admin_password()
        return self._exec(argv, sql, env={"PGPASSWORD": secret}, check=check)

    def create(
        self, database_name: str, username: str, password: str, privileges: Sequence[str]
    ) -> None:
        # CREATE DATABASE cannot run inside a transaction block, so each
        # statement is its own implicit transaction.
        self._psql(
            f"CREATE USER {_ident(username)} WITH PASSWORD {sql_literal(password)};\n"
            f"CREATE DATABASE {_ident(database_name)} OWNER {_ident(username)};\n"
        )
        self._psql(
            f"GRANT {', '.join(privileges)} PRIVILEGES ON DATABASE {_ident(database_name)} "
            f"TO {_ident(username)};\n"
            f"GRANT ALL ON SCHEMA public TO {_ident(username)};\n",
            database=database_name,
        )

    def drop(self, database_name: str, username: str) -> None:
        self._psql(
            "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
            f"WHERE datname = {sql_literal(database_name)};\n"
            f"DROP DATABASE IF EXISTS {_ident(database_name)};\n"
            f"DROP USER IF EXISTS {_ident(username)};\n"
        )

    def reset_password(self, database_name: str, username: str, password: str) -> None:
        self._psql(f"ALTER USER {_ident(username)} WITH PASSWORD {sql_literal(password)};\n")

    def _stats(self, database_name: str) -> EngineStats:
        out = self._psql(
            f"SELECT pg_database_size({sql_literal(database_name)}), "
            "(SELECT count(*) FROM information_schema.tables WHERE table_schema = 'public');\n",
            database=database_name,
            tuples_only=True,
        ).stdout
        size, _, count = out.strip().partition("|")
        return EngineStats(size_bytes=int(size.strip() or 0), tables=int(count.strip() or 0))

    def _ping(self, target: ConnectionTarget) -> bool:
        result = self._psql(
            "SELECT 1;\n",
            database=target.database_name,
            username=target.username,
            password=target.password or "",
            host=target.host,
            port=target.port,
            check=False,
        )
        return result.ok

    def _engine_env(self, target: ConnectionTarget, url: str) -> dict[str, str]:
        return {
            "PGHOST": target.host,
            "PGPORT": str(target.port),
            "PGDATABASE": target.database_name,
            "PGUSER": target.username,
            "PGPASSWORD": target.password or "",
            "DATABASE_URL": url,
        }
