"""MySQL / MariaDB driver over the ``mysql`` client."""

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
    return "`" + name.replace("`", "``") + "`"


class MySQLEngine(DatabaseEngine):
    engine_type = "mysql"
    url_scheme = "mysql"

    def _admin(self, sql: str, *, skip_column_names: bool = False) -> CommandResult:
        argv = [
            "mysql",
            "-h",
            self.host,
            "-P",
            str(self.port),
            "-u",
            self._config.admin_user,
            "--batch",
        ]
        if skip_column_names:
            argv.append("-N")
        return self._exec(argv, sql, env={"MYSQL_PWD": self._admin_password()})

    def create(
        self, database_name: str, username: str, password: str, privileges: Sequence[str]
    ) -> None:
        user = f"{sql_literal(username)}@'localhost'"
        self._admin(
            f"CREATE DATABASE IF NOT EXISTS {_ident(database_name)} "
            "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci;\n"
            f"CREATE USER IF NOT EXISTS {user} IDENTIFIED BY {sql_literal(password)};\n"
            f"GRANT {', '.join(privileges)} ON {_ident(database_name)}.* TO {user};\n"
            "FLUSH PRIVILEGES;\n"
        )

    def drop(self, database_name: str, username: str) -> None:
        self._admin(
            f"DROP DATABASE IF EXISTS {_ident(database_name)};\n"
            f"DROP USER IF EXISTS {sql_literal(username)}@'localhost';\n"
            "FLUSH PRIVILEGES;\n"
        )

    def reset_password(self, database_name: str, username: str, password: str) -> None:
        self._admin(
            f"ALTER USER {sql_literal(username)}@'localhost' "
            f"IDENTIFIED BY {sql_literal(password)};\nFLUSH PRIVILEGES;\n"
        )

    def _stats(self, database_name: str) -> EngineStats:
        out = self._admin(
            "SELECT COALESCE(SUM(data_length + index_length), 0), COUNT(*) "
            "FROM information_schema.TABLES "
            f"WHERE table_schema = {sql_literal(database_name)};\n",
            skip_column_names=True,
        ).stdout
        size, _, count = out.strip().partition("\t")
        return EngineStats(size_bytes=int(size or 0), tables=int(count or 0))

    def _ping(self, target: ConnectionTarget) -> bool:
        argv = [
            "mysql",
            "-h",
            target.host,
            "-P",
            str(target.port),
            "-u",
            target.username,
            "--batch",
            target.database_name,
        ]
        result = self._exec(
            argv, "SELECT 1;\n", env={"MYSQL_PWD": target.password or ""}, check=False
        )
        return result.ok

    def _engine_env(self, target: ConnectionTarget, url: str) -> dict[str, str]:
        return {
            "MYSQL_HOST": target.host,
            "MYSQL_PORT": str(target.port),
            "MYSQL_DATABASE": target.database_name,
            "MYSQL_USER": target.username,
            "MYSQL_PASSWORD": target.password or "",
        }


class MariaDBEngine(MySQLEngine):
    """MariaDB shares the MySQL client and SQL dialect."""

    engine_type = "mariadb"
