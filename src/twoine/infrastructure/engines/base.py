"""Common contract for database engine drivers.

Each driver talks to its engine through the engine's own CLI client.
Statements travel on stdin and passwords through the environment or
stdin, so no secret ever appears in a process argument list.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import ClassVar
from urllib.parse import quote

from pydantic import BaseModel

from twoine.config.models import EngineConfig
from twoine.domain.errors import ConfigurationError, TwoineError
from twoine.infrastructure.runner import CommandResult, ProcessRunner

logger = logging.getLogger(__name__)

MASKED_PASSWORD = "******"


class EngineStats(BaseModel):
    """Size and object counts reported by an engine for one database."""

    model_config = {"frozen": True}

    size_bytes: int = 0
    tables: int | None = None
    collections: int | None = None
    indexes: int | None = None
    storage_size: int | None = None


class ConnectionTarget(BaseModel):
    """Where and as whom to connect; the password is plaintext in memory only."""

    model_config = {"frozen": True}

    host: str
    port: int
    database_name: str
    username: str
    password: str | None = None


class DatabaseEngine(ABC):
    """Provision, drop, rotate, inspect and test databases on one engine."""

    engine_type: ClassVar[str]
    url_scheme: ClassVar[str]

    def __init__(
        self, runner: ProcessRunner, config: EngineConfig, *, timeout: float = 30
    ) -> None:
        self._runner = runner
        self._config = config
        self._timeout = timeout

    @property
    def host(self) -> str:
        return self._config.host

    @property
    def port(self) -> int:
        return self._config.port

    def _admin_password(self) -> str:
        if not self._config.admin_password:
            msg = f"databases.{self.engine_type}.admin_password is not configured"
            raise ConfigurationError(msg, detail={"engine": self.engine_type})
        return self._config.admin_password

    def _exec(
        self,
        argv: Sequence[str],
        script: str,
        *,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        return self._runner.run(argv, input=script, env=env, timeout=self._timeout, check=check)

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    @abstractmethod
    def create(
        self, database_name: str, username: str, password: str, privileges: Sequence[str]
    ) -> None:
        """Create the database and its dedicated user with *privileges*."""

    @abstractmethod
    def drop(self, database_name: str, username: str) -> None:
        """Terminate sessions where supported, drop the database, drop the user."""

    @abstractmethod
    def reset_password(self, database_name: str, username: str, password: str) -> None:
        """Set a new password for *username*."""

    @abstractmethod
    def _stats(self, database_name: str) -> EngineStats:
        """Raw stats query; may raise."""

    @abstractmethod
    def _ping(self, target: ConnectionTarget) -> bool:
        """Connect as the database user and run a trivial query."""

    # ------------------------------------------------------------------
    # Read-only helpers
    # ------------------------------------------------------------------

    def stats(self, database_name: str) -> EngineStats | None:
        """Engine stats, or None when the query fails or cannot be parsed."""
        try:
            return self._stats(database_name)
        except (TwoineError, ValueError) as exc:
            logger.debug("%s stats for %s failed: %s", self.engine_type, database_name, exc)
            return None

    def test_connection(self, target: ConnectionTarget) -> bool:
        try:
            return self._ping(target)
        except TwoineError as exc:
            logger.debug("%s connection test failed: %s", self.engine_type, exc)
            return False

    def connection_url(self, target: ConnectionTarget, *, include_password: bool = False) -> str:
        password = target.password if include_password and target.password else MASKED_PASSWORD
        auth = f"{quote(target.username, safe='')}:{quote(password, safe='*')}"
        return (
            f"{self.url_scheme}://{auth}@{target.host}:{target.port}/{target.database_name}"
            f"{self._url_suffix(target)}"
        )

    def _url_suffix(self, target: ConnectionTarget) -> str:
        return ""

    def env_variables(self, name: str, target: ConnectionTarget) -> dict[str, str]:
        """``DB_<NAME>_*`` variables plus the engine's conventional ones."""
        prefix = f"DB_{name.upper()}"
        url = self.connection_url(target, include_password=True)
        env = {
            f"{prefix}_TYPE": self.engine_type,
            f"{prefix}_HOST": target.host,
            f"{prefix}_PORT": str(target.port),
            f"{prefix}_NAME": target.database_name,
            f"{prefix}_USER": target.username,
            f"{prefix}_PASSWORD": target.password or "",
            f"{prefix}_URL": url,
        }
        env.update(self._engine_env(target, url))
        return env

    def _engine_env(self, target: ConnectionTarget, url: str) -> dict[str, str]:
        return {}


def sql_literal(value: str) -> str:
    """Single-quoted SQL string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"
