"""DatabaseOrchestrator: per-site databases on MongoDB, MySQL/MariaDB and PostgreSQL.

Create pipeline: VALIDATE → UNIQUE (type, name) and user → PERSIST → ENGINE CREATE → ACTIVE

The generated password is encrypted before the record is first written
and returned to the caller exactly once. Engine drops are best-effort:
a failed drop is a warning, never a reason to keep a deleted record.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from twoine.domain.entities import Database, new_database, new_external_database
from twoine.domain.errors import ConflictError, TwoineError, ValidationError
from twoine.domain.lifecycle import (
    DATABASE_TRANSITIONS,
    CascadeAction,
    DatabaseEngineType,
    DatabaseStatus,
    is_valid_transition,
)
from twoine.domain.naming import generate_database_password
from twoine.domain.validation import validate_database_name
from twoine.infrastructure.crypto import SecretBox
from twoine.infrastructure.engines import ConnectionTarget, DatabaseEngine
from twoine.infrastructure.filesystem import best_effort
from twoine.orchestrators.base import BaseOrchestrator
from twoine.orchestrators.result import ServiceResult
from twoine.orchestrators.telemetry import trace_span, traced

if TYPE_CHECKING:
    from twoine.infrastructure.platform import Platform

logger = logging.getLogger(__name__)


def parse_engine_type(value: str) -> DatabaseEngineType:
    try:
        return DatabaseEngineType(value.lower())
    except ValueError:
        msg = f"Invalid database type: {value}"
        raise ValidationError(
            msg,
            detail={
                "field": "type",
                "value": value,
                "allowed": [t.value for t in DatabaseEngineType],
            },
        ) from None


class DatabaseOrchestrator(BaseOrchestrator):
    """Provisions, links, rotates and drops site databases.

    Constructing the orchestrator requires ``databases.encryption_key``;
    without it a :class:`ConfigurationError` is raised immediately.
    """

    def __init__(self, platform: Platform) -> None:
        super().__init__(platform)
        self._box = SecretBox.from_hex(self._settings.databases.encryption_key)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _driver(self, database: Database) -> DatabaseEngine:
        return self._platform.db_engines[database.type]

    def _password(self, database: Database) -> str | None:
        if database.user.password is None:
            return None
        return self._box.decrypt(database.user.password)

    def _target(self, database: Database, password: str | None) -> ConnectionTarget:
        return ConnectionTarget(
            host=database.connection.host,
            port=database.connection.port,
            database_name=database.connection.database_name,
            username=database.user.username,
            password=password,
        )

    def _site_name(self, database: Database) -> str | None:
        if database.site_id is None:
            return None
        site = self._platform.sites.get(database.site_id, include_deleted=True)
        return site.name if site is not None else None

    def _set_status(
        self,
        database: Database,
        status: DatabaseStatus,
        warnings: list[str],
        *,
        error: str | None = None,
        **changes: Any,
    ) -> Database:
        previous = database.status
        if status != previous and not is_valid_transition(previous, status, DATABASE_TRANSITIONS):
            msg = f"Database {database.name} cannot go from {previous} to {status}"
            raise ConflictError(msg, detail={"from": str(previous), "to": str(status)})
        updated = database.model_copy(
            update={
                **changes,
                "status": status,
                "error_message": error,
                "updated_at": self._platform.now_iso(),
            }
        )
        self._platform.databases.save(updated)
        if status != previous:
            self._dispatch_event(
                "database_status_changed",
                {
                    "database": database.name,
                    "site": self._site_name(database),
                    "status": str(status),
                },
                warnings,
            )
        return updated

    def _public(self, database: Database) -> dict[str, Any]:
        """Record without ciphertext, plus the masked connection URL."""
        data = database.model_dump(mode="json", exclude={"user": {"password"}})
        data["connection_url"] = self._driver(database).connection_url(
            self._target(database, None)
        )
        return data

    def _credentials(self, database: Database, password: str) -> dict[str, str]:
        return {
            "username": database.user.username,
            "password": password,
            "connection_string": self._driver(database).connection_url(
                self._target(database, password), include_password=True
            ),
        }

    # ------------------------------------------------------------------
    # Create / link
    # ------------------------------------------------------------------

    @traced
    def create_database(
        self,
        site_id: str,
        name: str,
        engine_type: str,
        *,
        display_name: str | None = None,
    ) -> ServiceResult:
        """Create the database and its user; the plaintext password is returned once."""
        op = "create_database"
        warnings: list[str] = []
        platform = self._platform

        try:
            kind = parse_engine_type(engine_type)
            validate_database_name(name)
            site = platform.sites.require(site_id)
            if platform.databases.get_by_type_name(kind, name) is not None:
                msg = f"Database name '{name}' already exists for type {kind}"
                raise ConflictError(msg, detail={"type": str(kind), "name": name})
            driver = platform.db_engines[kind]
            password = generate_database_password()
            database = new_database(
                site,
                name,
                engine=kind,
                host=driver.host,
                port=driver.port,
                now=platform.now_iso(),
                display_name=display_name,
            )
            owner = platform.databases.find_managed_user(kind, database.user.username)
            if owner is not None:
                msg = (
                    f"Database user '{database.user.username}' is already used by "
                    f"database '{owner.name}'"
                )
                raise ConflictError(
                    msg, detail={"username": database.user.username, "database": owner.id}
                )
            secret = self._box.encrypt(password)
            database = database.model_copy(
                update={"user": database.user.model_copy(update={"password": secret})}
            )
            platform.databases.add(database)
        except TwoineError as exc:
            return self._failure(op, exc)

        try:
            with trace_span(f"engine_create:{kind}"):
                driver.create(
                    database.connection.database_name,
                    database.user.username,
                    password,
                    database.user.privileges,
                )
            database = self._set_status(
                database,
                DatabaseStatus.ACTIVE,
                warnings,
                user=database.user.model_copy(update={"created": True}),
            )
        except TwoineError as exc:
            best_effort(
                "database error status",
                self._set_status,
                database,
                DatabaseStatus.ERROR,
                warnings,
                error=exc.message,
            )
            self._alert(
                "database",
                f"Failed to create database {name}: {exc.message}",
                warnings,
                detail={"site": site.name, "type": str(kind)},
            )
            return self._failure(op, exc, warnings=warnings)

        logger.info("Created %s database %s for site %s", kind, name, site.name)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "database": self._public(database),
                "site": site.name,
                "credentials": self._credentials(database, password),
            },
            warnings=warnings,
        )

    @traced
    def link_external_database(
        self,
        site_id: str,
        name: str,
        engine_type: str,
        *,
        username: str,
        password: str,
        host: str = "localhost",
        port: int | None = None,
        database_name: str | None = None,
        display_name: str | None = None,
    ) -> ServiceResult:
        """Record an existing database. Nothing is created on the engine."""
        op = "link_external_database"
        warnings: list[str] = []
        platform = self._platform

        try:
            kind = parse_engine_type(engine_type)
            validate_database_name(name)
            if not username:
                raise ValidationError("Username is required", detail={"field": "username"})
            site = platform.sites.require(site_id)
            if platform.databases.get_by_type_name(kind, name) is not None:
                msg = f"Database name '{name}' already exists for type {kind}"
                raise ConflictError(msg, detail={"type": str(kind), "name": name})
            database = new_external_database(
                site,
                name,
                engine=kind,
                host=host,
                port=port or platform.db_engines[kind].port,
                database_name=database_name or name,
                username=username,
                password=self._box.encrypt(password),
                now=platform.now_iso(),
                display_name=display_name,
            )
            platform.databases.add(database)
        except TwoineError as exc:
            return self._failure(op, exc)

        self._dispatch_event(
            "database_status_changed",
            {"database": database.name, "site": site.name, "status": str(database.status)},
            warnings,
        )
        logger.info("Linked external %s database %s to site %s", kind, name, site.name)
        return ServiceResult(
            ok=True,
            op=op,
            data={"database": self._public(database), "site": site.name},
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def _delete(self, database: Database, *, drop: bool, warnings: list[str]) -> Database:
        """Mark deleting, optionally drop on the engine (best-effort), mark deleted."""
        database = self._set_status(database, DatabaseStatus.DELETING, warnings)
        if drop and not database.is_external:
            driver = self._driver(database)
            with trace_span(f"engine_drop:{database.type}"):
                error = best_effort(
                    f"drop {database.type} database {database.name}",
                    driver.drop,
                    database.connection.database_name,
                    database.user.username,
                )
            if error:
                warnings.append(f"{database.name}: engine drop failed: {error}")
        return self._set_status(database, DatabaseStatus.DELETED, warnings)

    @traced
    def delete_database(self, database_id: str, *, keep_data: bool = False) -> ServiceResult:
        """Soft-delete the record; drop the engine-side database unless *keep_data*."""
        op = "delete_database"
        warnings: list[str] = []
        try:
            database = self._platform.databases.require(database_id)
            database = self._delete(database, drop=not keep_data, warnings=warnings)
        except TwoineError as exc:
            return self._failure(op, exc, warnings=warnings)

        logger.info("Deleted database %s", database.name)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "database": database.name,
                "id": database.id,
                "dropped": not keep_data and not database.is_external,
            },
            warnings=warnings,
        )

    @traced
    def handle_site_deletion(
        self, site_id: str, action: CascadeAction = CascadeAction.UNLINK
    ) -> ServiceResult:
        """Apply *action* to every database of a site being deleted.

        ``delete`` drops the engine-side database, ``keep`` detaches the
        record and marks it orphaned, ``unlink`` removes the record only.
        Each database is handled independently; failures land in ``errors``.
        """
        op = "handle_site_deletion"
        warnings: list[str] = []
        processed: list[dict[str, str]] = []
        errors: list[dict[str, str]] = []

        for database in self._platform.databases.list_databases(site_id=site_id):
            try:
                if action == CascadeAction.DELETE:
                    self._delete(database, drop=True, warnings=warnings)
                    outcome = "deleted"
                elif action == CascadeAction.KEEP:
                    metadata = {
                        **database.metadata,
                        "orphaned_from": site_id,
                        "orphaned_at": self._platform.now_iso(),
                    }
                    self._platform.databases.save(
                        database.model_copy(
                            update={
                                "site_id": None,
                                "metadata": metadata,
                                "updated_at": self._platform.now_iso(),
                            }
                        )
                    )
                    outcome = "orphaned"
                else:
                    self._delete(database, drop=False, warnings=warnings)
                    outcome = "unlinked"
            except TwoineError as exc:
                errors.append({"id": database.id, "name": database.name, "error": exc.message})
                warnings.append(f"{database.name}: {exc.message}")
                continue
            processed.append({"id": database.id, "name": database.name, "action": outcome})

        return ServiceResult(
            ok=True,
            op=op,
            data={"action": str(action), "processed": processed, "errors": errors},
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    @traced
    def reset_password(self, database_id: str) -> ServiceResult:
        """Rotate the user's password on the engine, then re-encrypt it."""
        op = "reset_password"
        platform = self._platform
        try:
            database = platform.databases.require(database_id)
            if database.is_external:
                msg = "Cannot reset password for external database"
                raise ValidationError(msg, detail={"database": database.name})
            password = generate_database_password()
            with trace_span(f"engine_reset_password:{database.type}"):
                self._driver(database).reset_password(
                    database.connection.database_name, database.user.username, password
                )
            database = platform.databases.save(
                database.model_copy(
                    update={
                        "user": database.user.model_copy(
                            update={"password": self._box.encrypt(password)}
                        ),
                        "updated_at": platform.now_iso(),
                    }
                )
            )
        except TwoineError as exc:
            return self._failure(op, exc)

        logger.info("Reset password for database %s", database.name)
        return ServiceResult(
            ok=True,
            op=op,
            data={"database": database.name, "credentials": self._credentials(database, password)},
        )

    @traced
    def env_variables(self, database_id: str) -> ServiceResult:
        """``DB_<NAME>_*`` variables plus the engine's conventional ones."""
        op = "env_variables"
        try:
            database = self._platform.databases.require(database_id)
            target = self._target(database, self._password(database))
            variables = self._driver(database).env_variables(database.name, target)
        except TwoineError as exc:
            return self._failure(op, exc)
        return ServiceResult(
            ok=True, op=op, data={"database": database.name, "variables": variables}
        )

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @traced
    def get_stats(self, database_id: str) -> ServiceResult:
        """Engine-reported size and object counts; ``stats`` is None when unavailable."""
        op = "get_stats"
        warnings: list[str] = []
        try:
            database = self._platform.databases.require(database_id)
        except TwoineError as exc:
            return self._failure(op, exc)

        stats = None
        if database.is_external:
            warnings.append("Statistics are not collected for external databases")
        else:
            with trace_span(f"engine_stats:{database.type}"):
                stats = self._driver(database).stats(database.connection.database_name)
            if stats is None:
                warnings.append("Statistics unavailable")
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "database": database.name,
                "stats": stats.model_dump() if stats is not None else None,
            },
            warnings=warnings,
        )

    @traced
    def test_connection(self, database_id: str) -> ServiceResult:
        """Connect as the database's own user and run a trivial query."""
        op = "test_connection"
        try:
            database = self._platform.databases.require(database_id)
            target = self._target(database, self._password(database))
        except TwoineError as exc:
            return self._failure(op, exc)
        with trace_span(f"engine_ping:{database.type}"):
            connected = self._driver(database).test_connection(target)
        return ServiceResult(
            ok=True, op=op, data={"database": database.name, "connected": connected}
        )

    @traced
    def get_database(self, database_id: str) -> ServiceResult:
        op = "get_database"
        try:
            database = self._platform.databases.require(database_id)
        except TwoineError as exc:
            return self._failure(op, exc)
        stats = None
        if not database.is_external and database.status == DatabaseStatus.ACTIVE:
            stats = self._driver(database).stats(database.connection.database_name)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "database": self._public(database),
                "site": self._site_name(database),
                "stats": stats.model_dump() if stats is not None else None,
            },
        )

    @traced
    def list_databases(
        self, site_id: str | None = None, *, engine_type: str | None = None
    ) -> ServiceResult:
        op = "list_databases"
        try:
            site = self._platform.sites.require(site_id) if site_id else None
            kind = parse_engine_type(engine_type) if engine_type else None
        except TwoineError as exc:
            return self._failure(op, exc)
        items = [
            {
                "id": db.id,
                "name": db.name,
                "type": str(db.type),
                "status": str(db.status),
                "host": db.connection.host,
                "port": db.connection.port,
                "username": db.user.username,
                "external": db.is_external,
                "site_id": db.site_id,
            }
            for db in self._platform.databases.list_databases(
                site_id=site.id if site else None, engine_type=kind
            )
        ]
        return ServiceResult(
            ok=True,
            op=op,
            data={"site": site.name if site else None, "count": len(items), "items": items},
        )
