"""Database record persistence."""

from __future__ import annotations

from twoine.domain.entities import Database
from twoine.infrastructure.database.schema import databases
from twoine.infrastructure.repositories.base import EntityRepository


class DatabaseRepository(EntityRepository[Database]):
    table = databases
    model = Database
    kind = "database"
    json_columns = frozenset({"connection", "user", "metadata"})

    def get_by_type_name(self, engine_type: str, name: str) -> Database | None:
        stmt = self._select().where(databases.c.type == engine_type, databases.c.name == name)
        return self._fetch_one(stmt)

    def find_managed_user(self, engine_type: str, username: str) -> Database | None:
        """The managed *engine_type* database whose engine user is *username*."""
        stmt = self._select().where(databases.c.type == engine_type, databases.c.is_external == 0)
        for database in self._fetch_all(stmt):
            if database.user.username == username:
                return database
        return None

    def list_databases(
        self, *, site_id: str | None = None, engine_type: str | None = None
    ) -> list[Database]:
        stmt = self._select()
        if site_id is not None:
            stmt = stmt.where(databases.c.site_id == site_id)
        if engine_type is not None:
            stmt = stmt.where(databases.c.type == engine_type)
        return self._fetch_all(stmt.order_by(databases.c.name))

    def _get_by_ref(self, ref: str) -> Database | None:
        """A bare name resolves only when exactly one engine uses it."""
        matches = self._fetch_all(self._select().where(databases.c.name == ref))
        return matches[0] if len(matches) == 1 else None
