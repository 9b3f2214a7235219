"""Shared row mapping and soft-delete filtering for entity repositories.

Soft-delete contract: every read issued through :meth:`_select` excludes
rows whose ``status`` is ``deleted``. Callers that genuinely need those
rows (port-range allocation, audit listings) pass ``include_deleted=True``
explicitly. Nothing else in the codebase filters on ``deleted``.
"""

from __future__ import annotations

import json
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import Select, delete, insert, select, update
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.schema import Table

from twoine.domain.errors import ConflictError, NotFoundError

EntityT = TypeVar("EntityT", bound=BaseModel)

DELETED = "deleted"


class EntityRepository(Generic[EntityT]):
    """CRUD over one table whose rows map 1:1 onto a frozen pydantic entity.

    Subclasses set :attr:`table`, :attr:`model`, :attr:`kind` and the
    names of JSON-encoded columns. Columns not present on the model must
    be filled in by overriding :meth:`_to_row` / :meth:`_from_row`.
    """

    table: ClassVar[Table]
    model: ClassVar[type[BaseModel]]
    kind: ClassVar[str]
    json_columns: ClassVar[frozenset[str]] = frozenset()
    soft_delete: ClassVar[bool] = True

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _to_row(self, entity: EntityT) -> dict[str, Any]:
        data = entity.model_dump(mode="json")
        row: dict[str, Any] = {}
        for column in self.table.columns:
            if column.name not in data:
                continue
            value = data[column.name]
            row[column.name] = json.dumps(value) if column.name in self.json_columns else value
        return row

    def _from_row(self, row: RowMapping) -> EntityT:
        data = dict(row)
        for name in self.json_columns:
            raw = data.get(name)
            data[name] = json.loads(raw) if raw else None
        return self.model.model_validate(data)  # type: ignore[return-value]

    def _select(self, *, include_deleted: bool = False) -> Select[Any]:
        stmt = select(self.table)
        if self.soft_delete and not include_deleted:
            stmt = stmt.where(self.table.c.status != DELETED)
        return stmt

    def _fetch_one(self, stmt: Select[Any]) -> EntityT | None:
        with self._engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        return self._from_row(row) if row is not None else None

    def _fetch_all(self, stmt: Select[Any]) -> list[EntityT]:
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [self._from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, entity_id: str, *, include_deleted: bool = False) -> EntityT | None:
        """Fetch one entity by id, or None."""
        stmt = self._select(include_deleted=include_deleted).where(self.table.c.id == entity_id)
        return self._fetch_one(stmt)

    def _get_by_ref(self, ref: str) -> EntityT | None:
        """Alternate lookup for human references (names, hostnames)."""
        return None

    def require(self, entity_id: str) -> EntityT:
        """Fetch one live entity by id (or human reference) or raise :class:`NotFoundError`."""
        entity = self.get(entity_id) or self._get_by_ref(entity_id)
        if entity is None:
            msg = f"{self.kind.capitalize()} not found: {entity_id}"
            raise NotFoundError(msg, detail={"id": entity_id, "kind": self.kind})
        return entity

    def add(self, entity: EntityT) -> EntityT:
        """Insert a new row. A uniqueness violation becomes :class:`ConflictError`."""
        try:
            with self._engine.begin() as conn:
                conn.execute(insert(self.table).values(**self._to_row(entity)))
        except IntegrityError as exc:
            msg = f"{self.kind.capitalize()} conflicts with an existing record"
            raise ConflictError(msg, detail={"kind": self.kind, "reason": str(exc.orig)}) from exc
        return entity

    def save(self, entity: EntityT) -> EntityT:
        """Overwrite the row with the same id."""
        row = self._to_row(entity)
        entity_id = row.pop("id")
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    update(self.table).where(self.table.c.id == entity_id).values(**row)
                )
        except IntegrityError as exc:
            msg = f"{self.kind.capitalize()} conflicts with an existing record"
            raise ConflictError(msg, detail={"kind": self.kind, "reason": str(exc.orig)}) from exc
        if result.rowcount == 0:
            msg = f"{self.kind.capitalize()} not found: {entity_id}"
            raise NotFoundError(msg, detail={"id": entity_id, "kind": self.kind})
        return entity

    def remove(self, entity_id: str) -> None:
        """Hard-delete the row. Only used where permanent deletion applies."""
        with self._engine.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.id == entity_id))
