"""Site persistence."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.engine import RowMapping

from twoine.domain.entities import Site
from twoine.infrastructure.database.schema import sites
from twoine.infrastructure.repositories.base import EntityRepository


class SiteRepository(EntityRepository[Site]):
    """Sites are soft-deleted; a deleted site keeps its port range reserved."""

    table = sites
    model = Site
    kind = "site"
    json_columns = frozenset({"os_user", "paths", "limits", "environment"})

    def _to_row(self, entity: Site) -> dict[str, Any]:
        row = super()._to_row(entity)
        row["port_start"] = entity.port_range.start
        row["port_end"] = entity.port_range.end
        return row

    def _from_row(self, row: RowMapping) -> Site:
        data = dict(row)
        data["port_range"] = {"start": data.pop("port_start"), "end": data.pop("port_end")}
        return super()._from_row(data)  # type: ignore[arg-type]

    def get_by_name(self, name: str) -> Site | None:
        return self._fetch_one(self._select().where(sites.c.name == name))

    def _get_by_ref(self, ref: str) -> Site | None:
        return self.get_by_name(ref)

    def list_sites(self, *, status: str | None = None, include_deleted: bool = False) -> list[Site]:
        stmt = self._select(include_deleted=include_deleted)
        if status is not None:
            stmt = stmt.where(sites.c.status == status)
        return self._fetch_all(stmt.order_by(sites.c.name))

    def max_port_end(self) -> int | None:
        """Highest reserved port over every site ever created, deleted ones included."""
        with self._engine.connect() as conn:
            value = conn.execute(select(func.max(sites.c.port_end))).scalar()
        return int(value) if value is not None else None
