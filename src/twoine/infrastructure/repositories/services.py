"""Service persistence.

Services are hard-deleted: a removed service frees its port and unit
name immediately, so there is no soft-delete filter on this table.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from twoine.domain.entities import Service
from twoine.infrastructure.database.schema import services
from twoine.infrastructure.repositories.base import EntityRepository


class ServiceRepository(EntityRepository[Service]):
    table = services
    model = Service
    kind = "service"
    soft_delete = False
    json_columns = frozenset(
        {
            "runtime",
            "commands",
            "custom_commands",
            "environment",
            "depends_on",
            "resources",
            "health_check",
            "status",
            "process_info",
            "unit",
        }
    )

    def _to_row(self, entity: Service) -> dict[str, Any]:
        row = super()._to_row(entity)
        row["unit_name"] = entity.unit.name
        return row

    def _from_row(self, row: Any) -> Service:
        data = dict(row)
        data.pop("unit_name", None)
        return super()._from_row(data)  # type: ignore[arg-type]

    def get_by_name(self, site_id: str, name: str) -> Service | None:
        stmt = self._select().where(services.c.site_id == site_id, services.c.name == name)
        return self._fetch_one(stmt)

    def get_by_port(self, port: int) -> Service | None:
        return self._fetch_one(self._select().where(services.c.port == port))

    def get_by_unit(self, unit_name: str) -> Service | None:
        return self._fetch_one(self._select().where(services.c.unit_name == unit_name))

    def list_for_site(self, site_id: str, *, descending: bool = False) -> list[Service]:
        """Services of *site_id* ordered by start priority, then name."""
        priority = services.c.start_priority.desc() if descending else services.c.start_priority
        stmt = (
            self._select()
            .where(services.c.site_id == site_id)
            .order_by(priority, services.c.name)
        )
        return self._fetch_all(stmt)

    def list_all(self) -> list[Service]:
        return self._fetch_all(self._select().order_by(services.c.site_id, services.c.name))

    def used_ports(self, site_id: str) -> set[int]:
        with self._engine.connect() as conn:
            rows = conn.execute(select(services.c.port).where(services.c.site_id == site_id))
            return {int(r.port) for r in rows}
