"""Domain persistence."""

from __future__ import annotations

from twoine.domain.entities import Domain
from twoine.domain.lifecycle import DomainType
from twoine.infrastructure.database.schema import domains
from twoine.infrastructure.repositories.base import EntityRepository


class DomainRepository(EntityRepository[Domain]):
    table = domains
    model = Domain
    kind = "domain"
    json_columns = frozenset({"ssl", "proxy", "dns", "metadata"})

    def get_by_hostname(self, hostname: str) -> Domain | None:
        return self._fetch_one(self._select().where(domains.c.hostname == hostname))

    def _get_by_ref(self, ref: str) -> Domain | None:
        return self.get_by_hostname(ref.lower())

    def get_platform(self) -> Domain | None:
        return self._fetch_one(self._select().where(domains.c.type == DomainType.PLATFORM))

    def list_domains(
        self,
        *,
        site_id: str | None = None,
        service_id: str | None = None,
        domain_type: str | None = None,
        status: str | None = None,
    ) -> list[Domain]:
        stmt = self._select()
        if site_id is not None:
            stmt = stmt.where(domains.c.site_id == site_id)
        if service_id is not None:
            stmt = stmt.where(domains.c.service_id == service_id)
        if domain_type is not None:
            stmt = stmt.where(domains.c.type == domain_type)
        if status is not None:
            stmt = stmt.where(domains.c.status == status)
        return self._fetch_all(stmt.order_by(domains.c.hostname))

    def list_with_service(self) -> list[Domain]:
        """Live domains that reference any service."""
        stmt = self._select().where(domains.c.service_id.is_not(None))
        return self._fetch_all(stmt.order_by(domains.c.hostname))
