"""Entity repositories over the SQLite state database.

Each repository opens its own connection per call. Reads exclude
soft-deleted rows unless ``include_deleted=True`` is passed (see
:mod:`twoine.infrastructure.repositories.base`).
"""

from twoine.infrastructure.repositories.base import EntityRepository
from twoine.infrastructure.repositories.databases import DatabaseRepository
from twoine.infrastructure.repositories.domains import DomainRepository
from twoine.infrastructure.repositories.services import ServiceRepository
from twoine.infrastructure.repositories.sites import SiteRepository

__all__ = [
    "DatabaseRepository",
    "DomainRepository",
    "EntityRepository",
    "ServiceRepository",
    "SiteRepository",
]
