"""Tests for the state database schema."""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine, insert, inspect, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from twoine.infrastructure.database.schema import domains, metadata, sites


def _in_memory_engine() -> Engine:
    engine = create_engine("sqlite:///:memory:")
    metadata.create_all(engine)
    return engine


def _site_row(site_id: str, name: str, status: str = "active") -> dict[str, object]:
    return {
        "id": site_id,
        "name": name,
        "display_name": name,
        "status": status,
        "port_start": 10000,
        "port_end": 10009,
        "os_user": "{}",
        "paths": "{}",
        "limits": "{}",
        "environment": "{}",
        "created_at": "2026-03-02T09:30:00+00:00",
        "updated_at": "2026-03-02T09:30:00+00:00",
    }


def _domain_row(domain_id: str, hostname: str, domain_type: str = "site") -> dict[str, object]:
    return {
        "id": domain_id,
        "hostname": hostname,
        "type": domain_type,
        "target_address": "127.0.0.1",
        "status": "active",
        "ssl": "{}",
        "proxy": "{}",
        "dns": "{}",
        "metadata": "{}",
        "created_at": "2026-03-02T09:30:00+00:00",
        "updated_at": "2026-03-02T09:30:00+00:00",
    }


class TestSchemaCreation:
    def test_all_tables_created(self) -> None:
        names = set(inspect(_in_memory_engine()).get_table_names())
        assert {"sites", "services", "domains", "databases", "event_wal"} <= names

    def test_create_all_is_idempotent(self) -> None:
        engine = _in_memory_engine()
        metadata.create_all(engine)


class TestLiveUniqueness:
    def test_duplicate_live_site_name_rejected(self) -> None:
        engine = _in_memory_engine()
        with engine.begin() as conn:
            conn.execute(insert(sites).values(**_site_row("sit_1", "demo1")))
        with pytest.raises(IntegrityError), engine.begin() as conn:
            conn.execute(insert(sites).values(**_site_row("sit_2", "demo1")))

    def test_name_reusable_after_soft_delete(self) -> None:
        engine = _in_memory_engine()
        with engine.begin() as conn:
            conn.execute(insert(sites).values(**_site_row("sit_1", "demo1")))
            conn.execute(update(sites).where(sites.c.id == "sit_1").values(status="deleted"))
            conn.execute(insert(sites).values(**_site_row("sit_2", "demo1")))

    def test_single_live_platform_domain(self) -> None:
        engine = _in_memory_engine()
        with engine.begin() as conn:
            conn.execute(insert(domains).values(**_domain_row("dom_1", "a.io", "platform")))
            conn.execute(insert(domains).values(**_domain_row("dom_2", "b.io", "site")))
            conn.execute(insert(domains).values(**_domain_row("dom_3", "c.io", "site")))
        with pytest.raises(IntegrityError), engine.begin() as conn:
            conn.execute(insert(domains).values(**_domain_row("dom_4", "d.io", "platform")))
