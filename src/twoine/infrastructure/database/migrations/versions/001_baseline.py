"""Baseline schema: sites, services, domains, databases, event WAL.

Revision ID: 001_baseline
Revises: None
Create Date: 2026-10-01

Fresh state databases are created from ``schema.py`` and stamped at
head by ``twoine init``; this revision builds the same tables for an
empty database during ``twoine upgrade``.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "001_baseline"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None


def upgrade() -> None:
    # sites
    op.create_table(
        "sites",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("display_name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("owner", sa.Text),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("port_start", sa.Integer, nullable=False),
        sa.Column("port_end", sa.Integer, nullable=False),
        sa.Column("os_user", sa.Text, nullable=False),
        sa.Column("paths", sa.Text, nullable=False),
        sa.Column("limits", sa.Text, nullable=False),
        sa.Column("environment", sa.Text, nullable=False),
        sa.Column("sftp_username", sa.Text),
        sa.Column("error_message", sa.Text),
        sa.Column("created_at", sa.Text, nullable=False),
        sa.Column("updated_at", sa.Text, nullable=False),
    )
    op.create_index(
        "uq_sites_name_live",
        "sites",
        ["name"],
        unique=True,
        sqlite_where=sa.text("status != 'deleted'"),
    )
    op.create_index("ix_sites_status", "sites", ["status"])

    # services
    op.create_table(
        "services",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("site_id", sa.Text, sa.ForeignKey("sites.id"), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("display_name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("port", sa.Integer, nullable=False, unique=True),
        sa.Column("unit_name", sa.Text, nullable=False, unique=True),
        sa.Column("working_dir", sa.Text, nullable=False),
        sa.Column("auto_start", sa.Integer, server_default="1"),
        sa.Column("start_priority", sa.Integer, server_default="50"),
        sa.Column("runtime", sa.Text, nullable=False),
        sa.Column("commands", sa.Text, nullable=False),
        sa.Column("custom_commands", sa.Text, nullable=False),
        sa.Column("environment", sa.Text, nullable=False),
        sa.Column("depends_on", sa.Text, nullable=False),
        sa.Column("resources", sa.Text, nullable=False),
        sa.Column("health_check", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("process_info", sa.Text, nullable=False),
        sa.Column("unit", sa.Text, nullable=False),
        sa.Column("last_install_at", sa.Text),
        sa.Column("last_build_at", sa.Text),
        sa.Column("created_at", sa.Text, nullable=False),
        sa.Column("updated_at", sa.Text, nullable=False),
        sa.UniqueConstraint("site_id", "name"),
    )
    op.create_index("ix_services_site", "services", ["site_id"])

    # domains
    op.create_table(
        "domains",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("hostname", sa.Text, nullable=False),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("site_id", sa.Text),
        sa.Column("service_id", sa.Text),
        sa.Column("target_address", sa.Text, nullable=False),
        sa.Column("target_port", sa.Integer),
        sa.Column("path_prefix", sa.Text, server_default="/"),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("ssl", sa.Text, nullable=False),
        sa.Column("proxy", sa.Text, nullable=False),
        sa.Column("dns", sa.Text, nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("metadata", sa.Text, nullable=False),
        sa.Column("created_at", sa.Text, nullable=False),
        sa.Column("updated_at", sa.Text, nullable=False),
    )
    op.create_index(
        "uq_domains_hostname_live",
        "domains",
        ["hostname"],
        unique=True,
        sqlite_where=sa.text("status != 'deleted'"),
    )
    op.create_index(
        "uq_domains_platform_live",
        "domains",
        ["type"],
        unique=True,
        sqlite_where=sa.text("type = 'platform' AND status != 'deleted'"),
    )
    op.create_index("ix_domains_site", "domains", ["site_id"])
    op.create_index("ix_domains_service", "domains", ["service_id"])
    op.create_index("ix_domains_status", "domains", ["status"])

    # databases
    op.create_table(
        "databases",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("site_id", sa.Text),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("display_name", sa.Text, nullable=False),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("is_external", sa.Integer, server_default="0"),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("connection", sa.Text, nullable=False),
        sa.Column("user", sa.Text, nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("metadata", sa.Text, nullable=False),
        sa.Column("created_at", sa.Text, nullable=False),
        sa.Column("updated_at", sa.Text, nullable=False),
    )
    op.create_index(
        "uq_databases_type_name_live",
        "databases",
        ["type", "name"],
        unique=True,
        sqlite_where=sa.text("status != 'deleted'"),
    )
    op.create_index("ix_databases_site", "databases", ["site_id"])

    # event_wal
    op.create_table(
        "event_wal",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("hook_name", sa.Text, nullable=False),
        sa.Column("payload", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("error", sa.Text),
        sa.Column("retries", sa.Integer, server_default="0"),
        sa.Column("created", sa.Text, nullable=False),
        sa.Column("completed", sa.Text),
    )
    op.create_index("ix_event_wal_status", "event_wal", ["status"])


def downgrade() -> None:
    op.drop_table("event_wal")
    op.drop_table("databases")
    op.drop_table("domains")
    op.drop_table("services")
    op.drop_table("sites")
