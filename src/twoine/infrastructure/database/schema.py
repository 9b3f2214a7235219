"""SQLAlchemy Core table definitions for the twoine state database.

Scalar columns hold what repositories filter or constrain on; nested
sub-records (paths, commands, SSL, credentials, ...) are JSON text.

Sites, domains and databases are soft-deleted (``status='deleted'``), so
their uniqueness rules are partial indexes over live rows only. Service
rows are hard-deleted and carry plain unique constraints.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

sites = Table(
    "sites",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("display_name", Text, nullable=False),
    Column("description", Text, default="", server_default=""),
    Column("owner", Text),
    Column("status", Text, nullable=False),
    Column("port_start", Integer, nullable=False),
    Column("port_end", Integer, nullable=False),
    Column("os_user", Text, nullable=False),  # JSON object
    Column("paths", Text, nullable=False),  # JSON object
    Column("limits", Text, nullable=False),  # JSON object
    Column("environment", Text, nullable=False),  # JSON object
    Column("sftp_username", Text),
    Column("error_message", Text),
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
)

services = Table(
    "services",
    metadata,
    Column("id", Text, primary_key=True),
    Column("site_id", Text, ForeignKey("sites.id"), nullable=False),
    Column("name", Text, nullable=False),
    Column("display_name", Text, nullable=False),
    Column("description", Text, default="", server_default=""),
    Column("port", Integer, nullable=False, unique=True),
    Column("unit_name", Text, nullable=False, unique=True),
    Column("working_dir", Text, nullable=False),
    Column("auto_start", Integer, default=1, server_default="1"),
    Column("start_priority", Integer, default=50, server_default="50"),
    Column("runtime", Text, nullable=False),  # JSON object
    Column("commands", Text, nullable=False),  # JSON object
    Column("custom_commands", Text, nullable=False),  # JSON array
    Column("environment", Text, nullable=False),  # JSON object
    Column("depends_on", Text, nullable=False),  # JSON array of service names
    Column("resources", Text, nullable=False),  # JSON object
    Column("health_check", Text, nullable=False),  # JSON object
    Column("status", Text, nullable=False),  # JSON {current, desired, failure_count, ...}
    Column("process_info", Text, nullable=False),  # JSON object
    Column("unit", Text, nullable=False),  # JSON object
    Column("last_install_at", Text),
    Column("last_build_at", Text),
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
    UniqueConstraint("site_id", "name"),
)

domains = Table(
    "domains",
    metadata,
    Column("id", Text, primary_key=True),
    Column("hostname", Text, nullable=False),
    Column("type", Text, nullable=False),
    # No FK: dangling references are detected and repaired by cleanup jobs.
    Column("site_id", Text),
    Column("service_id", Text),
    Column("target_address", Text, nullable=False),
    Column("target_port", Integer),
    Column("path_prefix", Text, default="/", server_default="/"),
    Column("status", Text, nullable=False),
    Column("ssl", Text, nullable=False),  # JSON object
    Column("proxy", Text, nullable=False),  # JSON object
    Column("dns", Text, nullable=False),  # JSON object
    Column("error_message", Text),
    Column("metadata", Text, nullable=False),  # JSON object
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
)

databases = Table(
    "databases",
    metadata,
    Column("id", Text, primary_key=True),
    Column("site_id", Text),
    Column("name", Text, nullable=False),
    Column("display_name", Text, nullable=False),
    Column("type", Text, nullable=False),
    Column("is_external", Integer, default=0, server_default="0"),
    Column("status", Text, nullable=False),
    Column("connection", Text, nullable=False),  # JSON object
    Column("user", Text, nullable=False),  # JSON object, password encrypted
    Column("error_message", Text),
    Column("metadata", Text, nullable=False),  # JSON object
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
)

event_wal = Table(
    "event_wal",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hook_name", Text, nullable=False),
    Column("payload", Text, nullable=False),  # JSON
    Column("status", Text, nullable=False),
    Column("error", Text),
    Column("retries", Integer, default=0, server_default="0"),
    Column("created", Text, nullable=False),
    Column("completed", Text),
)

# ---------------------------------------------------------------------------
# Uniqueness among live rows + indexes for frequently filtered columns
# ---------------------------------------------------------------------------

Index(
    "uq_sites_name_live",
    sites.c.name,
    unique=True,
    sqlite_where=sites.c.status != "deleted",
)
Index(
    "uq_domains_hostname_live",
    domains.c.hostname,
    unique=True,
    sqlite_where=domains.c.status != "deleted",
)
Index(
    "uq_domains_platform_live",
    domains.c.type,
    unique=True,
    sqlite_where=(domains.c.type == "platform") & (domains.c.status != "deleted"),
)
Index(
    "uq_databases_type_name_live",
    databases.c.type,
    databases.c.name,
    unique=True,
    sqlite_where=databases.c.status != "deleted",
)
Index("ix_sites_status", sites.c.status)
Index("ix_services_site", services.c.site_id)
Index("ix_domains_site", domains.c.site_id)
Index("ix_domains_service", domains.c.service_id)
Index("ix_domains_status", domains.c.status)
Index("ix_databases_site", databases.c.site_id)
Index("ix_event_wal_status", event_wal.c.status)
