"""Status enums and transition maps for every managed entity.

Each entity's ``status`` is driven exclusively by its owning orchestrator.
The maps below list, for each status, the statuses it may move to; the
orchestrators consult them before persisting a change.
"""

from __future__ import annotations

from enum import StrEnum

# --- Site ---


class SiteStatus(StrEnum):
    """Tenant lifecycle."""

    PENDING = "pending"
    CREATING = "creating"
    ACTIVE = "active"
    STOPPED = "stopped"
    ERROR = "error"
    DELETING = "deleting"
    DELETED = "deleted"


# --- Service (two axes) ---


class ServiceState(StrEnum):
    """Observed process state (``status.current``)."""

    UNKNOWN = "unknown"
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"
    RESTARTING = "restarting"


class DesiredState(StrEnum):
    """Operator intent (``status.desired``)."""

    STOPPED = "stopped"
    RUNNING = "running"


class HealthStatus(StrEnum):
    """Outcome of the last health probe."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


# --- Domain ---


class DomainStatus(StrEnum):
    """Reverse-proxy virtual host lifecycle."""

    PENDING = "pending"
    CONFIGURING = "configuring"
    ACTIVE = "active"
    ERROR = "error"
    DELETING = "deleting"
    DELETED = "deleted"


class DomainType(StrEnum):
    """``platform`` is a singleton that cannot be reassigned."""

    PLATFORM = "platform"
    SITE = "site"


class SslType(StrEnum):
    NONE = "none"
    SELF_SIGNED = "self-signed"


# --- Database ---


class DatabaseStatus(StrEnum):
    """Managed or linked database lifecycle."""

    PENDING = "pending"
    CREATING = "creating"
    ACTIVE = "active"
    ERROR = "error"
    DELETING = "deleting"
    DELETED = "deleted"
    EXTERNAL = "external"


class DatabaseEngineType(StrEnum):
    """Supported engines. ``mariadb`` shares the MySQL driver."""

    MONGODB = "mongodb"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    POSTGRESQL = "postgresql"


class CascadeAction(StrEnum):
    """What happens to a site's databases when the site is deleted."""

    DELETE = "delete"
    KEEP = "keep"
    UNLINK = "unlink"


# --- Transition maps ---

SITE_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["creating", "error", "deleting"],
    "creating": ["active", "error"],
    "active": ["stopped", "error", "deleting"],
    "stopped": ["active", "error", "deleting"],
    "error": ["creating", "active", "stopped", "deleting"],
    "deleting": ["deleted", "error"],
    "deleted": [],
}

SERVICE_TRANSITIONS: dict[str, list[str]] = {
    "unknown": ["starting", "stopping", "stopped", "running", "failed"],
    "stopped": ["starting", "failed"],
    "starting": ["running", "failed"],
    "running": ["stopping", "restarting", "failed"],
    "stopping": ["stopped", "failed"],
    "restarting": ["running", "failed"],
    "failed": ["starting", "stopping", "stopped", "restarting"],
}

DOMAIN_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["configuring", "active", "error", "deleting", "deleted"],
    "configuring": ["active", "error"],
    "active": ["configuring", "pending", "error", "deleting", "deleted"],
    "error": ["configuring", "active", "pending", "deleting", "deleted"],
    "deleting": ["deleted", "error"],
    "deleted": [],
}

DATABASE_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["creating", "error"],
    "creating": ["active", "error"],
    "active": ["deleting", "external", "error"],
    "external": ["deleting", "error"],
    "error": ["deleting", "active", "external"],
    "deleting": ["deleted", "error"],
    "deleted": [],
}

# Operations in flight: a new start/stop/restart must wait for these to settle.
SERVICE_BUSY_STATES: frozenset[str] = frozenset({"starting", "stopping", "restarting"})


def is_valid_transition(
    current: str,
    target: str,
    transitions: dict[str, list[str]],
) -> bool:
    """Check if transitioning from *current* to *target* is allowed."""
    allowed = transitions.get(current, [])
    return target in allowed
