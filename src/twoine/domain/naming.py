"""Derived names and generated secrets.

Every derived identifier (unit name, OS username, database username) is
computed here exactly once, when the owning entity is built.
"""

from __future__ import annotations

import base64
import secrets
import string

from twoine.domain.validation import validate_unit_name

OS_USER_PREFIX = "site_"
DB_USER_PREFIX = "tw_"
# MySQL caps user names at 32 characters; PostgreSQL at 63.
DB_USERNAME_MAX_LENGTH = 30
DB_PASSWORD_BYTES = 24

SFTP_PASSWORD_LENGTH = 20
_SFTP_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#%^*-_=+"


def unit_name(prefix: str, site_name: str, service_name: str) -> str:
    """Supervisor unit name for a service: ``{prefix}-{site}-{service}``."""
    return validate_unit_name(f"{prefix}-{site_name}-{service_name}")


def os_username(site_name: str) -> str:
    """Dedicated OS account owning a site's files and processes."""
    return f"{OS_USER_PREFIX}{site_name}"


def database_username(site_name: str, database_name: str) -> str:
    """Engine-side user for a managed database.

    ``tw_`` plus the first 27 characters of ``{site}_{db}`` with hyphens
    replaced by underscores, so the result never exceeds 30 characters.
    """
    combined = f"{site_name}_{database_name}".replace("-", "_")
    budget = DB_USERNAME_MAX_LENGTH - len(DB_USER_PREFIX)
    return f"{DB_USER_PREFIX}{combined[:budget]}"


def generate_database_password() -> str:
    """Random password safe to embed in SQL and URLs (no ``+``, ``/`` or ``=``)."""
    raw = base64.b64encode(secrets.token_bytes(DB_PASSWORD_BYTES)).decode("ascii")
    return raw.replace("+", "").replace("/", "").replace("=", "")


def generate_sftp_password(length: int = SFTP_PASSWORD_LENGTH) -> str:
    """Random SFTP account password."""
    return "".join(secrets.choice(_SFTP_PASSWORD_ALPHABET) for _ in range(length))
