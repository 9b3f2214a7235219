"""Entity ID patterns and generation.

IDs are opaque, prefixed by entity kind, and permanent: once assigned an
ID never changes, even when the entity is renamed or soft-deleted.
"""

from __future__ import annotations

import re
import uuid

TYPE_PREFIXES: dict[str, str] = {
    "site": "sit_",
    "service": "svc_",
    "domain": "dom_",
    "database": "dbs_",
}

ID_PATTERNS: dict[str, re.Pattern[str]] = {
    kind: re.compile(rf"^{prefix}[0-9a-f]{{12}}$") for kind, prefix in TYPE_PREFIXES.items()
}


def generate_id(kind: str) -> str:
    """Generate a new ``{prefix}{12 hex chars}`` ID for *kind*."""
    try:
        prefix = TYPE_PREFIXES[kind]
    except KeyError:
        msg = f"Unknown entity kind: {kind!r}"
        raise ValueError(msg) from None
    return f"{prefix}{uuid.uuid4().hex[:12]}"


def validate_id(entity_id: str, kind: str) -> bool:
    """Check whether *entity_id* matches the expected pattern for *kind*."""
    pattern = ID_PATTERNS.get(kind)
    if pattern is None:
        return False
    return pattern.match(entity_id) is not None
