"""Input validation for every string that can reach a shell or a config file.

All validators raise :class:`ValidationError` before any side effect.
Start and custom commands pass a two-layer filter: a deny-list of shell
metacharacters and dangerous substrings, then an allow-list of command
prefixes. Both must pass.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from twoine.domain.errors import ValidationError

# --- Name patterns ---

SITE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]{2,29}$")
SERVICE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]{1,29}$")
CUSTOM_COMMAND_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]{1,29}$")
DATABASE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]{2,63}$")
ENV_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")
UNIT_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9]*-[a-z][a-z0-9_-]+-[a-z][a-z0-9_-]+$")
UNIT_NAME_MAX_LENGTH = 100

DOMAIN_PATTERN = re.compile(
    r"^(?!.*\.\.)(?!.*\s)(?!.*;)(?!.*\|)"
    r"[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*"
    r"\.[a-zA-Z]{2,}$"
)

# --- Command filters ---

ALLOWED_COMMAND_PREFIXES: tuple[str, ...] = (
    "npm",
    "node",
    "yarn",
    "pnpm",
    "python",
    "python3",
    "pip",
    "php",
    "php-fpm",
    "ruby",
    "bundle",
    "go",
    "cargo",
    "java",
    "dotnet",
    "./start",
    "./run",
    "./app",
)

FORBIDDEN_COMMAND_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Control characters would split a unit-file line or a ``bash -c`` script.
    re.compile(r"[;&|`$(){}\[\]<>\\\x00-\x1f\x7f]"),
    re.compile(r"\.\."),
    re.compile(r"/etc/"),
    re.compile(r"/root"),
    re.compile(r"sudo|su\s"),
    re.compile(r"chmod|chown"),
    re.compile(r"rm\s+-rf"),
    re.compile(r"wget|curl.*\|"),
)

# Custom commands run through ``bash -c`` as the site user, so they also
# exclude filesystem formatting and host power control.
FORBIDDEN_CUSTOM_PATTERNS: tuple[re.Pattern[str], ...] = (
    *FORBIDDEN_COMMAND_PATTERNS,
    re.compile(r"mkfs|dd\s"),
    re.compile(r"shutdown|reboot"),
)

RESERVED_COMMAND_NAMES: frozenset[str] = frozenset(
    {"start", "stop", "restart", "install", "build", "status", "logs"}
)

CUSTOM_COMMAND_MIN_TIMEOUT = 10
CUSTOM_COMMAND_MAX_TIMEOUT = 3600

# Ordered so the first matching rule names the offending input.
_DOMAIN_FORBIDDEN: tuple[tuple[str, str], ...] = (
    (";", "semicolons"),
    ("|", "pipes"),
    ("..", "double dots"),
)


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------


def _require(pattern: re.Pattern[str], value: str, label: str, rule: str) -> str:
    if not isinstance(value, str) or pattern.match(value) is None:
        msg = f"Invalid {label} {value!r}: {rule}"
        raise ValidationError(msg, detail={"field": label, "value": value})
    return value


def validate_site_name(name: str) -> str:
    """Site slug: lowercase, starts with a letter, 3-30 chars."""
    return _require(
        SITE_NAME_PATTERN,
        name,
        "site name",
        "must start with a letter and contain 3-30 lowercase letters, digits, '-' or '_'",
    )


def validate_service_name(name: str) -> str:
    """Service name: lowercase, starts with a letter, 2-30 chars."""
    return _require(
        SERVICE_NAME_PATTERN,
        name,
        "service name",
        "must start with a letter and contain 2-30 lowercase letters, digits, '-' or '_'",
    )


def validate_database_name(name: str) -> str:
    """Database name: lowercase, starts with a letter, 3-64 chars, no hyphen."""
    return _require(
        DATABASE_NAME_PATTERN,
        name,
        "database name",
        "must start with a letter and contain 3-64 lowercase letters, digits or '_'",
    )


def validate_unit_name(name: str) -> str:
    """Supervisor unit name: ``<prefix>-<site>-<service>``, at most 100 chars.

    This is the single choke point for every supervisor call.
    """
    if len(name) > UNIT_NAME_MAX_LENGTH:
        msg = f"Invalid unit name {name!r}: longer than {UNIT_NAME_MAX_LENGTH} characters"
        raise ValidationError(msg, detail={"field": "unit name", "value": name})
    return _require(
        UNIT_NAME_PATTERN,
        name,
        "unit name",
        "expected '<prefix>-<site>-<service>' in lowercase",
    )


def validate_custom_command_name(name: str) -> str:
    """Custom command name: same shape as a service name, not reserved."""
    _require(
        CUSTOM_COMMAND_NAME_PATTERN,
        name,
        "command name",
        "must start with a letter and contain 2-30 lowercase letters, digits, '-' or '_'",
    )
    if name in RESERVED_COMMAND_NAMES:
        msg = f"Command name {name!r} is reserved"
        raise ValidationError(msg, detail={"field": "command name", "value": name})
    return name


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def has_allowed_prefix(command: str) -> bool:
    """Whether *command* begins with an allow-listed interpreter or local script."""
    normalized = command.strip().lower()
    for prefix in ALLOWED_COMMAND_PREFIXES:
        if normalized == prefix or normalized.startswith(f"{prefix} "):
            return True
        if normalized.startswith(f"./{prefix}"):
            return True
    return False


def find_forbidden_pattern(
    command: str,
    patterns: tuple[re.Pattern[str], ...] = FORBIDDEN_COMMAND_PATTERNS,
) -> str | None:
    """Return the first deny-list pattern matched by *command*, or None."""
    for pattern in patterns:
        if pattern.search(command):
            return pattern.pattern
    return None


def validate_start_command(command: str) -> str:
    """Accept iff no forbidden pattern matches AND an allowed prefix matches."""
    if not isinstance(command, str) or not command.strip():
        raise ValidationError("Start command is required", detail={"field": "start command"})
    forbidden = find_forbidden_pattern(command)
    if forbidden is not None:
        msg = f"Start command contains a forbidden pattern: {forbidden}"
        raise ValidationError(msg, detail={"field": "start command", "pattern": forbidden})
    if not has_allowed_prefix(command):
        allowed = ", ".join(ALLOWED_COMMAND_PREFIXES)
        msg = f"Start command must begin with one of: {allowed}"
        raise ValidationError(msg, detail={"field": "start command"})
    return command.strip()


def validate_custom_command(command: str) -> str:
    """Deny-list check for commands passed to a sub-shell (install, build, custom)."""
    if not isinstance(command, str) or not command.strip():
        raise ValidationError("Command is required", detail={"field": "command"})
    forbidden = find_forbidden_pattern(command, FORBIDDEN_CUSTOM_PATTERNS)
    if forbidden is not None:
        msg = f"Command contains a forbidden pattern: {forbidden}"
        raise ValidationError(msg, detail={"field": "command", "pattern": forbidden})
    return command.strip()


def validate_timeout(timeout: int) -> int:
    """Custom command timeout in seconds, bounded to [10, 3600]."""
    if not CUSTOM_COMMAND_MIN_TIMEOUT <= timeout <= CUSTOM_COMMAND_MAX_TIMEOUT:
        msg = (
            f"Timeout must be between {CUSTOM_COMMAND_MIN_TIMEOUT} and "
            f"{CUSTOM_COMMAND_MAX_TIMEOUT} seconds"
        )
        raise ValidationError(msg, detail={"field": "timeout", "value": timeout})
    return timeout


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------


def normalize_domain(raw: str) -> str:
    """Validate a hostname and return it lowercased.

    Rejects ``;``, ``|``, ``..`` and whitespace with a message naming the
    offending input, then applies the full format check.
    """
    if not isinstance(raw, str) or not raw:
        raise ValidationError("Domain name is required", detail={"field": "domain"})
    for needle, label in _DOMAIN_FORBIDDEN:
        if needle in raw:
            msg = f"Domain name cannot contain {label}"
            raise ValidationError(msg, detail={"field": "domain", "value": raw})
    if any(ch.isspace() for ch in raw):
        raise ValidationError(
            "Domain name cannot contain spaces", detail={"field": "domain", "value": raw}
        )
    if DOMAIN_PATTERN.match(raw) is None:
        raise ValidationError("Invalid domain format", detail={"field": "domain", "value": raw})
    return raw.lower()


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def validate_environment(env: Mapping[str, object]) -> dict[str, str]:
    """Validate env keys and flatten values to single-line strings."""
    clean: dict[str, str] = {}
    for key, value in env.items():
        if not isinstance(key, str) or ENV_KEY_PATTERN.match(key) is None:
            msg = f"Invalid environment variable name {key!r}: expected UPPER_SNAKE_CASE"
            raise ValidationError(msg, detail={"field": "environment", "key": key})
        text = "" if value is None else str(value)
        if "\n" in text or "\r" in text:
            msg = f"Environment variable {key} cannot contain line breaks"
            raise ValidationError(msg, detail={"field": "environment", "key": key})
        clean[key] = text
    return clean
