"""Config file discovery.

Walk-up finder locates twoine.toml, similar to how git finds .git/.
Falls back to the system-wide ``/etc/twoine/twoine.toml``.
Supports TWOINE_CONFIG env var and --config CLI flag overrides.
"""

from __future__ import annotations

import os
from pathlib import Path

CONFIG_FILENAME = "twoine.toml"
CONFIG_ENV_VAR = "TWOINE_CONFIG"
SYSTEM_CONFIG = Path("/etc/twoine") / CONFIG_FILENAME


def find_config(
    start: Path | None = None,
    *,
    system_path: Path | None = SYSTEM_CONFIG,
) -> Path | None:
    """Walk up from *start* (default: cwd) looking for twoine.toml.

    Returns the path to the config file, or None if not found.
    Checks TWOINE_CONFIG env var first, the system path last.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        p = Path(env_path)
        if p.is_file():
            return p
        return None

    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    if system_path is not None and system_path.is_file():
        return system_path
    return None
