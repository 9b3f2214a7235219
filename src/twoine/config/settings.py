"""Unified settings: CLI flags, env vars and TOML config in one object.

Priority chain (highest to lowest):
  1. Init kwargs: CLI flags passed by Click
  2. Env vars: ``TWOINE_*`` prefix, nested with ``__``
  3. TOML file: ``twoine.toml`` discovered via walk-up
  4. Code defaults: baked into the section models

Uses Pydantic Settings v2 with a custom :class:`TomlSettingsSource` that
reuses the walk-up discovery from :mod:`twoine.config.discovery`.
"""

from __future__ import annotations

import threading
import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from twoine.config.discovery import find_config
from twoine.config.models import (
    DatabasesConfig,
    DomainsConfig,
    NotificationsConfig,
    PathsConfig,
    ServicesConfig,
    SftpConfig,
    SitesConfig,
    SupervisorConfig,
)
from twoine.domain.errors import ConfigurationError


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Read settings from a ``twoine.toml`` file discovered via walk-up."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data: dict[str, Any] = {}
        if toml_path and toml_path.is_file():
            raw = toml_path.read_text(encoding="utf-8")
            try:
                self._data = tomllib.loads(raw)
            except tomllib.TOMLDecodeError as exc:
                msg = f"Invalid TOML in {toml_path}: {exc}"
                raise ConfigurationError(msg) from exc

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Return ``(value, field_name, value_is_complex)``."""
        val = self._data.get(field_name)
        return val, field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        """Return the full TOML data dict for Pydantic to merge."""
        return self._data


# Thread-local storage for TOML path during construction.
_tls = threading.local()


class TwoineSettings(BaseSettings):
    """Unified settings for the twoine control plane.

    Merges CLI flags, environment variables, TOML config sections,
    and code-baked defaults into a single frozen object.

    Attributes:
        config_path: The TOML file that was loaded, if any.
        use_sudo: Prefix privileged commands with ``sudo``. Disable when
            the control process already runs as root.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "TWOINE_",
        "env_nested_delimiter": "__",
    }

    config_path: Path | None = None
    use_sudo: bool = True

    # --- CLI flags ---
    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False
    sync: bool = False

    # --- TOML sections ---
    paths: PathsConfig = Field(default_factory=PathsConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    sites: SitesConfig = Field(default_factory=SitesConfig)
    services: ServicesConfig = Field(default_factory=ServicesConfig)
    domains: DomainsConfig = Field(default_factory=DomainsConfig)
    databases: DatabasesConfig = Field(default_factory=DatabasesConfig)
    sftp: SftpConfig = Field(default_factory=SftpConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)

    @property
    def db_path(self) -> Path:
        """SQLite state database."""
        return self.paths.state_dir / "twoine.db"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert TOML source between env vars and defaults."""
        toml_path = getattr(_tls, "toml_path", None)
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, toml_path),
        )

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        start_dir: Path | None = None,
        **cli_flags: Any,
    ) -> TwoineSettings:
        """Construct settings from a CLI invocation.

        Discovers ``twoine.toml`` via walk-up from *start_dir* (or uses the
        explicit *config_path*) and merges CLI flags as highest-priority
        overrides.
        """
        toml_path: Path | None = None
        if config_path:
            p = Path(config_path)
            if not p.is_file():
                msg = f"Config file not found: {config_path}"
                raise ConfigurationError(msg)
            toml_path = p
        else:
            toml_path = find_config(start_dir)

        _tls.toml_path = toml_path
        try:
            return cls(config_path=toml_path, **cli_flags)
        finally:
            _tls.toml_path = None
