"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, twoine.toml only contains overrides.
A fresh install needs only ``[databases] encryption_key``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class PathsConfig(BaseModel):
    """[paths] section."""

    model_config = {"frozen": True}

    state_dir: Path = Path("/var/lib/twoine")
    sites_dir: Path = Path("/var/www/sites")
    scripts_dir: Path = Path("/opt/twoine/scripts")
    certs_dir: Path = Path("/etc/twoine/certs")
    nginx_available: Path = Path("/etc/nginx/sites-available")
    nginx_enabled: Path = Path("/etc/nginx/sites-enabled")
    unit_dir: Path = Path("/etc/systemd/system")


class SupervisorConfig(BaseModel):
    """[supervisor] section."""

    model_config = {"frozen": True}

    unit_prefix: str = "twoine"
    status_concurrency: int = 10
    command_timeout: int = 30


class SitesConfig(BaseModel):
    """[sites] section."""

    model_config = {"frozen": True}

    port_base: int = 10000
    ports_per_site: int = 10
    control_user: str = "twoine"
    max_memory_mb: int = 512
    max_cpu_percent: int = 100
    max_disk_mb: int = 1024


class ServicesConfig(BaseModel):
    """[services] section."""

    model_config = {"frozen": True}

    memory_mb: int = 256
    cpu_percent: int = 50
    install_timeout: int = 300
    build_timeout: int = 600
    health_timeout: int = 5


class DomainsConfig(BaseModel):
    """[domains] section."""

    model_config = {"frozen": True}

    server_ip: str | None = None
    server_ipv6: str | None = None
    cert_days: int = 365
    key_bits: int = 2048
    cert_org: str = "Twoine"
    cert_country: str = "FR"
    command_timeout: int = 30


class EngineConfig(BaseModel):
    """[databases.<engine>] section."""

    model_config = {"frozen": True}

    host: str = "localhost"
    port: int
    admin_user: str = "twoine_admin"
    admin_password: str | None = None
    admin_db: str | None = None


class DatabasesConfig(BaseModel):
    """[databases] section.

    ``encryption_key`` is a 64-character hex string (32 bytes). It has no
    default: a missing key is a fatal error when the database orchestrator
    is built, so stored secrets never become undecryptable after restart.
    """

    model_config = {"frozen": True}

    encryption_key: str | None = None
    command_timeout: int = 30
    mongodb: EngineConfig = Field(
        default_factory=lambda: EngineConfig(port=27017, admin_db="admin")
    )
    mysql: EngineConfig = Field(default_factory=lambda: EngineConfig(port=3306))
    postgresql: EngineConfig = Field(
        default_factory=lambda: EngineConfig(port=5432, admin_db="postgres")
    )


class SftpConfig(BaseModel):
    """[sftp] section."""

    model_config = {"frozen": True}

    enabled: bool = True
    timeout: int = 30


class NotificationsConfig(BaseModel):
    """[notifications] section."""

    model_config = {"frozen": True}

    webhook_url: str | None = None
    timeout: float = 5.0
