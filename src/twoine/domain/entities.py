"""Entity records: Site, Service, Domain, Database and their sub-records.

Entities are frozen pydantic models. Derived fields (paths, unit names,
OS usernames, database usernames, proxy/cert paths) are computed once by
the ``new_*`` factory functions and never recomputed afterwards; changes
go through ``model_copy(update=...)`` in the owning orchestrator.

This module performs no I/O.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any

from pydantic import BaseModel, Field

from twoine.domain.ids import generate_id
from twoine.domain.lifecycle import (
    DatabaseEngineType,
    DatabaseStatus,
    DesiredState,
    DomainStatus,
    DomainType,
    HealthStatus,
    ServiceState,
    SiteStatus,
    SslType,
)
from twoine.domain.naming import database_username, os_username, unit_name
from twoine.domain.ports import PortRange
from twoine.domain.runtimes import RuntimeType, runtime_defaults

# ---------------------------------------------------------------------------
# Site
# ---------------------------------------------------------------------------


class OsUser(BaseModel):
    """Binding between a site and its dedicated OS account."""

    model_config = {"frozen": True}

    username: str
    home: str
    uid: int | None = None
    gid: int | None = None
    created: bool = False


class SitePaths(BaseModel):
    """Directory tree of a site, all derived from ``root``."""

    model_config = {"frozen": True}

    root: str
    services: str
    logs: str
    data: str
    tmp: str

    @classmethod
    def from_root(cls, root: str) -> SitePaths:
        base = PurePosixPath(root)
        return cls(
            root=str(base),
            services=str(base / "services"),
            logs=str(base / "logs"),
            data=str(base / "data"),
            tmp=str(base / "tmp"),
        )

    def all(self) -> list[str]:
        return [self.root, self.services, self.logs, self.data, self.tmp]


class SiteLimits(BaseModel):
    model_config = {"frozen": True}

    max_memory_mb: int = 512
    max_cpu_percent: int = 100
    max_disk_mb: int = 1024


class Site(BaseModel):
    """A tenant: OS user, directory tree, port range, services, domains, databases."""

    model_config = {"frozen": True}

    id: str
    name: str
    display_name: str
    description: str = ""
    owner: str | None = None
    os_user: OsUser
    paths: SitePaths
    port_range: PortRange
    limits: SiteLimits = Field(default_factory=SiteLimits)
    environment: dict[str, str] = Field(default_factory=dict)
    sftp_username: str | None = None
    status: SiteStatus = SiteStatus.PENDING
    error_message: str | None = None
    created_at: str
    updated_at: str


def new_site(
    name: str,
    *,
    sites_dir: str,
    port_range: PortRange,
    now: str,
    display_name: str | None = None,
    description: str = "",
    owner: str | None = None,
    limits: SiteLimits | None = None,
    environment: dict[str, str] | None = None,
) -> Site:
    """Build a pending Site with every derived field computed."""
    root = str(PurePosixPath(sites_dir) / name)
    return Site(
        id=generate_id("site"),
        name=name,
        display_name=display_name or name,
        description=description,
        owner=owner,
        os_user=OsUser(username=os_username(name), home=root),
        paths=SitePaths.from_root(root),
        port_range=port_range,
        limits=limits or SiteLimits(),
        environment=environment or {},
        status=SiteStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ServiceCommands(BaseModel):
    model_config = {"frozen": True}

    start: str
    install: str | None = None
    build: str | None = None
    stop: str | None = None
    health_check: str | None = None


class CustomCommand(BaseModel):
    """Operator-defined command run as the site user in the working directory."""

    model_config = {"frozen": True}

    name: str
    command: str
    display_name: str | None = None
    description: str = ""
    timeout: int = 300
    requires_stop: bool = False
    dangerous: bool = False


class Runtime(BaseModel):
    model_config = {"frozen": True}

    type: RuntimeType = RuntimeType.NODE
    binary: str | None = None
    version: str | None = None


class ServiceResources(BaseModel):
    model_config = {"frozen": True}

    memory_mb: int = 256
    cpu_percent: int = 50


class HealthCheck(BaseModel):
    model_config = {"frozen": True}

    enabled: bool = True
    endpoint: str = "/health"
    timeout: int = 5
    last_check: str | None = None
    last_status: HealthStatus = HealthStatus.UNKNOWN


class ServiceStatusRecord(BaseModel):
    """Two-axis status plus failure bookkeeping."""

    model_config = {"frozen": True}

    current: ServiceState = ServiceState.UNKNOWN
    desired: DesiredState = DesiredState.STOPPED
    failure_count: int = 0
    last_error: str | None = None
    last_state_change: str | None = None
    last_check: str | None = None


class ProcessInfo(BaseModel):
    model_config = {"frozen": True}

    pid: int | None = None
    started_at: str | None = None
    memory_bytes: int | None = None


class UnitInfo(BaseModel):
    model_config = {"frozen": True}

    name: str
    unit_file_created: bool = False
    unit_file_updated_at: str | None = None


class Service(BaseModel):
    """A supervised process belonging to exactly one site."""

    model_config = {"frozen": True}

    id: str
    site_id: str
    name: str
    display_name: str
    description: str = ""
    port: int
    working_dir: str
    runtime: Runtime = Field(default_factory=Runtime)
    commands: ServiceCommands
    custom_commands: list[CustomCommand] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    auto_start: bool = True
    start_priority: int = Field(default=50, ge=1, le=100)
    depends_on: list[str] = Field(default_factory=list)
    resources: ServiceResources = Field(default_factory=ServiceResources)
    health_check: HealthCheck = Field(default_factory=HealthCheck)
    status: ServiceStatusRecord = Field(default_factory=ServiceStatusRecord)
    process_info: ProcessInfo = Field(default_factory=ProcessInfo)
    unit: UnitInfo
    last_install_at: str | None = None
    last_build_at: str | None = None
    created_at: str
    updated_at: str

    def find_custom_command(self, name: str) -> CustomCommand | None:
        for cmd in self.custom_commands:
            if cmd.name == name:
                return cmd
        return None


def new_service(
    site: Site,
    name: str,
    *,
    port: int,
    commands: ServiceCommands,
    unit_prefix: str,
    now: str,
    runtime: RuntimeType | str = RuntimeType.NODE,
    display_name: str | None = None,
    description: str = "",
    environment: dict[str, str] | None = None,
    auto_start: bool = True,
    start_priority: int = 50,
    depends_on: list[str] | None = None,
    resources: ServiceResources | None = None,
    health_check: HealthCheck | None = None,
) -> Service:
    """Build a stopped Service for *site* with its unit name and working dir fixed."""
    rt = RuntimeType(runtime)
    defaults = runtime_defaults(rt)
    if commands.install is None and defaults.install_command is not None:
        commands = commands.model_copy(update={"install": defaults.install_command})
    return Service(
        id=generate_id("service"),
        site_id=site.id,
        name=name,
        display_name=display_name or name,
        description=description,
        port=port,
        working_dir=str(PurePosixPath(site.paths.services) / name),
        runtime=Runtime(type=rt, binary=defaults.binary, version=defaults.version),
        commands=commands,
        environment=environment or {},
        auto_start=auto_start,
        start_priority=start_priority,
        depends_on=depends_on or [],
        resources=resources or ServiceResources(),
        health_check=health_check or HealthCheck(),
        status=ServiceStatusRecord(
            current=ServiceState.STOPPED,
            desired=DesiredState.STOPPED,
            last_state_change=now,
        ),
        unit=UnitInfo(name=unit_name(unit_prefix, site.name, name)),
        created_at=now,
        updated_at=now,
    )


# ---------------------------------------------------------------------------
# Domain
# ---------------------------------------------------------------------------


class SslInfo(BaseModel):
    model_config = {"frozen": True}

    enabled: bool = False
    type: SslType = SslType.NONE
    cert_path: str | None = None
    key_path: str | None = None
    generated_at: str | None = None
    expires_at: str | None = None


class ProxyInfo(BaseModel):
    model_config = {"frozen": True}

    config_path: str
    enabled_path: str
    configured: bool = False
    last_reload: str | None = None


class DnsRecord(BaseModel):
    model_config = {"frozen": True}

    type: str
    name: str
    value: str


class DnsInfo(BaseModel):
    model_config = {"frozen": True}

    verified: bool = False
    last_check: str | None = None
    expected_records: list[DnsRecord] = Field(default_factory=list)


class Domain(BaseModel):
    """A reverse-proxy virtual host mapped to a site/service/port."""

    model_config = {"frozen": True}

    id: str
    hostname: str
    type: DomainType = DomainType.SITE
    site_id: str | None = None
    service_id: str | None = None
    target_address: str = "127.0.0.1"
    target_port: int | None = None
    path_prefix: str = "/"
    ssl: SslInfo = Field(default_factory=SslInfo)
    proxy: ProxyInfo
    dns: DnsInfo = Field(default_factory=DnsInfo)
    status: DomainStatus = DomainStatus.PENDING
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    updated_at: str

    @property
    def target(self) -> str:
        return f"{self.target_address}:{self.target_port}"


def domain_cert_paths(certs_dir: str, hostname: str) -> tuple[str, str]:
    """``(cert_path, key_path)`` inside the per-domain certificate directory."""
    cert_dir = PurePosixPath(certs_dir) / hostname
    return str(cert_dir / "cert.pem"), str(cert_dir / "key.pem")


def domain_proxy_info(nginx_available: str, nginx_enabled: str, hostname: str) -> ProxyInfo:
    filename = f"{hostname}.conf"
    return ProxyInfo(
        config_path=str(PurePosixPath(nginx_available) / filename),
        enabled_path=str(PurePosixPath(nginx_enabled) / filename),
    )


def new_domain(
    hostname: str,
    *,
    certs_dir: str,
    nginx_available: str,
    nginx_enabled: str,
    now: str,
    domain_type: DomainType = DomainType.SITE,
    site_id: str | None = None,
    service_id: str | None = None,
    target_port: int | None = None,
    target_address: str = "127.0.0.1",
    path_prefix: str = "/",
    enable_ssl: bool = False,
    dns_records: list[DnsRecord] | None = None,
) -> Domain:
    """Build a pending Domain with proxy and certificate paths fixed."""
    ssl = SslInfo()
    if enable_ssl:
        cert_path, key_path = domain_cert_paths(certs_dir, hostname)
        ssl = SslInfo(
            enabled=True, type=SslType.SELF_SIGNED, cert_path=cert_path, key_path=key_path
        )
    return Domain(
        id=generate_id("domain"),
        hostname=hostname,
        type=domain_type,
        site_id=site_id,
        service_id=service_id,
        target_address=target_address,
        target_port=target_port,
        path_prefix=path_prefix,
        ssl=ssl,
        proxy=domain_proxy_info(nginx_available, nginx_enabled, hostname),
        dns=DnsInfo(expected_records=dns_records or []),
        status=DomainStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


def expected_dns_records(
    hostname: str, server_ip: str | None, server_ipv6: str | None = None
) -> list[DnsRecord]:
    """A (and optional AAAA) records a registrar must point at this server."""
    records: list[DnsRecord] = []
    if server_ip:
        records.append(DnsRecord(type="A", name=hostname, value=server_ip))
    if server_ipv6:
        records.append(DnsRecord(type="AAAA", name=hostname, value=server_ipv6))
    return records


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class EncryptedSecret(BaseModel):
    """AEAD ciphertext at rest: IV, ciphertext and tag, hex-encoded."""

    model_config = {"frozen": True}

    iv: str
    ciphertext: str
    tag: str


class DatabaseConnection(BaseModel):
    model_config = {"frozen": True}

    host: str = "localhost"
    port: int
    database_name: str


class DatabaseUser(BaseModel):
    model_config = {"frozen": True}

    username: str
    password: EncryptedSecret | None = None
    privileges: list[str] = Field(default_factory=list)
    created: bool = False


class Database(BaseModel):
    """A provisioned or linked schema + user on one engine, scoped to a site."""

    model_config = {"frozen": True}

    id: str
    site_id: str | None
    name: str
    display_name: str
    type: DatabaseEngineType
    is_external: bool = False
    connection: DatabaseConnection
    user: DatabaseUser
    status: DatabaseStatus = DatabaseStatus.PENDING
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    updated_at: str


DEFAULT_ENGINE_PORTS: dict[DatabaseEngineType, int] = {
    DatabaseEngineType.MONGODB: 27017,
    DatabaseEngineType.MYSQL: 3306,
    DatabaseEngineType.MARIADB: 3306,
    DatabaseEngineType.POSTGRESQL: 5432,
}

DEFAULT_PRIVILEGES: dict[DatabaseEngineType, list[str]] = {
    DatabaseEngineType.MONGODB: ["readWrite", "dbAdmin"],
    DatabaseEngineType.MYSQL: [
        "SELECT",
        "INSERT",
        "UPDATE",
        "DELETE",
        "CREATE",
        "DROP",
        "INDEX",
        "ALTER",
        "REFERENCES",
    ],
    DatabaseEngineType.POSTGRESQL: ["ALL"],
}
DEFAULT_PRIVILEGES[DatabaseEngineType.MARIADB] = DEFAULT_PRIVILEGES[DatabaseEngineType.MYSQL]


def new_database(
    site: Site,
    name: str,
    *,
    engine: DatabaseEngineType,
    host: str,
    port: int,
    now: str,
    display_name: str | None = None,
) -> Database:
    """Build a managed Database in ``creating`` with its engine username derived."""
    return Database(
        id=generate_id("database"),
        site_id=site.id,
        name=name,
        display_name=display_name or name,
        type=engine,
        connection=DatabaseConnection(host=host, port=port, database_name=name),
        user=DatabaseUser(
            username=database_username(site.name, name),
            privileges=list(DEFAULT_PRIVILEGES[engine]),
        ),
        status=DatabaseStatus.CREATING,
        created_at=now,
        updated_at=now,
    )


def new_external_database(
    site: Site,
    name: str,
    *,
    engine: DatabaseEngineType,
    host: str,
    port: int,
    database_name: str,
    username: str,
    password: EncryptedSecret,
    now: str,
    display_name: str | None = None,
) -> Database:
    """Build a linked Database: connection details supplied by the caller."""
    return Database(
        id=generate_id("database"),
        site_id=site.id,
        name=name,
        display_name=display_name or name,
        type=engine,
        is_external=True,
        connection=DatabaseConnection(host=host, port=port, database_name=database_name),
        user=DatabaseUser(username=username, password=password),
        status=DatabaseStatus.EXTERNAL,
        created_at=now,
        updated_at=now,
    )
