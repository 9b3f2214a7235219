"""Runtime defaults per service type."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class RuntimeType(StrEnum):
    NODE = "node"
    PYTHON = "python"
    PHP = "php"
    RUBY = "ruby"
    GO = "go"
    RUST = "rust"
    JAVA = "java"
    DOTNET = "dotnet"
    STATIC = "static"
    CUSTOM = "custom"


class RuntimeDefaults(BaseModel):
    """Interpreter binary, version and default install command for a runtime."""

    model_config = {"frozen": True}

    binary: str | None = None
    version: str | None = None
    install_command: str | None = None


RUNTIME_DEFAULTS: dict[RuntimeType, RuntimeDefaults] = {
    RuntimeType.NODE: RuntimeDefaults(
        binary="/usr/bin/node", version="20", install_command="npm install --production"
    ),
    RuntimeType.PYTHON: RuntimeDefaults(
        binary="/usr/bin/python3",
        version="3.11",
        install_command="pip install -r requirements.txt",
    ),
    RuntimeType.PHP: RuntimeDefaults(
        binary="/usr/bin/php", version="8.2", install_command="composer install --no-dev"
    ),
    RuntimeType.RUBY: RuntimeDefaults(
        binary="/usr/bin/ruby", version="3.0", install_command="bundle install --deployment"
    ),
    RuntimeType.GO: RuntimeDefaults(
        binary="/usr/bin/go", version="1.21", install_command="go build -o app"
    ),
    RuntimeType.RUST: RuntimeDefaults(
        binary="/usr/bin/cargo", version="1.70", install_command="cargo build --release"
    ),
    RuntimeType.JAVA: RuntimeDefaults(
        binary="/usr/bin/java", version="17", install_command="mvn package -DskipTests"
    ),
    RuntimeType.DOTNET: RuntimeDefaults(
        binary="/usr/bin/dotnet",
        version="8.0",
        install_command="dotnet restore && dotnet build -c Release",
    ),
    RuntimeType.STATIC: RuntimeDefaults(),
    RuntimeType.CUSTOM: RuntimeDefaults(),
}


def runtime_defaults(runtime: str) -> RuntimeDefaults:
    """Defaults for *runtime*; unknown types fall back to ``custom``."""
    try:
        return RUNTIME_DEFAULTS[RuntimeType(runtime)]
    except ValueError:
        return RUNTIME_DEFAULTS[RuntimeType.CUSTOM]
