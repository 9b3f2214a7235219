"""Shared Jinja2 template loading with per-host override support."""

from __future__ import annotations

from pathlib import Path

from jinja2 import (
    BaseLoader,
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
)


def build_template_environment(group: str, *, override_root: Path | None = None) -> Environment:
    """Build a Jinja2 environment with operator overrides before packaged defaults.

    Overrides are loaded from ``{state_dir}/templates/{group}/`` so a host can
    customise unit or proxy templates without patching the package.
    Undefined variables raise instead of rendering as empty strings.
    """

    loaders: list[BaseLoader] = []
    if override_root is not None:
        loaders.append(FileSystemLoader(str(override_root / "templates" / group)))

    loaders.append(PackageLoader("twoine", f"templates/{group}"))
    return Environment(
        loader=ChoiceLoader(loaders),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=StrictUndefined,
        autoescape=False,
    )
