"""Privileged filesystem operations on tenant trees and system config dirs.

The control process does not own ``/etc`` or the sites root, so writes
are staged in a private directory and moved into place with privileged
``mv`` + ``chmod`` + ``chown``. A half-written file is never visible at
its destination.

INVARIANT: recursive deletion only targets a verified strict subpath of
the configured root.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path, PurePosixPath

from twoine.domain.errors import TwoineError, ValidationError
from twoine.infrastructure.runner import ProcessRunner

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Path guards
# ---------------------------------------------------------------------------


def is_strict_subpath(path: str | Path, root: str | Path) -> bool:
    """True when *path* resolves inside *root* and is not *root* itself."""
    resolved = Path(os.path.normpath(Path(path).resolve()))
    root_resolved = Path(os.path.normpath(Path(root).resolve()))
    return resolved != root_resolved and resolved.is_relative_to(root_resolved)


def resolve_within(root: str | Path, relative: str) -> Path:
    """Resolve *relative* under *root*, rejecting traversal outside it."""
    root_path = Path(root).resolve()
    candidate = (root_path / relative.lstrip("/")).resolve()
    if candidate != root_path and not candidate.is_relative_to(root_path):
        msg = f"Path escapes site root: {relative}"
        raise ValidationError(msg, detail={"field": "path", "value": relative})
    return candidate


# ---------------------------------------------------------------------------
# Privileged writes
# ---------------------------------------------------------------------------


def stage_file(content: str, staging_dir: Path, *, prefix: str = "twoine-") -> Path:
    """Write *content* to a fresh private file under *staging_dir*."""
    staging_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=".tmp", dir=staging_dir)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(content)
    return Path(name)


def install_file(
    runner: ProcessRunner,
    content: str,
    dest: str,
    *,
    staging_dir: Path,
    mode: str,
    owner: str = "root",
    group: str | None = None,
) -> None:
    """Atomically place *content* at *dest* with the given mode and ownership."""
    staged = stage_file(content, staging_dir)
    try:
        runner.run(["mv", "-f", str(staged), dest], privileged=True)
        runner.run(["chmod", mode, dest], privileged=True)
        runner.run(["chown", f"{owner}:{group or owner}", dest], privileged=True)
    finally:
        # Present only when the move did not happen.
        staged.unlink(missing_ok=True)


def make_directory(
    runner: ProcessRunner,
    path: str,
    *,
    owner: str,
    group: str | None = None,
    mode: str = "750",
) -> None:
    """``mkdir -p`` then set ownership and mode."""
    runner.run(["mkdir", "-p", path], privileged=True)
    runner.run(["chown", f"{owner}:{group or owner}", path], privileged=True)
    runner.run(["chmod", mode, path], privileged=True)


def remove_tree(runner: ProcessRunner, path: str, *, root: str | Path) -> None:
    """``rm -rf`` *path*, but only when it is a strict subpath of *root*."""
    if not is_strict_subpath(path, root):
        msg = f"Refusing to remove {path}: not inside {root}"
        raise ValidationError(msg, detail={"path": path, "root": str(root)})
    runner.run(["rm", "-rf", "--", str(PurePosixPath(path))], privileged=True)


def remove_file(runner: ProcessRunner, path: str) -> None:
    """``rm -f`` a single file."""
    runner.run(["rm", "-f", "--", path], privileged=True)


def best_effort(
    label: str, func: Callable[..., object], *args: object, **kwargs: object
) -> str | None:
    """Run a cleanup step, swallowing and logging its failure.

    Returns the error message if the step failed, else None.
    """
    try:
        func(*args, **kwargs)
    except (TwoineError, OSError) as exc:
        logger.warning("%s failed: %s", label, exc)
        return str(exc)
    return None
