"""External process execution, the single boundary to OS tools.

Every call passes an argument vector straight to :func:`subprocess.run`;
no shell is involved unless the caller explicitly runs ``bash -c`` (only
for validated user commands). Every call carries a hard timeout; a
timeout kills the child and surfaces as :class:`ExternalCommandError`.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from twoine.domain.errors import ExternalCommandError

logger = logging.getLogger(__name__)

# Control operations (supervisor, proxy, user management).
SHORT_TIMEOUT = 30.0
# Install / build / custom commands.
LONG_TIMEOUT = 600.0


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one external process."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner(Protocol):
    """Anything that can execute an argv with a timeout.

    Orchestrators and adapters depend on this protocol so tests can
    substitute a recording fake for the OS boundary.
    """

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float = SHORT_TIMEOUT,
        input: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        privileged: bool = False,
        check: bool = True,
    ) -> CommandResult: ...


def describe(argv: Sequence[str]) -> str:
    """Short human label for an argv (first two words)."""
    return " ".join(argv[:2])


class SubprocessRunner:
    """Production runner backed by :func:`subprocess.run`.

    Parameters:
        use_sudo: Prefix ``privileged=True`` calls with ``sudo -n``.
    """

    def __init__(self, *, use_sudo: bool = True) -> None:
        self._use_sudo = use_sudo

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float = SHORT_TIMEOUT,
        input: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        privileged: bool = False,
        check: bool = True,
    ) -> CommandResult:
        """Run *argv* and capture its output.

        Raises :class:`ExternalCommandError` when the binary is missing,
        the timeout expires, or (with *check*) the exit status is non-zero.
        """
        full = [*(["sudo", "-n"] if privileged and self._use_sudo else []), *argv]
        merged_env = {**os.environ, **env} if env else None
        logger.debug("exec %s", full)

        try:
            proc = subprocess.run(
                full,
                input=input,
                capture_output=True,
                # Tenant commands may print arbitrary bytes.
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=merged_env,
                cwd=cwd,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            msg = f"{describe(argv)} timed out after {timeout:g}s"
            raise ExternalCommandError(
                msg,
                argv=full,
                stdout=_text(exc.stdout),
                stderr=_text(exc.stderr),
                timed_out=True,
            ) from exc
        except OSError as exc:
            msg = f"{describe(argv)} could not be executed: {exc}"
            raise ExternalCommandError(msg, argv=full) from exc

        result = CommandResult(
            argv=tuple(full),
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
        if check and not result.ok:
            detail = result.stderr.strip() or result.stdout.strip()
            msg = f"{describe(argv)} exited with status {result.returncode}"
            if detail:
                msg = f"{msg}: {detail.splitlines()[-1]}"
            raise ExternalCommandError(
                msg,
                argv=full,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
