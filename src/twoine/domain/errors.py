"""Error taxonomy shared by every layer.

Infrastructure adapters and domain helpers raise these exceptions; the
orchestrator layer converts them into :class:`ServiceResult` failures
using the stable ``code`` attribute.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class TwoineError(Exception):
    """Base class for all expected control-plane failures."""

    code = "TWOINE_ERROR"

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail: dict[str, Any] = detail or {}


class ValidationError(TwoineError):
    """Bad name, domain, command or value shape. Raised before any side effect."""

    code = "VALIDATION_ERROR"


class NotFoundError(TwoineError):
    """A referenced entity does not exist (or is soft-deleted)."""

    code = "NOT_FOUND"


class ConflictError(TwoineError):
    """Duplicate name, port, domain or unit; or an operation the current state forbids."""

    code = "CONFLICT"


class ConfigurationError(TwoineError):
    """Missing or malformed configuration that makes the process unusable."""

    code = "CONFIGURATION_ERROR"


class ExternalCommandError(TwoineError):
    """An OS tool exited non-zero, timed out, or could not be executed."""

    code = "EXTERNAL_COMMAND_FAILED"

    def __init__(
        self,
        message: str,
        *,
        argv: Sequence[str] = (),
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(
            message,
            detail={
                "argv": list(argv),
                "returncode": returncode,
                "stderr": stderr.strip()[-2000:],
                "timed_out": timed_out,
            },
        )
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out
