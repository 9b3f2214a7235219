"""ServiceResult and ServiceError, the universal orchestrator contract.

INVARIANT: All public orchestrator methods return ServiceResult.
The CLI and any future interface (HTTP API, dashboards) consume this type.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ServiceError(BaseModel):
    """Structured error payload within a ServiceResult."""

    model_config = {"frozen": True}

    code: str
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)


class ServiceResult(BaseModel):
    """Universal return type for all orchestrator operations.

    Attributes:
        ok: Whether the operation succeeded.
        op: Name of the operation (e.g. ``"create_site"``).
        data: Operation-specific payload on success.
        warnings: Non-fatal issues encountered during the operation.
        error: Structured error if ``ok`` is False.
        meta: Optional metadata (timing, telemetry).

    A batch operation where some items failed is still ``ok``: its data
    carries ``succeeded``/``failed`` lists and ``partial=True``, with one
    warning per failed item.
    """

    model_config = {"frozen": True}

    ok: bool
    op: str
    data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: ServiceError | None = None
    meta: dict[str, Any] | None = None

    @property
    def partial(self) -> bool:
        return bool(self.data.get("partial"))
