"""BaseOrchestrator, the shared foundation for the four orchestrators.

Every orchestrator receives a :class:`Platform` at construction time.
The Platform provides the repositories, the process runner, the clock
and the OS adapters. Orchestrators convert every expected failure into
a :class:`ServiceResult`; public methods never raise domain errors.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from twoine.domain.errors import TwoineError
from twoine.orchestrators.result import ServiceError, ServiceResult

if TYPE_CHECKING:
    from twoine.config.settings import TwoineSettings
    from twoine.infrastructure.platform import Platform

logger = logging.getLogger(__name__)


class BaseOrchestrator:
    """Abstract base for all orchestrator classes.

    Usage::

        class SiteOrchestrator(BaseOrchestrator):
            @traced
            def create_site(self, name: str, ...) -> ServiceResult:
                try:
                    ...
                except TwoineError as exc:
                    return self._failure("create_site", exc)
    """

    def __init__(self, platform: Platform) -> None:
        self._platform = platform

    @property
    def _settings(self) -> TwoineSettings:
        return self._platform.settings

    def _dispatch_event(
        self,
        hook_name: str,
        payload: dict[str, Any],
        warnings: list[str],
    ) -> None:
        """Dispatch a notification event. No-op if event bus not initialized.

        INVARIANT: Plugin failures are warnings, never errors.
        """
        bus = self._platform.event_bus
        if bus is None:
            return
        try:
            bus.dispatch(hook_name, payload)
        except Exception:
            logger.debug("Event dispatch failed for %s", hook_name, exc_info=True)
            warnings.append(f"Event dispatch failed for {hook_name}")

    def _alert(
        self,
        source: str,
        message: str,
        warnings: list[str],
        *,
        level: str = "error",
        detail: dict[str, Any] | None = None,
    ) -> None:
        self._dispatch_event(
            "alert_raised",
            {"level": level, "source": source, "message": message, "detail": detail or {}},
            warnings,
        )

    @staticmethod
    def _failure(
        op: str,
        exc: TwoineError,
        *,
        warnings: list[str] | None = None,
        data: dict[str, Any] | None = None,
    ) -> ServiceResult:
        """Failed ServiceResult carrying the error's stable code."""
        return ServiceResult(
            ok=False,
            op=op,
            data=data or {},
            warnings=warnings or [],
            error=ServiceError(code=exc.code, message=exc.message, detail=exc.detail),
        )
