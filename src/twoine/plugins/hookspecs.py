"""Pluggy hook specifications for twoine status-change notifications.

Orchestrators emit these fire-and-forget events after persisting a
status change. Payloads are plain JSON-serializable values because each
event is written to the ``event_wal`` table before dispatch.
"""

from __future__ import annotations

from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("twoine")


class TwoineHookSpec:
    """Hook specifications for the twoine plugin system."""

    @hookspec
    def service_status_changed(
        self,
        site: str,
        service: str,
        previous: str,
        current: str,
        error: str | None,
    ) -> None:
        """Called after a service's observed state changes."""

    @hookspec
    def site_status_changed(self, site: str, previous: str, current: str) -> None:
        """Called after a site's lifecycle status changes."""

    @hookspec
    def domain_status_changed(self, domain: str, status: str, error: str | None) -> None:
        """Called after a domain is activated, fails, or is removed."""

    @hookspec
    def database_status_changed(self, database: str, site: str | None, status: str) -> None:
        """Called after a database is created, linked, or deleted."""

    @hookspec
    def alert_raised(
        self,
        level: str,
        source: str,
        message: str,
        detail: dict[str, Any],
    ) -> None:
        """Called when an operation fails in a way an operator should see."""
