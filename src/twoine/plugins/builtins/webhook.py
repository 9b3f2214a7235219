"""Built-in webhook notifier.

Forwards every status-change event as a JSON POST to the configured
``notifications.webhook_url``. Delivery failures are logged at DEBUG and
never propagate: the notification sink must not fail an operation.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx
import pluggy

hookimpl = pluggy.HookimplMarker("twoine")

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """POST ``{"event": <hook>, "timestamp": ..., "data": {...}}`` to a URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    @hookimpl
    def service_status_changed(
        self,
        site: str,
        service: str,
        previous: str,
        current: str,
        error: str | None,
    ) -> None:
        self._post(
            "service_status_changed",
            {
                "site": site,
                "service": service,
                "previous": previous,
                "current": current,
                "error": error,
            },
        )

    @hookimpl
    def site_status_changed(self, site: str, previous: str, current: str) -> None:
        self._post("site_status_changed", {"site": site, "previous": previous, "current": current})

    @hookimpl
    def domain_status_changed(self, domain: str, status: str, error: str | None) -> None:
        self._post("domain_status_changed", {"domain": domain, "status": status, "error": error})

    @hookimpl
    def database_status_changed(self, database: str, site: str | None, status: str) -> None:
        self._post(
            "database_status_changed", {"database": database, "site": site, "status": status}
        )

    @hookimpl
    def alert_raised(
        self, level: str, source: str, message: str, detail: dict[str, Any]
    ) -> None:
        self._post(
            "alert_raised",
            {"level": level, "source": source, "message": message, "detail": detail},
        )

    def _post(self, event: str, data: dict[str, Any]) -> bool:
        body = {"event": event, "timestamp": datetime.now(UTC).isoformat(), "data": data}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self._url, json=body)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.debug("Webhook delivery of %s failed: %s", event, exc)
            return False
        return True
