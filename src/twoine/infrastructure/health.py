"""HTTP health probe for services listening on loopback."""

from __future__ import annotations

import logging
import time

import httpx
from pydantic import BaseModel

from twoine.domain.lifecycle import HealthStatus

logger = logging.getLogger(__name__)


class ProbeResult(BaseModel):
    model_config = {"frozen": True}

    status: HealthStatus
    url: str
    status_code: int | None = None
    error: str | None = None
    elapsed_ms: float | None = None

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY


class HealthProber:
    """GET ``http://<address>:<port><endpoint>``; 2xx and 3xx count as healthy.

    Parameters:
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        address: str = "127.0.0.1",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._address = address
        self._transport = transport

    def probe(self, port: int, endpoint: str = "/health", *, timeout: float = 5) -> ProbeResult:
        path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
        url = f"http://{self._address}:{port}{path}"
        started = time.perf_counter()
        try:
            with httpx.Client(
                timeout=timeout, transport=self._transport, follow_redirects=False
            ) as client:
                response = client.get(url)
        except httpx.HTTPError as exc:
            logger.debug("Health probe %s failed: %s", url, exc)
            return ProbeResult(status=HealthStatus.UNHEALTHY, url=url, error=str(exc))

        healthy = 200 <= response.status_code < 400
        return ProbeResult(
            status=HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
            url=url,
            status_code=response.status_code,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
