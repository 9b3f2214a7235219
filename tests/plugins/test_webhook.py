"""Tests for the built-in webhook notifier."""

from __future__ import annotations

import json
from pathlib import Path

import httpx

from tests.conftest import FakeRunner, HttpStub, create_site, make_settings
from twoine.config.models import NotificationsConfig
from twoine.infrastructure.platform import Platform
from twoine.plugins.builtins.webhook import WebhookNotifier

URL = "https://hooks.example.com/twoine"


class TestWebhookNotifier:
    def test_posts_event_envelope(self) -> None:
        stub = HttpStub()
        notifier = WebhookNotifier(URL, transport=httpx.MockTransport(stub))
        notifier.domain_status_changed(domain="shop.example.com", status="active", error=None)
        (request,) = stub.requests
        assert request.method == "POST"
        assert str(request.url) == URL
        body = json.loads(request.content)
        assert body["event"] == "domain_status_changed"
        assert body["data"] == {"domain": "shop.example.com", "status": "active", "error": None}
        assert "timestamp" in body

    def test_delivery_failure_is_swallowed(self) -> None:
        stub = HttpStub()
        stub.status = 503
        notifier = WebhookNotifier(URL, transport=httpx.MockTransport(stub))
        assert notifier._post("alert_raised", {"message": "x"}) is False

    def test_connection_error_is_swallowed(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        notifier = WebhookNotifier(URL, transport=httpx.MockTransport(refuse))
        notifier.alert_raised(level="error", source="domain", message="boom", detail={})


class TestPlatformWiring:
    def test_configured_url_registers_notifier(
        self, tmp_path: Path, runner: FakeRunner
    ) -> None:
        stub = HttpStub()
        settings = make_settings(tmp_path, notifications=NotificationsConfig(webhook_url=URL))
        platform = Platform(settings, runner=runner, http_transport=httpx.MockTransport(stub))
        try:
            platform.init_event_bus(sync=True)
            create_site(platform)
        finally:
            platform.close()
        events = [json.loads(r.content)["event"] for r in stub.requests]
        assert "site_status_changed" in events
