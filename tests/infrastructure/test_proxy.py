"""Tests for the nginx reverse-proxy adapter."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.conftest import FIXED_NOW, FakeRunner
from twoine.domain.entities import Domain, new_domain
from twoine.domain.errors import ExternalCommandError
from twoine.infrastructure.proxy import NginxProxy


def _domain(tmp_path: Path, *, ssl: bool) -> Domain:
    return new_domain(
        "app.example.com",
        certs_dir=str(tmp_path / "certs"),
        nginx_available=str(tmp_path / "available"),
        nginx_enabled=str(tmp_path / "enabled"),
        now=FIXED_NOW.isoformat(),
        target_port=10000,
        enable_ssl=ssl,
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def proxy(runner: FakeRunner, tmp_path: Path) -> NginxProxy:
    return NginxProxy(runner, staging_dir=tmp_path / "staging", clock=lambda: FIXED_NOW)


class TestRenderConfig:
    def test_plain_http(self, proxy: NginxProxy, tmp_path: Path) -> None:
        text = proxy.render_config(_domain(tmp_path, ssl=False), site_name="demo1")
        assert "listen 80;" in text
        assert "listen 443" not in text
        assert "proxy_pass http://127.0.0.1:10000;" in text
        assert "Site: demo1" in text

    def test_tls_redirects_and_terminates(self, proxy: NginxProxy, tmp_path: Path) -> None:
        domain = _domain(tmp_path, ssl=True)
        text = proxy.render_config(domain)
        assert "return 301 https://$server_name$request_uri;" in text
        assert "listen 443 ssl http2;" in text
        assert f"ssl_certificate {domain.ssl.cert_path};" in text
        assert f"ssl_certificate_key {domain.ssl.key_path};" in text
        assert "Strict-Transport-Security" in text


class TestWriteConfig:
    def test_install_then_test(
        self, proxy: NginxProxy, runner: FakeRunner, tmp_path: Path
    ) -> None:
        domain = _domain(tmp_path, ssl=False)
        proxy.write_config(domain, "server {}\n")
        argvs = runner.argvs()
        assert argvs[0][0] == "mv"
        assert argvs[-1] == ("nginx", "-t")
        assert not runner.find("cp")

    def test_existing_file_backed_up(
        self, proxy: NginxProxy, runner: FakeRunner, tmp_path: Path
    ) -> None:
        domain = _domain(tmp_path, ssl=False)
        path = Path(domain.proxy.config_path)
        path.parent.mkdir(parents=True)
        path.write_text("old")
        proxy.write_config(domain, "server {}\n")
        (cp,) = runner.find("cp")
        assert cp.argv == ("cp", "-f", "--", str(path), f"{path}.backup.20260302T093000")

    def test_failed_validation_is_reported(self, proxy: NginxProxy, runner: FakeRunner) -> None:
        runner.fail("nginx", "-t", stderr="unexpected '}'")
        with pytest.raises(ExternalCommandError, match="Nginx configuration test failed"):
            proxy.test()


class TestActivation:
    def test_enable_symlinks(self, proxy: NginxProxy, runner: FakeRunner, tmp_path: Path) -> None:
        domain = _domain(tmp_path, ssl=False)
        proxy.enable(domain)
        assert runner.argvs() == [
            ("ln", "-sfn", "--", domain.proxy.config_path, domain.proxy.enabled_path)
        ]

    def test_disable_removes_link(
        self, proxy: NginxProxy, runner: FakeRunner, tmp_path: Path
    ) -> None:
        domain = _domain(tmp_path, ssl=False)
        proxy.disable(domain)
        assert runner.argvs() == [("rm", "-f", "--", domain.proxy.enabled_path)]

    def test_reload_tests_first(self, proxy: NginxProxy, runner: FakeRunner) -> None:
        proxy.reload()
        assert runner.argvs() == [("nginx", "-t"), ("systemctl", "reload", "nginx")]

    def test_reload_skipped_when_test_fails(self, proxy: NginxProxy, runner: FakeRunner) -> None:
        runner.fail("nginx", "-t")
        with pytest.raises(ExternalCommandError):
            proxy.reload()
        assert not runner.find("systemctl")
