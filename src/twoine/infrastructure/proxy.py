"""Reverse-proxy adapter over nginx.

Virtual-host files live in ``sites-available`` and are activated by a
symlink in ``sites-enabled``. Every write is followed by ``nginx -t``,
and every reload is preceded by it, so a broken file is never loaded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from twoine.domain.entities import Domain
from twoine.domain.errors import ExternalCommandError
from twoine.infrastructure.filesystem import install_file, remove_file
from twoine.infrastructure.runner import ProcessRunner
from twoine.infrastructure.templates import build_template_environment

logger = logging.getLogger(__name__)


class NginxProxy:
    """Render, install, activate and reload nginx virtual hosts."""

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        staging_dir: Path,
        timeout: float = 30,
        clock: Callable[[], datetime] | None = None,
        override_root: Path | None = None,
    ) -> None:
        self._runner = runner
        self._staging_dir = staging_dir
        self._timeout = timeout
        self._clock = clock or (lambda: datetime.now(UTC))
        self._templates = build_template_environment("nginx", override_root=override_root)

    def render_config(self, domain: Domain, *, site_name: str | None = None) -> str:
        """HTTP-only server block, or redirect + TLS block when SSL is enabled."""
        template_name = "ssl.conf.j2" if domain.ssl.enabled else "http.conf.j2"
        context: dict[str, object] = {
            "hostname": domain.hostname,
            "domain_type": str(domain.type),
            "site_name": site_name,
            "generated_at": self._clock().isoformat(),
            "target_address": domain.target_address,
            "target_port": domain.target_port,
            "path_prefix": domain.path_prefix,
        }
        if domain.ssl.enabled:
            context["cert_path"] = domain.ssl.cert_path
            context["key_path"] = domain.ssl.key_path
        return self._templates.get_template(template_name).render(**context)

    def write_config(self, domain: Domain, text: str) -> None:
        """Back up any existing file, install *text*, then validate the whole config."""
        path = domain.proxy.config_path
        if Path(path).exists():
            stamp = self._clock().strftime("%Y%m%dT%H%M%S")
            self._run(["cp", "-f", "--", path, f"{path}.backup.{stamp}"])
        install_file(self._runner, text, path, staging_dir=self._staging_dir, mode="644")
        self.test()

    def remove_config(self, domain: Domain) -> None:
        remove_file(self._runner, domain.proxy.config_path)

    def enable(self, domain: Domain) -> None:
        """Point ``sites-enabled/<host>.conf`` at the available file."""
        self._run(["ln", "-sfn", "--", domain.proxy.config_path, domain.proxy.enabled_path])

    def disable(self, domain: Domain) -> None:
        remove_file(self._runner, domain.proxy.enabled_path)

    def test(self) -> None:
        try:
            self._run(["nginx", "-t"])
        except ExternalCommandError as exc:
            msg = f"Nginx configuration test failed: {exc.stderr.strip() or exc}"
            raise ExternalCommandError(
                msg,
                argv=exc.argv,
                returncode=exc.returncode,
                stdout=exc.stdout,
                stderr=exc.stderr,
                timed_out=exc.timed_out,
            ) from exc

    def reload(self) -> None:
        """Validate, then ``systemctl reload nginx``."""
        self.test()
        self._run(["systemctl", "reload", "nginx"])
        logger.debug("nginx reloaded")

    def _run(self, argv: list[str]) -> None:
        self._runner.run(argv, timeout=self._timeout, privileged=True)
