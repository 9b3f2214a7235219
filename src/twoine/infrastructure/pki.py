"""Self-signed certificate issuance through the ``openssl`` CLI."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from twoine.domain.errors import ExternalCommandError
from twoine.infrastructure.filesystem import best_effort, make_directory, remove_tree
from twoine.infrastructure.runner import ProcessRunner

logger = logging.getLogger(__name__)


class SelfSignedIssuer:
    """Issue and remove per-domain certificates under ``certs_dir/<hostname>/``."""

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        certs_dir: Path,
        days: int = 365,
        key_bits: int = 2048,
        organization: str = "Twoine",
        country: str = "FR",
        timeout: float = 60,
    ) -> None:
        self._runner = runner
        self._certs_dir = certs_dir
        self._days = days
        self._key_bits = key_bits
        self._organization = organization
        self._country = country
        self._timeout = timeout

    @property
    def validity_days(self) -> int:
        return self._days

    def cert_dir(self, hostname: str) -> str:
        return str(PurePosixPath(self._certs_dir) / hostname)

    def issue(self, hostname: str, cert_path: str, key_path: str) -> None:
        """Generate a key + certificate whose CN and SAN are *hostname*.

        The directory stays root-only until both files carry their final
        modes. On failure the half-populated directory is removed.
        """
        cert_dir = self.cert_dir(hostname)
        make_directory(self._runner, cert_dir, owner="root", mode="700")
        argv = [
            "openssl",
            "req",
            "-x509",
            "-nodes",
            "-days",
            str(self._days),
            "-newkey",
            f"rsa:{self._key_bits}",
            "-keyout",
            key_path,
            "-out",
            cert_path,
            "-subj",
            f"/CN={hostname}/O={self._organization}/C={self._country}",
            "-addext",
            f"subjectAltName=DNS:{hostname}",
        ]
        try:
            self._runner.run(argv, timeout=self._timeout, privileged=True)
            self._runner.run(["chmod", "600", key_path], privileged=True)
            self._runner.run(["chmod", "644", cert_path], privileged=True)
            self._runner.run(["chmod", "755", cert_dir], privileged=True)
        except ExternalCommandError as exc:
            best_effort("certificate cleanup", self.remove, hostname)
            msg = f"Failed to generate certificate: {exc}"
            raise ExternalCommandError(
                msg, argv=exc.argv, returncode=exc.returncode, stderr=exc.stderr
            ) from exc
        logger.debug("Certificate issued for %s", hostname)

    def remove(self, hostname: str) -> None:
        remove_tree(self._runner, self.cert_dir(hostname), root=self._certs_dir)
