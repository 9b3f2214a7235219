"""SFTP account provisioner: an opaque collaborator behind shell scripts.

Each script prints a JSON object on stdout; the first object found is
the result. Passwords are written to the script's stdin, never argv.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from twoine.domain.errors import ExternalCommandError
from twoine.domain.naming import generate_sftp_password, os_username
from twoine.domain.validation import validate_site_name
from twoine.infrastructure.runner import ProcessRunner

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[^{}]*\}")


class SftpResult(BaseModel):
    """Structured script result. Unknown keys from the script are kept."""

    model_config = ConfigDict(frozen=True, extra="allow")

    success: bool = True
    username: str | None = None
    home_dir: str | None = None
    password: str | None = None


class SftpProvisioner:
    def __init__(
        self,
        runner: ProcessRunner,
        *,
        scripts_dir: Path,
        sites_dir: Path,
        timeout: float = 30,
    ) -> None:
        self._runner = runner
        self._scripts_dir = scripts_dir
        self._sites_dir = sites_dir
        self._timeout = timeout

    def create_account(self, site_name: str, password: str | None = None) -> SftpResult:
        secret = password or generate_sftp_password()
        result = self._invoke("sftp-user-create.sh", site_name, stdin=f"{secret}\n")
        return result.model_copy(update={"password": secret})

    def delete_account(self, site_name: str, *, delete_files: bool = False) -> SftpResult:
        extra = ["--delete-files"] if delete_files else []
        return self._invoke("sftp-user-delete.sh", site_name, *extra)

    def reset_password(self, site_name: str, password: str | None = None) -> SftpResult:
        secret = password or generate_sftp_password()
        result = self._invoke("sftp-password-reset.sh", site_name, stdin=f"{secret}\n")
        return result.model_copy(update={"password": secret})

    def disable_account(self, site_name: str, *, enable: bool = False) -> SftpResult:
        return self._invoke("sftp-user-disable.sh", site_name, "enable" if enable else "disable")

    def _invoke(
        self, script: str, site_name: str, *args: str, stdin: str | None = None
    ) -> SftpResult:
        validate_site_name(site_name)
        argv = [str(self._scripts_dir / script), site_name, *args]
        try:
            out = self._runner.run(argv, timeout=self._timeout, input=stdin, privileged=True)
        except ExternalCommandError as exc:
            msg = f"SFTP {script} failed for {site_name}: {exc}"
            raise ExternalCommandError(msg, argv=exc.argv, returncode=exc.returncode) from exc
        return self._parse(out.stdout, site_name)

    def _parse(self, stdout: str, site_name: str) -> SftpResult:
        fallback: dict[str, Any] = {
            "success": True,
            "username": os_username(site_name),
            "home_dir": str(self._sites_dir / site_name),
        }
        match = _JSON_OBJECT.search(stdout)
        if match is None:
            return SftpResult(**fallback)
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.debug("Unparseable SFTP script output: %s", stdout)
            return SftpResult(**fallback)
        if "homeDir" in payload:
            payload["home_dir"] = payload.pop("homeDir")
        payload.pop("password", None)
        return SftpResult(**{**fallback, **payload})
