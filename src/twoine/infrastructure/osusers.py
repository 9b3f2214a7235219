"""Dedicated OS accounts and directory trees for sites."""

from __future__ import annotations

import logging
import re

from twoine.domain.entities import OsUser, Site
from twoine.infrastructure.filesystem import best_effort, make_directory
from twoine.infrastructure.runner import ProcessRunner

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r"(uid|gid)=(\d+)")


class OsUserManager:
    """``useradd``/``userdel`` plus per-site tree provisioning."""

    def __init__(self, runner: ProcessRunner, *, control_user: str = "twoine") -> None:
        self._runner = runner
        self._control_user = control_user

    def lookup(self, username: str) -> tuple[int, int] | None:
        """``(uid, gid)`` of *username*, or None when the account does not exist."""
        result = self._runner.run(["id", username], check=False)
        if not result.ok:
            return None
        ids = dict(_ID_PATTERN.findall(result.stdout))
        if "uid" not in ids or "gid" not in ids:
            return None
        return int(ids["uid"]), int(ids["gid"])

    def ensure(self, site: Site) -> OsUser:
        """Create the site's system account unless it already exists."""
        user = site.os_user
        existing = self.lookup(user.username)
        if existing is None:
            self._runner.run(
                [
                    "useradd",
                    "--system",
                    "--create-home",
                    "--home-dir",
                    user.home,
                    "--shell",
                    "/usr/sbin/nologin",
                    "--comment",
                    f"Twoine Site: {site.name}",
                    user.username,
                ],
                privileged=True,
            )
            existing = self.lookup(user.username)
        else:
            logger.debug("OS user %s already exists", user.username)

        uid, gid = existing if existing is not None else (None, None)
        return user.model_copy(update={"uid": uid, "gid": gid, "created": True})

    def delete(self, username: str) -> None:
        """Kill the account's processes, then remove the account."""
        self._runner.run(["pkill", "-u", username], privileged=True, check=False)
        self._runner.run(["userdel", username], privileged=True)

    def provision_tree(self, site: Site) -> list[str]:
        """Create root/services/logs/data/tmp owned by the site user.

        Every directory is mode 750 except ``tmp`` (700). The control user
        gets a read-only ACL (plus a default ACL) on the tree. ACL failures
        are returned as warnings; the filesystem may not support them.
        """
        username = site.os_user.username
        for path in site.paths.all():
            mode = "700" if path == site.paths.tmp else "750"
            make_directory(self._runner, path, owner=username, mode=mode)

        warnings: list[str] = []
        grant = f"u:{self._control_user}:rx"
        for argv in (
            ["setfacl", "-R", "-m", grant, site.paths.root],
            ["setfacl", "-R", "-d", "-m", grant, site.paths.root],
        ):
            error = best_effort("ACL grant", self._runner.run, argv, privileged=True)
            if error is not None:
                warnings.append(f"ACL grant on {site.paths.root} failed: {error}")
        return warnings
