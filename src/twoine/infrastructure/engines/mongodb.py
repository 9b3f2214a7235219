"""MongoDB driver over ``mongosh``.

mongosh runs with ``--nodb`` and receives a script on stdin that opens
its own authenticated connection, keeping credentials off the argv.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from urllib.parse import quote

from twoine.infrastructure.engines.base import ConnectionTarget, DatabaseEngine, EngineStats
from twoine.infrastructure.runner import CommandResult


class MongoDBEngine(DatabaseEngine):
    engine_type = "mongodb"
    url_scheme = "mongodb"

    def _uri(self, username: str, password: str, host: str, port: int, auth_db: str) -> str:
        return (
            f"mongodb://{quote(username, safe='')}:{quote(password, safe='')}"
            f"@{host}:{port}/{auth_db}?authSource={auth_db}"
        )

    def _admin_uri(self) -> str:
        return self._uri(
            self._config.admin_user,
            self._admin_password(),
            self.host,
            self.port,
            self._config.admin_db or "admin",
        )

    def _mongosh(self, uri: str, body: str, *, check: bool = True) -> CommandResult:
        script = f"const conn = new Mongo({json.dumps(uri)});\n{body}\n"
        return self._exec(["mongosh", "--nodb", "--quiet"], script, check=check)

    def create(
        self, database_name: str, username: str, password: str, privileges: Sequence[str]
    ) -> None:
        roles = [{"role": role, "db": database_name} for role in privileges]
        self._mongosh(
            self._admin_uri(),
            f"const target = conn.getDB({json.dumps(database_name)});\n"
            "target.createUser({"
            f"user: {json.dumps(username)}, pwd: {json.dumps(password)}, "
            f"roles: {json.dumps(roles)}"
            "});\n"
            'target.createCollection("_twoine_init");',
        )

    def drop(self, database_name: str, username: str) -> None:
        self._mongosh(
            self._admin_uri(),
            f"const target = conn.getDB({json.dumps(database_name)});\n"
            f"target.dropUser({json.dumps(username)});\n"
            "target.dropDatabase();",
        )

    def reset_password(self, database_name: str, username: str, password: str) -> None:
        self._mongosh(
            self._admin_uri(),
            f"conn.getDB({json.dumps(database_name)})"
            f".changeUserPassword({json.dumps(username)}, {json.dumps(password)});",
        )

    def _stats(self, database_name: str) -> EngineStats:
        out = self._mongosh(
            self._admin_uri(),
            f"print(JSON.stringify(conn.getDB({json.dumps(database_name)}).stats()));",
        ).stdout
        lines = [line for line in out.strip().splitlines() if line.startswith("{")]
        if not lines:
            raise ValueError("no JSON in mongosh output")
        raw = json.loads(lines[-1])
        return EngineStats(
            size_bytes=int(raw.get("dataSize", 0)),
            storage_size=int(raw.get("storageSize", 0)),
            collections=int(raw.get("collections", 0)),
            indexes=int(raw.get("indexes", 0)),
        )

    def _ping(self, target: ConnectionTarget) -> bool:
        uri = self._uri(
            target.username,
            target.password or "",
            target.host,
            target.port,
            target.database_name,
        )
        result = self._mongosh(
            uri,
            f"conn.getDB({json.dumps(target.database_name)}).runCommand({{ping: 1}});",
            check=False,
        )
        return result.ok

    def _url_suffix(self, target: ConnectionTarget) -> str:
        return f"?authSource={target.database_name}"

    def _engine_env(self, target: ConnectionTarget, url: str) -> dict[str, str]:
        return {"MONGODB_URI": url, "MONGO_URL": url}
