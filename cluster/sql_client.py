"""
Cluster - SQL Client.

============================================================
RESPONSIBILITY
============================================================
Thin wrapper over the bundled psql and createdb executables.

- Every call is one short-lived client process
- Output is unaligned, tuples-only, '|' separated
- ON_ERROR_STOP makes SQL errors visible as a non-zero exit
- Results come back as CommandResult; nothing raises

============================================================
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from core.commands import CommandResult, CommandRunner, merged_env, run_command
from core.constants import DEFAULT_ADMIN_ROLE, DEFAULT_DATABASE, LOCALHOST, TEMPLATE_DATABASE

logger = logging.getLogger(__name__)


def quote_ident(name: str) -> str:
    """Quote an SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote an SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


class SqlClient:
    """Runs SQL against the local server through psql."""

    def __init__(
        self,
        psql_path: Path,
        createdb_path: Path,
        port: int,
        user: str = DEFAULT_ADMIN_ROLE,
        host: str = LOCALHOST,
        password: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        runner: CommandRunner = run_command,
    ):
        self._psql = Path(psql_path)
        self._createdb = Path(createdb_path)
        self.port = int(port)
        self.user = user
        self.host = host
        self._runner = runner

        extra = {"PGPASSWORD": password} if password else {}
        self._env = merged_env(env, extra) if (env is not None or extra) else None

    def _connection_args(self) -> List[str]:
        return ["-h", self.host, "-p", str(self.port), "-U", self.user, "-w"]

    async def run(self, sql: str, database: str = DEFAULT_DATABASE) -> CommandResult:
        """Run one SQL command and capture its output."""
        args = self._connection_args() + [
            "-d", database,
            "-X", "-A", "-t",
            "-v", "ON_ERROR_STOP=1",
            "-c", sql,
        ]
        result = await self._runner(self._psql, args, env=self._env)
        if not result.ok:
            logger.debug(f"psql failed on {database}: {result.diagnostic}")
        return result

    async def ping(self, database: str = DEFAULT_DATABASE) -> CommandResult:
        """Trivial query proving the database accepts sessions."""
        return await self.run("SELECT 1;", database)

    async def create_database(self, name: str, template: str = TEMPLATE_DATABASE) -> CommandResult:
        """
        Create a database with createdb.

        The template doubles as maintenance database because the
        default one may be the database that is missing.
        """
        args = self._connection_args() + [
            f"--maintenance-db={template}",
            "-T", template,
            "-e",
            name,
        ]
        return await self._runner(self._createdb, args, env=self._env)


__all__ = ["SqlClient", "quote_ident", "quote_literal"]
