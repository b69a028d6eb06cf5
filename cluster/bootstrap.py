"""
Cluster - Bootstrap.

============================================================
RESPONSIBILITY
============================================================
Creates a brand-new cluster layout with initdb.

- Fixed admin role, local trust authentication, UTF8
- Runs to completion before anything downstream proceeds
- Refuses a non-empty target directory
- Never retries: a failed initdb may have half-written the
  directory, which must go back through the auditor first

============================================================
"""

import logging
import os
from pathlib import Path
from typing import List

from core.commands import CommandRunner, run_command
from core.constants import (
    BOOTSTRAP_AUTH_METHOD,
    BOOTSTRAP_ENCODING,
    DEFAULT_ADMIN_ROLE,
)
from core.exceptions import BootstrapFailure, MissingBinaryError

logger = logging.getLogger(__name__)


class BootstrapOrchestrator:
    """Runs the one-shot cluster-create tool."""

    def __init__(
        self,
        initdb_path: Path,
        admin_role: str = DEFAULT_ADMIN_ROLE,
        auth_method: str = BOOTSTRAP_AUTH_METHOD,
        encoding: str = BOOTSTRAP_ENCODING,
        runner: CommandRunner = run_command,
    ):
        self._initdb = Path(initdb_path)
        self._admin_role = admin_role
        self._auth_method = auth_method
        self._encoding = encoding
        self._runner = runner

    def build_args(self, data_dir: Path) -> List[str]:
        return [
            "-D", str(data_dir),
            "-U", self._admin_role,
            "--auth", self._auth_method,
            "-E", self._encoding,
        ]

    async def bootstrap(self, data_dir: Path, on_log=None) -> None:
        """
        Initialize a cluster in an empty directory.

        Raises:
            MissingBinaryError: initdb is not installed
            BootstrapFailure: target not empty, or initdb exited non-zero
        """
        data_dir = Path(data_dir)

        def emit(message: str) -> None:
            if on_log:
                on_log(message)

        if data_dir.exists() and os.listdir(data_dir):
            raise BootstrapFailure(
                message=f"Refusing to bootstrap non-empty directory {data_dir}",
                context={"path": str(data_dir)},
            )

        emit("[postgres] Initializing database cluster...")
        logger.info(f"Running initdb for {data_dir}")

        result = await self._runner(
            self._initdb,
            self.build_args(data_dir),
            on_line=lambda line: emit(f"[initdb] {line}"),
        )

        if not result.spawned:
            raise MissingBinaryError("initdb", self._initdb, context={"spawn_error": result.error})

        if result.returncode != 0:
            diagnostic = result.diagnostic
            raise BootstrapFailure(
                message=f"initdb failed with code {result.returncode}: {diagnostic}",
                returncode=result.returncode,
                diagnostic=diagnostic,
            )

        emit("[postgres] Initialization complete.")


__all__ = ["BootstrapOrchestrator"]
