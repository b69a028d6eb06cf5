"""
Companion - Launcher.

============================================================
RESPONSIBILITY
============================================================
Starts the pgAdmin companion against the local database.

1. Locate runtime and entrypoint (missing: feature disabled)
2. Point pgAdmin at portable state via config_local.py + env
3. Re-register the local server profile (servers.json, --replace)
4. Start `python -u pgAdmin4.py` through the ServiceSupervisor

Registration failures are logged and never block the launch.

============================================================
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from core.commands import CommandRunner, merged_env, run_command
from core.constants import (
    COMPANION_APP_NAME,
    COMPANION_SEARCH_MAX_DEPTH,
    COMPANION_SERVER_PROFILE,
    COMPANION_SERVERS_FILE,
    DEFAULT_ADMIN_ROLE,
    DEFAULT_COMPANION_PORT,
    DEFAULT_DATABASE,
    DEFAULT_POSTGRES_PORT,
    LOCALHOST,
    SERVICE_COMPANION,
)
from supervisor import LogSink, ServiceSupervisor, SpawnOptions, default_log_sink

from .locator import CompanionInstall, locate_companion

logger = logging.getLogger(__name__)


LOCAL_CONFIG_TEMPLATE = """\
import os
APP_NAME = {app_name!r}
SERVER_MODE = os.environ.get('PGADMIN_CONFIG_SERVER_MODE', 'False') == 'True'
DATA_DIR = os.environ.get('PGADMIN_CONFIG_DATA_DIR')
SQLITE_PATH = os.environ.get('PGADMIN_CONFIG_SQLITE_PATH')
SESSION_DB_PATH = os.environ.get('PGADMIN_CONFIG_SESSION_DB_PATH')
STORAGE_DIR = os.environ.get('PGADMIN_CONFIG_STORAGE_DIR')
MASTER_PASSWORD_REQUIRED = False
DEFAULT_SERVER = {host!r}
DEFAULT_SERVER_PORT = int(os.environ.get('PGADMIN_PORT', {port}))
"""


def companion_environment(
    data_dir: Path,
    port: int,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Environment that keeps all pgAdmin state under data_dir."""
    data_dir = Path(data_dir)
    return merged_env(
        base if base is not None else os.environ,
        {
            "PGADMIN_CONFIG_SERVER_MODE": "False",
            "PGADMIN_CONFIG_DATA_DIR": str(data_dir),
            "PGADMIN_CONFIG_SQLITE_PATH": str(data_dir / "pgadmin.db"),
            "PGADMIN_CONFIG_SESSION_DB_PATH": str(data_dir / "sessions"),
            "PGADMIN_CONFIG_STORAGE_DIR": str(data_dir / "storage"),
            "PGADMIN_PORT": str(port),
        },
    )


def render_local_config(port: int, host: str = LOCALHOST) -> str:
    return LOCAL_CONFIG_TEMPLATE.format(app_name=COMPANION_APP_NAME, host=host, port=int(port))


def server_profile(db_port: int, username: str = DEFAULT_ADMIN_ROLE) -> Dict[str, Any]:
    """servers.json payload for the one local server."""
    return {
        "Servers": {
            "1": {
                "Name": COMPANION_SERVER_PROFILE,
                "Group": "Servers",
                "Port": int(db_port),
                "Username": username,
                "Host": LOCALHOST,
                "SSLMode": "prefer",
                "MaintenanceDB": DEFAULT_DATABASE,
            }
        }
    }


class CompanionToolLauncher:
    """Locates, configures and supervises the pgAdmin companion."""

    def __init__(
        self,
        supervisor: ServiceSupervisor,
        python_bin: Path,
        python_home: Path,
        data_dir: Path,
        is_windows: bool = os.name == "nt",
        runner: CommandRunner = run_command,
        search_depth: int = COMPANION_SEARCH_MAX_DEPTH,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        self.supervisor = supervisor
        self.python_bin = Path(python_bin)
        self.python_home = Path(python_home)
        self.data_dir = Path(data_dir)
        self.is_windows = is_windows
        self._runner = runner
        self._search_depth = search_depth
        self._base_env = base_env

    @property
    def servers_file(self) -> Path:
        return self.data_dir / COMPANION_SERVERS_FILE

    def is_running(self) -> bool:
        return self.supervisor.is_running(SERVICE_COMPANION)

    def locate(self) -> Optional[CompanionInstall]:
        return locate_companion(
            self.python_bin,
            self.python_home,
            self.is_windows,
            self._search_depth,
        )

    # --------------------------------------------------------
    # Launch
    # --------------------------------------------------------

    async def launch(
        self,
        primary_ready: bool,
        db_port: int = DEFAULT_POSTGRES_PORT,
        port: int = DEFAULT_COMPANION_PORT,
        username: str = DEFAULT_ADMIN_ROLE,
        on_log: Optional[LogSink] = None,
    ) -> bool:
        """
        Start the companion.

        Args:
            primary_ready: The database accepted a connection
            db_port: Port of the database to register
            port: Port pgAdmin listens on
            username: Login the server profile uses
            on_log: Sink for "[pgadmin] ..." lines

        Returns:
            True if the companion is (now) running
        """
        sink = on_log or default_log_sink

        if not primary_ready:
            sink("[pgadmin] Database is not ready; companion not started.")
            return False

        if self.is_running():
            sink("[pgadmin] Already running.")
            return True

        if not self.python_bin.exists():
            sink(f"[pgadmin] Python not found at {self.python_bin}.")
            return False

        install = self.locate()
        if install is None:
            sink(f"[pgadmin] Error: pgAdmin4.py not found under {self.python_home}")
            return False
        if install.found_by_search:
            sink(f"[pgadmin] Found pgAdmin4.py at {install.entrypoint}")

        env = companion_environment(self.data_dir, port, self._base_env)
        self._prepare_state_dirs(sink)
        self._write_local_config(install, port, sink)
        await self.register_server(install, env, db_port, username, sink)

        managed = await self.supervisor.start(
            SERVICE_COMPANION,
            str(install.python_bin),
            ["-u", str(install.entrypoint)],
            SpawnOptions(env=env, cwd=install.package_dir),
            sink,
        )
        return managed is not None

    def stop(self) -> None:
        self.supervisor.stop(SERVICE_COMPANION)

    # --------------------------------------------------------
    # Steps
    # --------------------------------------------------------

    def _prepare_state_dirs(self, sink: LogSink) -> None:
        for path in (self.data_dir, self.data_dir / "sessions", self.data_dir / "storage"):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                sink(f"[pgadmin] Warning: could not create {path}: {e}")

    def _write_local_config(self, install: CompanionInstall, port: int, sink: LogSink) -> bool:
        try:
            install.local_config_path.write_text(render_local_config(port), encoding="utf-8")
        except OSError as e:
            sink(f"[pgadmin] Error writing config_local.py: {e}")
            return False
        return True

    async def register_server(
        self,
        install: CompanionInstall,
        env: Mapping[str, str],
        db_port: int,
        username: str = DEFAULT_ADMIN_ROLE,
        on_log: Optional[LogSink] = None,
    ) -> bool:
        """
        Replace pgAdmin's server list with the local profile.

        Runs on every launch so a wiped or corrupted pgAdmin state is
        repaired. Never raises.
        """
        sink = on_log or default_log_sink
        sink("[pgadmin] Registering local server...")

        try:
            with open(self.servers_file, "w", encoding="utf-8") as f:
                json.dump(server_profile(db_port, username), f, indent=2)
        except OSError as e:
            sink(f"[pgadmin] Failed to write {self.servers_file.name}: {e}")
            return False

        result = await self._runner(
            install.python_bin,
            [str(install.setup_script), "load-servers", str(self.servers_file), "--replace"],
            env=env,
            on_line=lambda line: sink(f"[pgadmin-setup] {line}"),
        )

        if not result.ok:
            sink(f"[pgadmin] Failed to register server ({result.diagnostic}).")
            return False

        sink("[pgadmin] Server registered successfully.")
        logger.info(f"Registered local server on port {db_port} with pgAdmin")
        return True


__all__ = [
    "CompanionToolLauncher",
    "companion_environment",
    "render_local_config",
    "server_profile",
]
