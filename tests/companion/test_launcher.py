"""
Tests for the pgAdmin companion launcher.

============================================================
PURPOSE
============================================================
The supervisor is mocked; setup.py runs through a recording
runner. Nothing is actually spawned.

============================================================
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from companion import CompanionToolLauncher, companion_environment, render_local_config, server_profile
from core.commands import CommandResult
from supervisor import SpawnOptions


class SetupRunner:
    def __init__(self, returncode=0, stderr=""):
        self.returncode = returncode
        self.stderr = stderr
        self.calls = []

    async def __call__(self, program, args=(), env=None, cwd=None, on_line=None):
        self.calls.append({"program": str(program), "args": list(args), "env": env})
        if on_line:
            on_line("Added 1 Server Group(s) and 1 Server(s).")
        return CommandResult(program=str(program), returncode=self.returncode, stderr=self.stderr)


@pytest.fixture
def install_root(tmp_path):
    python_home = tmp_path / "python"
    python_bin = python_home / "bin" / "python3"
    python_bin.parent.mkdir(parents=True)
    python_bin.write_text("")
    package = python_home / "lib" / "site-packages" / "pgadmin4"
    package.mkdir(parents=True)
    (package / "pgAdmin4.py").write_text("")
    (package / "setup.py").write_text("")
    return tmp_path


@pytest.fixture
def supervisor():
    sup = MagicMock()
    sup.is_running.return_value = False
    sup.start = AsyncMock(return_value=MagicMock(pid=4242))
    return sup


def make_launcher(supervisor, root, runner=None):
    return CompanionToolLauncher(
        supervisor=supervisor,
        python_bin=root / "python" / "bin" / "python3",
        python_home=root / "python",
        data_dir=root / "data" / "pgadmin",
        is_windows=False,
        runner=runner or SetupRunner(),
        base_env={"PATH": "/usr/bin"},
    )


class TestLaunch:
    """Tests for CompanionToolLauncher.launch."""

    @pytest.mark.asyncio
    async def test_not_started_before_database_is_ready(self, supervisor, install_root):
        lines = []
        started = await make_launcher(supervisor, install_root).launch(False, on_log=lines.append)

        assert not started
        supervisor.start.assert_not_called()
        assert lines == ["[pgadmin] Database is not ready; companion not started."]

    @pytest.mark.asyncio
    async def test_full_launch(self, supervisor, install_root):
        runner = SetupRunner()
        launcher = make_launcher(supervisor, install_root, runner)
        lines = []

        started = await launcher.launch(True, db_port=5433, port=5051, on_log=lines.append)

        assert started
        package = install_root / "python" / "lib" / "site-packages" / "pgadmin4"
        service_id, program, args, options, _ = supervisor.start.call_args.args
        assert service_id == "pgadmin"
        assert program == str(install_root / "python" / "bin" / "python3")
        assert args == ["-u", str(package / "pgAdmin4.py")]
        assert isinstance(options, SpawnOptions)
        assert options.cwd == package
        assert options.env["PGADMIN_PORT"] == "5051"
        assert options.env["PATH"] == "/usr/bin"

        data_dir = install_root / "data" / "pgadmin"
        assert (data_dir / "sessions").is_dir()
        assert (data_dir / "storage").is_dir()
        assert "DEFAULT_SERVER_PORT" in (package / "config_local.py").read_text()

        profile = json.loads(launcher.servers_file.read_text())
        assert profile["Servers"]["1"]["Port"] == 5433
        assert runner.calls[0]["args"] == [
            str(package / "setup.py"), "load-servers", str(launcher.servers_file), "--replace",
        ]
        assert "[pgadmin-setup] Added 1 Server Group(s) and 1 Server(s)." in lines
        assert "[pgadmin] Server registered successfully." in lines

    @pytest.mark.asyncio
    async def test_registration_repeats_on_every_launch(self, supervisor, install_root):
        runner = SetupRunner()
        launcher = make_launcher(supervisor, install_root, runner)

        await launcher.launch(True, db_port=5433, on_log=lambda _: None)
        await launcher.launch(True, db_port=5434, on_log=lambda _: None)

        assert len(runner.calls) == 2
        assert json.loads(launcher.servers_file.read_text())["Servers"]["1"]["Port"] == 5434

    @pytest.mark.asyncio
    async def test_already_running(self, supervisor, install_root):
        supervisor.is_running.return_value = True
        assert await make_launcher(supervisor, install_root).launch(True, on_log=lambda _: None)
        supervisor.start.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_python(self, supervisor, tmp_path):
        lines = []
        assert not await make_launcher(supervisor, tmp_path).launch(True, on_log=lines.append)
        assert lines[0].startswith("[pgadmin] Python not found at")

    @pytest.mark.asyncio
    async def test_missing_entrypoint(self, supervisor, install_root):
        (install_root / "python" / "lib" / "site-packages" / "pgadmin4" / "pgAdmin4.py").unlink()
        lines = []

        assert not await make_launcher(supervisor, install_root).launch(True, on_log=lines.append)
        assert lines[-1].startswith("[pgadmin] Error: pgAdmin4.py not found under")
        supervisor.start.assert_not_called()

    @pytest.mark.asyncio
    async def test_registration_failure_still_launches(self, supervisor, install_root):
        runner = SetupRunner(returncode=1, stderr="sqlite3.OperationalError: database is locked")
        launcher = make_launcher(supervisor, install_root, runner)
        lines = []

        assert await launcher.launch(True, on_log=lines.append)
        assert any(line.startswith("[pgadmin] Failed to register server") for line in lines)
        supervisor.start.assert_called_once()

    @pytest.mark.asyncio
    async def test_spawn_failure_reports_false(self, supervisor, install_root):
        supervisor.start = AsyncMock(return_value=None)
        assert not await make_launcher(supervisor, install_root).launch(True, on_log=lambda _: None)


class TestHelpers:
    """Tests for the environment and file helpers."""

    def test_environment_confines_state(self, tmp_path):
        env = companion_environment(tmp_path, 5050, base={})

        assert env["PGADMIN_CONFIG_SERVER_MODE"] == "False"
        assert env["PGADMIN_CONFIG_SQLITE_PATH"] == str(tmp_path / "pgadmin.db")
        assert env["PGADMIN_CONFIG_STORAGE_DIR"] == str(tmp_path / "storage")
        assert env["PGADMIN_PORT"] == "5050"

    def test_local_config_is_valid_python(self):
        source = render_local_config(5055)
        compile(source, "config_local.py", "exec")
        assert "5055" in source

    def test_server_profile(self):
        server = server_profile(5433, "gis")["Servers"]["1"]
        assert server["Name"] == "Portable Postgres"
        assert server["Username"] == "gis"
        assert server["Host"] == "127.0.0.1"
