"""
Tests for the core layer.

============================================================
PURPOSE
============================================================
- One-shot command runner never raises for tool failures
- Exception hierarchy carries severity and classification
- Install layout derives every path from one root

============================================================
"""

import sys
from pathlib import Path

import pytest

from core.commands import CommandResult, merged_env, run_command
from core.exceptions import (
    BootstrapFailure,
    ConfigurationError,
    DirectoryCorruptionError,
    ErrorClassification,
    ExtensionEnableFailure,
    MissingBinaryError,
    ReadinessTimeout,
    ServiceError,
    Severity,
    classify_exception,
    is_benign_exists_error,
    wrap_exception,
)
from core.layout import InstallLayout, platform_tag


# ============================================================
# COMMAND RUNNER
# ============================================================

class TestRunCommand:
    """Tests for run_command."""

    @pytest.mark.asyncio
    async def test_captures_stdout_and_exit_code(self):
        result = await run_command(sys.executable, ["-c", "print('a'); print('b')"])
        assert result.ok
        assert result.returncode == 0
        assert result.lines == ["a", "b"]

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_a_result_not_an_exception(self):
        result = await run_command(
            sys.executable,
            ["-c", "import sys; sys.stderr.write('boom\\n'); sys.exit(3)"],
        )
        assert not result.ok
        assert result.spawned
        assert result.returncode == 3
        assert result.diagnostic == "boom"

    @pytest.mark.asyncio
    async def test_missing_binary_sets_error(self, tmp_path):
        result = await run_command(tmp_path / "no-such-tool", ["--help"])
        assert not result.spawned
        assert not result.ok
        assert result.returncode is None
        assert "FileNotFoundError" in result.diagnostic

    @pytest.mark.asyncio
    async def test_on_line_sees_both_streams(self):
        seen = []
        await run_command(
            sys.executable,
            ["-c", "import sys; print('out'); sys.stderr.write('err\\n')"],
            on_line=seen.append,
        )
        assert sorted(seen) == ["err", "out"]

    def test_rows_split_on_pipe(self):
        result = CommandResult(program="psql", returncode=0, stdout="postgis|3.4.2\nhstore|1.8\n")
        assert result.rows == [["postgis", "3.4.2"], ["hstore", "1.8"]]

    def test_diagnostic_falls_back_to_exit_code(self):
        result = CommandResult(program="psql", returncode=2)
        assert result.diagnostic == "exited with code 2"

    def test_merged_env_overlays(self):
        env = merged_env({"A": "1", "B": "2"}, {"B": 3})
        assert env == {"A": "1", "B": "3"}


# ============================================================
# EXCEPTIONS
# ============================================================

class TestExceptions:
    """Tests for the ServiceError hierarchy."""

    def test_missing_binary_is_configuration_error(self):
        error = MissingBinaryError("postgres", "/opt/bin/postgres")
        assert isinstance(error, ConfigurationError)
        assert error.binary == "postgres"
        assert error.is_fatal
        assert "/opt/bin/postgres" in error.message

    def test_directory_corruption_is_critical(self):
        error = DirectoryCorruptionError("purge failed", path="/data")
        assert error.severity == Severity.CRITICAL
        assert error.classification == ErrorClassification.NON_RECOVERABLE
        assert error.context["path"] == "/data"

    def test_bootstrap_failure_keeps_diagnostic(self):
        error = BootstrapFailure("initdb failed", returncode=1, diagnostic="initdb: error: bad locale")
        assert error.diagnostic == "initdb: error: bad locale"
        assert error.returncode == 1

    def test_readiness_timeout_is_soft(self):
        error = ReadinessTimeout(5432, "127.0.0.1", 30.0)
        assert error.is_recoverable
        assert error.context["port"] == 5432

    def test_extension_failure_is_low_severity(self):
        error = ExtensionEnableFailure("postgis_raster", "postgres", "could not load library")
        assert error.severity == Severity.LOW
        assert "postgis_raster" in error.message

    def test_to_dict_and_log_format(self):
        error = ConfigurationError("bad port", config_key="postgres_port", actual_value=70000)
        data = error.to_dict()
        assert data["type"] == "ConfigurationError"
        assert data["context"]["config_key"] == "postgres_port"
        assert "ConfigurationError: bad port" in error.to_log_format()

    def test_classify_builtin_exceptions(self):
        assert classify_exception(FileNotFoundError()) == ErrorClassification.NON_RECOVERABLE
        assert classify_exception(ConnectionRefusedError()) == ErrorClassification.TRANSIENT
        assert classify_exception(ValueError()) == ErrorClassification.RECOVERABLE

    def test_wrap_exception_keeps_cause(self):
        wrapped = wrap_exception(OSError("disk full"))
        assert isinstance(wrapped, ServiceError)
        assert wrapped.context["cause_type"] == "OSError"

    @pytest.mark.parametrize("text,expected", [
        ('createdb: error: database "postgres" already exists', True),
        ('ERROR:  role "alice" already exists', True),
        ("FATAL:  password authentication failed", False),
        ("", False),
        (None, False),
    ])
    def test_benign_exists_errors(self, text, expected):
        assert is_benign_exists_error(text) is expected


# ============================================================
# INSTALL LAYOUT
# ============================================================

class TestInstallLayout:
    """Tests for InstallLayout."""

    def test_platform_tags(self):
        assert platform_tag("win32") == "win"
        assert platform_tag("darwin") == "mac"
        assert platform_tag("linux") == "linux"

    def test_posix_paths(self, tmp_path):
        layout = InstallLayout.from_root(tmp_path, platform="linux")
        assert layout.postgres_bin == tmp_path / "bin" / "linux" / "postgres" / "bin" / "postgres"
        assert layout.psql_bin.name == "psql"
        assert layout.cluster_dir == tmp_path / "data" / "postgres"
        assert layout.python_bin == tmp_path / "bin" / "linux" / "python" / "bin" / "python3"
        assert layout.companion_data_dir == tmp_path / "data" / "pgadmin"

    def test_windows_paths_have_exe_suffix(self, tmp_path):
        layout = InstallLayout.from_root(tmp_path, platform="win32")
        assert layout.is_windows
        assert layout.initdb_bin.name == "initdb.exe"
        assert layout.python_bin == tmp_path / "bin" / "win" / "python" / "python.exe"

    def test_overrides(self, tmp_path):
        layout = InstallLayout.from_root(
            tmp_path,
            bin_dir=tmp_path / "custom-bin",
            data_dir=tmp_path / "elsewhere",
            platform="linux",
        )
        assert layout.postgres_home == tmp_path / "custom-bin" / "postgres"
        assert layout.cluster_dir == Path(tmp_path / "elsewhere" / "postgres")
