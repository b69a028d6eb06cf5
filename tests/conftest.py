"""
Shared test fixtures.

============================================================
PURPOSE
============================================================
FakePostgres answers psql / createdb invocations from memory so
the reconciler and the orchestrator can be exercised without a
database server.

============================================================
"""

import re
from pathlib import Path
from typing import Dict, List, Set

import pytest

from core.commands import CommandResult


_ROLE_LOOKUP = re.compile(r"rolname = '([^']*)'")
_CREATE_ROLE = re.compile(r'CREATE ROLE "([^"]+)"')
_CREATE_EXTENSION = re.compile(r'CREATE EXTENSION IF NOT EXISTS "([^"]+)"')
_DROP_EXTENSION = re.compile(r'DROP EXTENSION IF EXISTS "([^"]+)"')

# Extensions pulled in by CASCADE
_REQUIRES = {
    "postgis_topology": ["postgis"],
    "postgis_raster": ["postgis"],
}


class FakePostgres:
    """In-memory stand-in for the psql and createdb executables."""

    def __init__(
        self,
        databases=("template0", "template1", "postgres"),
        available=("plpgsql", "postgis", "postgis_topology", "postgis_raster"),
    ):
        self.databases: Set[str] = set(databases)
        self.available: Set[str] = set(available)
        self.enabled: Dict[str, Dict[str, str]] = {db: {"plpgsql": "1.0"} for db in self.databases}
        self.roles: Set[str] = {"postgres"}
        self.failing_extensions: Set[str] = set()
        self.catalog_broken = False
        self.ping_failures = 0
        self.statements: List[str] = []
        self.calls: List[str] = []

    # --------------------------------------------------------
    # Runner protocol
    # --------------------------------------------------------

    async def __call__(self, program, args=(), env=None, cwd=None, on_line=None) -> CommandResult:
        args = list(args)
        name = Path(str(program)).name
        self.calls.append(name)
        if name.startswith("createdb"):
            return self._createdb(str(program), args)
        return self._psql(str(program), args)

    def _result(self, program, args, returncode=0, stdout="", stderr="") -> CommandResult:
        return CommandResult(program=program, args=args, returncode=returncode, stdout=stdout, stderr=stderr)

    def _createdb(self, program: str, args: List[str]) -> CommandResult:
        db = args[-1]
        if db in self.databases:
            return self._result(
                program, args, 1,
                stderr=f'createdb: error: database creation failed: ERROR:  database "{db}" already exists\n',
            )
        self.databases.add(db)
        self.enabled[db] = {"plpgsql": "1.0"}
        return self._result(program, args, stdout=f'CREATE DATABASE "{db}" TEMPLATE template1;\n')

    def _psql(self, program: str, args: List[str]) -> CommandResult:
        db = args[args.index("-d") + 1]
        sql = args[args.index("-c") + 1]
        self.statements.append(sql)

        if db not in self.databases:
            return self._result(
                program, args, 2,
                stderr=f'psql: error: connection to server failed: FATAL:  database "{db}" does not exist\n',
            )

        if sql == "SELECT 1;":
            if self.ping_failures:
                self.ping_failures -= 1
                return self._result(program, args, 2, stderr="psql: error: server closed the connection\n")
            return self._result(program, args, stdout="1\n")

        if sql.startswith("ALTER ROLE"):
            return self._result(program, args, stdout="ALTER ROLE\n")

        match = _ROLE_LOOKUP.search(sql)
        if match:
            return self._result(program, args, stdout="1\n" if match.group(1) in self.roles else "")

        match = _CREATE_ROLE.search(sql)
        if match:
            if match.group(1) in self.roles:
                return self._result(program, args, 1, stderr=f'ERROR:  role "{match.group(1)}" already exists\n')
            self.roles.add(match.group(1))
            return self._result(program, args, stdout="CREATE ROLE\n")

        if "pg_available_extensions" in sql:
            if self.catalog_broken:
                return self._result(program, args, 1, stderr="ERROR:  permission denied\n")
            return self._result(program, args, stdout="".join(f"{n}\n" for n in sorted(self.available)))

        if "FROM pg_extension" in sql:
            rows = "".join(f"{n}|{v}\n" for n, v in sorted(self.enabled[db].items()))
            return self._result(program, args, stdout=rows)

        match = _CREATE_EXTENSION.search(sql)
        if match:
            return self._create_extension(program, args, db, match.group(1))

        match = _DROP_EXTENSION.search(sql)
        if match:
            self.enabled[db].pop(match.group(1), None)
            return self._result(program, args, stdout="DROP EXTENSION\n")

        return self._result(program, args, 1, stderr=f"ERROR:  unexpected statement: {sql}\n")

    def _create_extension(self, program: str, args: List[str], db: str, ext: str) -> CommandResult:
        if ext in self.failing_extensions:
            return self._result(
                program, args, 1,
                stderr=f'ERROR:  could not load library "{ext}-3.so"\n',
            )
        if ext not in self.available:
            return self._result(program, args, 1, stderr=f'ERROR:  extension "{ext}" is not available\n')
        for dependency in _REQUIRES.get(ext, []):
            self.enabled[db].setdefault(dependency, "3.4.2")
        self.enabled[db].setdefault(ext, "3.4.2")
        return self._result(program, args, stdout="CREATE EXTENSION\n")

    # --------------------------------------------------------
    # Inspection helpers
    # --------------------------------------------------------

    def create_extension_statements(self) -> List[str]:
        return [s for s in self.statements if s.startswith("CREATE EXTENSION")]

    def is_enabled(self, ext: str, db: str = "postgres") -> bool:
        return ext in self.enabled.get(db, {})


@pytest.fixture
def fake_pg() -> FakePostgres:
    return FakePostgres()


@pytest.fixture
def extension_home(tmp_path) -> Path:
    """A server home whose flat extension directory ships postgis."""
    home = tmp_path / "pg"
    ext_dir = home / "share" / "extension"
    ext_dir.mkdir(parents=True)
    for name in ("postgis", "postgis_topology", "postgis_raster"):
        (ext_dir / f"{name}.control").write_text("default_version = '3.4.2'\n")
    return home
