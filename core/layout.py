"""
Core Module - Install Layout.

============================================================
RESPONSIBILITY
============================================================
Derives every binary and data path from one install root.

- bin/<platform>/postgres/bin/{postgres,initdb,psql,createdb}
- bin/<platform>/python/... for the companion runtime
- data/postgres (cluster) and data/pgadmin (companion state)

The layout is a plain value; nothing here touches the filesystem.

============================================================
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def platform_tag(platform: Optional[str] = None) -> str:
    """Return the bin/ subdirectory name for a platform."""
    platform = platform or sys.platform
    if platform == "win32":
        return "win"
    if platform == "darwin":
        return "mac"
    return "linux"


@dataclass(frozen=True)
class InstallLayout:
    """Resolved paths of one portable installation."""

    root: Path
    bin_dir: Path
    data_dir: Path
    is_windows: bool = field(default_factory=lambda: sys.platform == "win32")

    @classmethod
    def from_root(
        cls,
        root: Path,
        bin_dir: Optional[Path] = None,
        data_dir: Optional[Path] = None,
        platform: Optional[str] = None,
    ) -> "InstallLayout":
        root = Path(root)
        platform = platform or sys.platform
        return cls(
            root=root,
            bin_dir=Path(bin_dir) if bin_dir else root / "bin" / platform_tag(platform),
            data_dir=Path(data_dir) if data_dir else root / "data",
            is_windows=platform == "win32",
        )

    # --------------------------------------------------------
    # PostgreSQL
    # --------------------------------------------------------

    @property
    def postgres_home(self) -> Path:
        return self.bin_dir / "postgres"

    def _pg_tool(self, name: str) -> Path:
        suffix = ".exe" if self.is_windows else ""
        return self.postgres_home / "bin" / f"{name}{suffix}"

    @property
    def postgres_bin(self) -> Path:
        return self._pg_tool("postgres")

    @property
    def initdb_bin(self) -> Path:
        return self._pg_tool("initdb")

    @property
    def psql_bin(self) -> Path:
        return self._pg_tool("psql")

    @property
    def createdb_bin(self) -> Path:
        return self._pg_tool("createdb")

    @property
    def cluster_dir(self) -> Path:
        return self.data_dir / "postgres"

    # --------------------------------------------------------
    # Companion runtime
    # --------------------------------------------------------

    @property
    def python_home(self) -> Path:
        return self.bin_dir / "python"

    @property
    def python_bin(self) -> Path:
        if self.is_windows:
            return self.python_home / "python.exe"
        return self.python_home / "bin" / "python3"

    @property
    def companion_data_dir(self) -> Path:
        return self.data_dir / "pgadmin"


__all__ = ["InstallLayout", "platform_tag"]
