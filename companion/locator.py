"""
Companion - Locator.

============================================================
RESPONSIBILITY
============================================================
Finds the pgAdmin entrypoint inside the bundled Python runtime.

The runtime is a pip-installed pgAdmin, so the entrypoint sits in
site-packages, whose location depends on the platform build:

    Windows:  <python>/Lib/site-packages/pgadmin4/pgAdmin4.py
              <python>/../Lib/site-packages/pgadmin4/pgAdmin4.py
    POSIX:    <python>/lib/python3.X/site-packages/pgadmin4/pgAdmin4.py
              <python>/lib/site-packages/pgadmin4/pgAdmin4.py

Known layouts are checked in order; a bounded-depth walk of the
runtime directory is the fallback.

============================================================
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from core.constants import (
    COMPANION_ENTRYPOINT,
    COMPANION_LOCAL_CONFIG,
    COMPANION_PACKAGE_DIR,
    COMPANION_SEARCH_MAX_DEPTH,
    COMPANION_SETUP_SCRIPT,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompanionInstall:
    """A located pgAdmin installation."""

    python_bin: Path
    entrypoint: Path
    found_by_search: bool = False

    @property
    def package_dir(self) -> Path:
        return self.entrypoint.parent

    @property
    def setup_script(self) -> Path:
        return self.package_dir / COMPANION_SETUP_SCRIPT

    @property
    def local_config_path(self) -> Path:
        return self.package_dir / COMPANION_LOCAL_CONFIG


def site_packages_candidates(python_home: Path, is_windows: bool) -> List[Path]:
    """Expected site-packages directories, most likely first."""
    python_home = Path(python_home)
    if is_windows:
        return [
            python_home / "Lib" / "site-packages",
            python_home.parent / "Lib" / "site-packages",
        ]

    lib = python_home / "lib"
    versioned: List[Path] = []
    if lib.is_dir():
        versioned = sorted(
            (p / "site-packages" for p in lib.glob("python3*")),
            reverse=True,
        )
    return versioned + [lib / "site-packages"]


def entrypoint_candidates(python_home: Path, is_windows: bool) -> List[Path]:
    return [
        sp / COMPANION_PACKAGE_DIR / COMPANION_ENTRYPOINT
        for sp in site_packages_candidates(python_home, is_windows)
    ]


def search_entrypoint(root: Path, max_depth: int = COMPANION_SEARCH_MAX_DEPTH) -> Optional[Path]:
    """Walk at most max_depth levels below root looking for the entrypoint."""
    root = Path(root)
    if not root.is_dir():
        return None

    base_depth = len(root.parts)
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        if COMPANION_ENTRYPOINT in filenames and current.name == COMPANION_PACKAGE_DIR:
            return current / COMPANION_ENTRYPOINT
        if len(current.parts) - base_depth >= max_depth:
            dirnames[:] = []
        else:
            dirnames.sort()
    return None


def locate_companion(
    python_bin: Path,
    python_home: Path,
    is_windows: bool,
    max_depth: int = COMPANION_SEARCH_MAX_DEPTH,
) -> Optional[CompanionInstall]:
    """
    Locate the runtime and entrypoint.

    Returns:
        CompanionInstall, or None when either piece is missing
    """
    python_bin = Path(python_bin)
    if not python_bin.exists():
        logger.warning(f"Companion runtime not found at {python_bin}")
        return None

    for candidate in entrypoint_candidates(python_home, is_windows):
        if candidate.is_file():
            return CompanionInstall(python_bin=python_bin, entrypoint=candidate)

    found = search_entrypoint(python_home, max_depth)
    if found is not None:
        logger.info(f"Found {COMPANION_ENTRYPOINT} by search at {found}")
        return CompanionInstall(python_bin=python_bin, entrypoint=found, found_by_search=True)

    logger.warning(f"{COMPANION_ENTRYPOINT} not found under {python_home}")
    return None


__all__ = [
    "CompanionInstall",
    "site_packages_candidates",
    "entrypoint_candidates",
    "search_entrypoint",
    "locate_companion",
]
