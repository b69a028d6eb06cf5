"""
Cluster - Extension Search Root.

============================================================
RESPONSIBILITY
============================================================
Resolves where the bundled server keeps its extension files.

Distributions ship them under one of two layouts:

    <postgres>/share/postgresql/extension
    <postgres>/share/extension

and one of them may exist but be empty. Both the client
environment (PGSHARE/PGLIB) and the diagnostics logged by the
reconciler come from the same resolved root, so they always agree.

Which extensions are *available* is decided by the live catalog;
the files found here are only reported.

============================================================
"""

import os
from enum import Enum
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple


class ExtensionLayout(Enum):
    """Which on-disk layout held the extension files."""

    SHARE_POSTGRESQL = "share/postgresql/extension"
    SHARE_FLAT = "share/extension"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ExtensionSearchRoot:
    """Tagged result of extension-directory resolution."""

    layout: ExtensionLayout
    path: Optional[Path]
    candidates: Tuple[Path, ...]

    @property
    def found(self) -> bool:
        return self.layout != ExtensionLayout.NOT_FOUND

    @property
    def share_dir(self) -> Optional[Path]:
        """Directory to export as PGSHARE."""
        if self.path is None:
            return None
        if self.layout == ExtensionLayout.SHARE_POSTGRESQL:
            return self.path.parent.parent
        return self.path.parent

    def describe(self) -> str:
        """Human-readable list of the checked locations."""
        return ", ".join(str(c) for c in self.candidates)


def _control_files(directory: Path) -> List[str]:
    try:
        names = os.listdir(directory)
    except OSError:
        return []
    return sorted(n[: -len(".control")] for n in names if n.endswith(".control"))


def resolve_extension_search_root(postgres_home: Path) -> ExtensionSearchRoot:
    """
    Pick the extension directory of a server installation.

    A candidate that contains .control files wins over one that merely
    exists; the first existing candidate is used otherwise.
    """
    postgres_home = Path(postgres_home)
    ordered = (
        (ExtensionLayout.SHARE_POSTGRESQL, postgres_home / "share" / "postgresql" / "extension"),
        (ExtensionLayout.SHARE_FLAT, postgres_home / "share" / "extension"),
    )
    candidates = tuple(path for _, path in ordered)

    existing = [(layout, path) for layout, path in ordered if path.is_dir()]
    for layout, path in existing:
        if _control_files(path):
            return ExtensionSearchRoot(layout=layout, path=path, candidates=candidates)
    if existing:
        layout, path = existing[0]
        return ExtensionSearchRoot(layout=layout, path=path, candidates=candidates)
    return ExtensionSearchRoot(layout=ExtensionLayout.NOT_FOUND, path=None, candidates=candidates)


def list_shipped_extensions(root: ExtensionSearchRoot) -> List[str]:
    """Extension names with a .control file under the resolved root."""
    if root.path is None:
        return []
    return _control_files(root.path)


def client_environment(
    postgres_home: Path,
    root: ExtensionSearchRoot,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Environment for the bundled client tools."""
    env = dict(base if base is not None else os.environ)
    share = root.share_dir or (Path(postgres_home) / "share")
    env["PGSHARE"] = str(share)
    env["PGLIB"] = str(Path(postgres_home) / "lib")
    return env


__all__ = [
    "ExtensionLayout",
    "ExtensionSearchRoot",
    "resolve_extension_search_root",
    "list_shipped_extensions",
    "client_environment",
]
