"""
Cluster - Data Directory Auditor.

============================================================
RESPONSIBILITY
============================================================
Decides whether a cluster data directory can be started as-is,
repaired in place, or must be purged and bootstrapped again.

============================================================
CLASSIFICATION
============================================================
1. PG_VERSION and postgresql.conf both absent   -> EMPTY
2. only one of them, or base/ missing            -> CORRUPT_NEEDS_REINIT
3. base/ has < 2 entries, or global/ missing     -> CORRUPT_NEEDS_REINIT
4. a regeneratable subdirectory is missing       -> INCOMPLETE_REPAIRABLE
5. otherwise                                     -> VALID

An interrupted initdb can leave marker and config behind with an
incomplete internal structure, hence the checks on base/ and global/.

============================================================
DESIGN PRINCIPLES
============================================================
- classify() only reads; same contents, same answer
- repair() only creates missing directories, never touches files
- purge() empties the directory completely, never partially
- Owner-only permissions on POSIX, nothing elsewhere

============================================================
"""

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from core.constants import (
    BOOKKEEPING_SUBDIR,
    CONFIG_FILE,
    MARKER_FILE,
    MIN_STORAGE_ENTRIES,
    OWNER_ONLY_MODE,
    REGENERATABLE_SUBDIRECTORIES,
    STORAGE_SUBDIR,
)
from core.exceptions import DirectoryCorruptionError

from .models import AuditReport, DirectoryState

logger = logging.getLogger(__name__)


class DataDirectoryAuditor:
    """Audits, repairs and purges one cluster data directory."""

    def __init__(
        self,
        data_dir: Path,
        regeneratable: Sequence[str] = REGENERATABLE_SUBDIRECTORIES,
        min_storage_entries: int = MIN_STORAGE_ENTRIES,
        restrict_permissions: Optional[bool] = None,
        on_log=None,
        log_prefix: str = "[postgres]",
    ):
        self._root = Path(data_dir)
        self._regeneratable = tuple(regeneratable)
        self._min_storage_entries = min_storage_entries
        if restrict_permissions is None:
            restrict_permissions = os.name != "nt"
        self._restrict_permissions = restrict_permissions
        self._on_log = on_log
        self._prefix = log_prefix

    @property
    def path(self) -> Path:
        return self._root

    def _log(self, message: str) -> None:
        logger.info(message)
        if self._on_log:
            self._on_log(f"{self._prefix} {message}")

    # --------------------------------------------------------
    # Classification
    # --------------------------------------------------------

    def classify(self) -> DirectoryState:
        """Classify the directory without modifying it."""
        state, _ = self._classify_with_reason()
        return state

    def _classify_with_reason(self) -> Tuple[DirectoryState, Optional[str]]:
        root = self._root
        has_marker = (root / MARKER_FILE).is_file()
        has_config = (root / CONFIG_FILE).is_file()

        if not has_marker and not has_config:
            return DirectoryState.EMPTY, None

        if not (has_marker and has_config):
            missing = CONFIG_FILE if has_marker else MARKER_FILE
            return DirectoryState.CORRUPT_NEEDS_REINIT, f"missing {missing}"

        storage = root / STORAGE_SUBDIR
        if not storage.is_dir():
            return DirectoryState.CORRUPT_NEEDS_REINIT, f"missing {STORAGE_SUBDIR}"

        entries = len(os.listdir(storage))
        if entries < self._min_storage_entries:
            return (
                DirectoryState.CORRUPT_NEEDS_REINIT,
                f"{STORAGE_SUBDIR} holds {entries} database(s), expected at least {self._min_storage_entries}",
            )

        if not (root / BOOKKEEPING_SUBDIR).is_dir():
            return DirectoryState.CORRUPT_NEEDS_REINIT, f"missing {BOOKKEEPING_SUBDIR}"

        if self.missing_directories():
            return DirectoryState.INCOMPLETE_REPAIRABLE, "missing regeneratable directories"

        return DirectoryState.VALID, None

    def missing_directories(self) -> List[str]:
        """Regeneratable subdirectories that do not exist."""
        return [rel for rel in self._regeneratable if not (self._root / rel).is_dir()]

    def stray_entries(self) -> List[str]:
        """Names of everything currently inside the directory."""
        if not self._root.is_dir():
            return []
        return sorted(os.listdir(self._root))

    # --------------------------------------------------------
    # Repair / Purge
    # --------------------------------------------------------

    def _restrict(self, path: Path) -> None:
        if self._restrict_permissions:
            os.chmod(path, OWNER_ONLY_MODE)

    def ensure_root(self) -> None:
        """Create the directory if needed and restrict it to the owner."""
        self._root.mkdir(parents=True, exist_ok=True)
        try:
            self._restrict(self._root)
        except OSError as e:
            self._log(f"Warning: Failed to set permissions on data directory: {e}")

    def repair(self) -> List[str]:
        """
        Create missing regeneratable directories.

        Returns:
            Relative paths that were created
        """
        created: List[str] = []
        for rel in self._regeneratable:
            full = self._root / rel
            if full.is_dir():
                continue
            try:
                self._log(f"Creating missing directory: {rel}")
                full.mkdir(parents=True, exist_ok=True)
                self._restrict(full)
                created.append(rel)
            except OSError as e:
                self._log(f"Error repairing directory {rel}: {e}")
        return created

    def purge(self) -> None:
        """
        Delete the entire contents of the directory.

        Raises:
            DirectoryCorruptionError: If anything could not be removed
        """
        if not self._root.exists():
            return
        try:
            for entry in self._root.iterdir():
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
        except OSError as e:
            raise DirectoryCorruptionError(
                message=f"Failed to clear data directory: {e}",
                path=self._root,
                cause=e,
            )

    # --------------------------------------------------------
    # Audit
    # --------------------------------------------------------

    def audit(self) -> AuditReport:
        """Classify, repair what is repairable, and re-check."""
        initial, reason = self._classify_with_reason()
        report = AuditReport(
            path=self._root,
            initial_state=initial,
            final_state=initial,
            reason=reason,
        )

        if initial != DirectoryState.INCOMPLETE_REPAIRABLE:
            return report

        self._log("Checking for missing data directories...")
        report.missing_directories = self.missing_directories()
        report.created_directories = self.repair()

        final, final_reason = self._classify_with_reason()
        if final != DirectoryState.VALID:
            report.final_state = DirectoryState.CORRUPT_NEEDS_REINIT
            report.reason = f"repair incomplete: {final_reason or final.value}"
        else:
            report.final_state = DirectoryState.VALID
        return report

    def prepare(self) -> AuditReport:
        """
        Audit and leave the directory ready for start or bootstrap.

        A corrupt directory is purged; stray files in a directory that
        was never bootstrapped are cleared too, since initdb requires an
        empty target.
        """
        report = self.audit()
        state = report.final_state

        if state == DirectoryState.CORRUPT_NEEDS_REINIT:
            self._log(
                f"Data directory corrupted or incomplete ({report.reason}). "
                "Clearing for fresh init..."
            )
            self.purge()
            report.purged = True
        elif state == DirectoryState.EMPTY and self.stray_entries():
            self._log("Data directory has leftover files. Clearing for fresh init...")
            self.purge()
            report.purged = True
        elif report.repaired:
            self._log(f"Repaired {len(report.created_directories)} missing directories")

        self.ensure_root()
        return report


__all__ = ["DataDirectoryAuditor"]
