"""
Cluster - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for cluster preparation and reconciliation.

- DirectoryState: the four audit classifications
- AuditReport: what the auditor saw and did
- ExtensionState: live availability/enablement of one extension
- ReconcileReport: outcome of one reconciliation pass

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


# ============================================================
# DIRECTORY STATE
# ============================================================

class DirectoryState(Enum):
    """Classification of a cluster data directory."""

    EMPTY = "empty"
    """No marker and no config: never bootstrapped."""

    VALID = "valid"
    """Fully initialized, nothing to do."""

    INCOMPLETE_REPAIRABLE = "incomplete_repairable"
    """Initialized but missing regeneratable subdirectories."""

    CORRUPT_NEEDS_REINIT = "corrupt_needs_reinit"
    """Structure broken beyond repair; purge and bootstrap again."""

    @property
    def needs_bootstrap(self) -> bool:
        """Check if a fresh bootstrap must follow."""
        return self in (DirectoryState.EMPTY, DirectoryState.CORRUPT_NEEDS_REINIT)


@dataclass
class AuditReport:
    """Result of auditing (and possibly repairing) a data directory."""

    path: Path
    initial_state: DirectoryState
    final_state: DirectoryState
    created_directories: List[str] = field(default_factory=list)
    missing_directories: List[str] = field(default_factory=list)
    purged: bool = False
    reason: Optional[str] = None

    @property
    def repaired(self) -> bool:
        return (
            self.initial_state == DirectoryState.INCOMPLETE_REPAIRABLE
            and self.final_state == DirectoryState.VALID
        )

    @property
    def needs_bootstrap(self) -> bool:
        return self.final_state.needs_bootstrap

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "path": str(self.path),
            "initial_state": self.initial_state.value,
            "final_state": self.final_state.value,
            "created_directories": list(self.created_directories),
            "missing_directories": list(self.missing_directories),
            "purged": self.purged,
            "reason": self.reason,
        }


# ============================================================
# EXTENSION STATE
# ============================================================

@dataclass
class ExtensionState:
    """Live state of one extension. Never cached between passes."""

    name: str
    available_in_catalog: bool
    enabled_in_database: bool
    installed_version: Optional[str] = None

    @property
    def needs_enabling(self) -> bool:
        return self.available_in_catalog and not self.enabled_in_database

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "available": self.available_in_catalog,
            "enabled": self.enabled_in_database,
            "version": self.installed_version,
        }


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""

    database: str
    default_database_ok: bool = False
    admin_role_ok: bool = False
    login_role_ok: Optional[bool] = None
    extensions: List[ExtensionState] = field(default_factory=list)
    newly_enabled: List[str] = field(default_factory=list)
    already_enabled: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped_reason: Optional[str] = None

    @property
    def extensions_skipped(self) -> bool:
        return self.skipped_reason is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "database": self.database,
            "default_database_ok": self.default_database_ok,
            "admin_role_ok": self.admin_role_ok,
            "login_role_ok": self.login_role_ok,
            "extensions": [e.to_dict() for e in self.extensions],
            "newly_enabled": list(self.newly_enabled),
            "already_enabled": list(self.already_enabled),
            "failed": dict(self.failed),
            "skipped_reason": self.skipped_reason,
        }


__all__ = [
    "DirectoryState",
    "AuditReport",
    "ExtensionState",
    "ReconcileReport",
]
