"""
Cluster - Extension Reconciler.

============================================================
RESPONSIBILITY
============================================================
Brings a freshly started server to its desired end state.

a. Default database exists (created from template1 if not)
b. Admin role carries SUPERUSER CREATEDB
c. Optional extensions the live catalog reports as available
d. ...are enabled, one at a time, failures logged and skipped
e. No primary extension in the catalog: log both candidate
   extension directories and leave extensions alone

============================================================
DESIGN PRINCIPLES
============================================================
- Declarative: every statement is safe to re-run
- Availability comes from pg_available_extensions, not the disk
- State is queried live each pass, never cached
- "already exists" from a racing creator counts as success

============================================================
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set

from core.constants import (
    DEFAULT_ADMIN_ROLE,
    DEFAULT_DATABASE,
    DESIRED_EXTENSIONS,
    EXTENSION_NAME_PATTERN,
    PRIMARY_EXTENSION,
    ROLE_NAME_PATTERN,
)
from core.exceptions import (
    CommandError,
    ExtensionEnableFailure,
    InvalidConfigError,
    is_benign_exists_error,
)

from .extensions import ExtensionSearchRoot, list_shipped_extensions
from .models import ExtensionState, ReconcileReport
from .sql_client import SqlClient, quote_ident, quote_literal

logger = logging.getLogger(__name__)


def validate_extension_name(name: str) -> str:
    """Reject anything that is not a plain extension identifier."""
    if not re.match(EXTENSION_NAME_PATTERN, name or ""):
        raise InvalidConfigError("extension", name, "invalid extension name")
    return name


class ExtensionReconciler:
    """Reconciles databases, roles and extensions on a running server."""

    def __init__(
        self,
        client: SqlClient,
        search_root: ExtensionSearchRoot,
        admin_role: str = DEFAULT_ADMIN_ROLE,
        default_database: str = DEFAULT_DATABASE,
        desired_extensions: Sequence[str] = DESIRED_EXTENSIONS,
        primary_extension: str = PRIMARY_EXTENSION,
        login_role: Optional[str] = None,
        login_password: Optional[str] = None,
        on_log=None,
    ):
        self._client = client
        self._root = search_root
        self._admin_role = admin_role
        self._database = default_database
        self._desired = [validate_extension_name(n) for n in desired_extensions]
        self._primary = validate_extension_name(primary_extension)
        self._login_role = login_role
        self._login_password = login_password
        self._on_log = on_log

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        if self._on_log:
            self._on_log(f"[postgres] {message}")

    # --------------------------------------------------------
    # Full pass
    # --------------------------------------------------------

    async def reconcile(self) -> ReconcileReport:
        """Run one reconciliation pass."""
        report = ReconcileReport(database=self._database)

        report.default_database_ok = await self.ensure_default_database()
        report.admin_role_ok = await self.ensure_admin_privileges()

        if self._login_role and self._login_role != self._admin_role:
            report.login_role_ok = await self.ensure_login_role()

        await self._reconcile_extensions(report)
        return report

    # --------------------------------------------------------
    # Database & roles
    # --------------------------------------------------------

    async def ensure_default_database(self) -> bool:
        """Make sure the default database accepts sessions."""
        db = self._database
        if (await self._client.ping(db)).ok:
            self._log(f'Default database "{db}" already exists.')
            return True

        result = await self._client.create_database(db)
        if result.ok:
            self._log(f'Created default "{db}" database.')
            return True
        if is_benign_exists_error(result.diagnostic):
            self._log(f'Default database "{db}" already exists.')
            return True

        self._log(f"Warning: createdb failed: {result.diagnostic}", logging.WARNING)
        return False

    async def ensure_admin_privileges(self) -> bool:
        """Idempotently grant the admin role its privileges."""
        role = self._admin_role
        result = await self._client.run(
            f"ALTER ROLE {quote_ident(role)} WITH SUPERUSER CREATEDB;",
            self._database,
        )
        if result.ok:
            self._log(f'Ensured "{role}" user privileges.')
            return True
        self._log(f"Warning: Failed to update user privileges: {result.diagnostic}", logging.WARNING)
        return False

    async def ensure_login_role(self) -> bool:
        """Create the configured login role when it differs from the admin role."""
        role = self._login_role or ""
        if not re.match(ROLE_NAME_PATTERN, role):
            self._log(f'Warning: Skipping invalid role name "{role}"', logging.WARNING)
            return False

        exists = await self._client.run(
            f"SELECT 1 FROM pg_roles WHERE rolname = {quote_literal(role)};",
            self._database,
        )
        if exists.ok and exists.lines:
            self._log(f'Role "{role}" already exists.')
            return True

        statement = f"CREATE ROLE {quote_ident(role)} WITH LOGIN SUPERUSER"
        if self._login_password:
            statement += f" PASSWORD {quote_literal(self._login_password)}"
        result = await self._client.run(statement + ";", self._database)

        if result.ok:
            self._log(f'Created role "{role}".')
            return True
        if is_benign_exists_error(result.diagnostic):
            self._log(f'Role "{role}" already exists.')
            return True
        self._log(f'Warning: Failed to create role "{role}": {result.diagnostic}', logging.WARNING)
        return False

    # --------------------------------------------------------
    # Catalog queries
    # --------------------------------------------------------

    async def available_extensions(self) -> Optional[Set[str]]:
        """Extensions the running server can load, or None if unknown."""
        result = await self._client.run("SELECT name FROM pg_available_extensions;", self._database)
        if not result.ok:
            return None
        return set(result.lines)

    async def enabled_extensions(self, database: Optional[str] = None) -> Optional[Dict[str, str]]:
        """Extensions enabled in a database with their versions, or None if unknown."""
        result = await self._client.run(
            "SELECT extname, extversion FROM pg_extension;",
            database or self._database,
        )
        if not result.ok:
            return None
        enabled: Dict[str, str] = {}
        for row in result.rows:
            if len(row) >= 2:
                enabled[row[0]] = row[1]
        return enabled

    async def list_extension_states(
        self,
        names: Optional[Iterable[str]] = None,
        database: Optional[str] = None,
    ) -> List[ExtensionState]:
        """Live availability and enablement for the given (or desired) names."""
        available = await self.available_extensions() or set()
        enabled = await self.enabled_extensions(database) or {}
        return [
            ExtensionState(
                name=name,
                available_in_catalog=name in available,
                enabled_in_database=name in enabled,
                installed_version=enabled.get(name),
            )
            for name in (list(names) if names is not None else self._desired)
        ]

    # --------------------------------------------------------
    # Enable / disable
    # --------------------------------------------------------

    async def enable_extension(self, name: str, database: Optional[str] = None) -> None:
        """
        Enable one extension (and its dependencies).

        Raises:
            InvalidConfigError: Name is not a plain identifier
            ExtensionEnableFailure: The server refused
        """
        validate_extension_name(name)
        db = database or self._database
        result = await self._client.run(f"CREATE EXTENSION IF NOT EXISTS {quote_ident(name)} CASCADE;", db)
        if not result.ok:
            raise ExtensionEnableFailure(name, db, result.diagnostic)

    async def disable_extension(self, name: str, database: Optional[str] = None) -> None:
        """
        Drop one extension and everything depending on it.

        Raises:
            InvalidConfigError: Name is not a plain identifier
            CommandError: The server refused
        """
        validate_extension_name(name)
        db = database or self._database
        result = await self._client.run(f"DROP EXTENSION IF EXISTS {quote_ident(name)} CASCADE;", db)
        if not result.ok:
            raise CommandError(
                message=f"Failed to disable extension {name} in {db}: {result.diagnostic}",
                program="psql",
                returncode=result.returncode,
            )
        self._log(f"Disabled extension {name} in {db}.")

    # --------------------------------------------------------
    # Extension pass
    # --------------------------------------------------------

    def _log_search_root(self) -> None:
        root = self._root
        if root.found:
            shipped = list_shipped_extensions(root)
            self._log(
                f"Extension files ({root.layout.value}) at {root.path}: "
                f"{len(shipped)} control files"
            )
        else:
            self._log(f"No extension directory found (checked {root.describe()})")

    async def _reconcile_extensions(self, report: ReconcileReport) -> None:
        self._log_search_root()

        available = await self.available_extensions()
        if available is None:
            report.skipped_reason = "extension catalog query failed"
            self._log("Warning: Could not query available extensions; skipping.", logging.WARNING)
            return

        if self._primary not in available:
            report.skipped_reason = f"{self._primary} not available"
            report.extensions.append(ExtensionState(self._primary, False, False))
            self._log(f"Extension {self._primary} is not available in this server build.", logging.WARNING)
            for candidate in self._root.candidates:
                state = "present" if candidate.is_dir() else "missing"
                self._log(f"Checked extension location: {candidate} ({state})", logging.WARNING)
            return

        enabled = await self.enabled_extensions()
        if enabled is None:
            self._log("Warning: Could not query enabled extensions.", logging.WARNING)
            enabled = {}

        for name in self._desired:
            state = ExtensionState(
                name=name,
                available_in_catalog=name in available,
                enabled_in_database=name in enabled,
                installed_version=enabled.get(name),
            )
            report.extensions.append(state)

            if not state.available_in_catalog:
                self._log(f"Extension {name} not available, skipping.")
                continue

            if not state.needs_enabling:
                self._log(f"Extension {name} already enabled (version {state.installed_version}).")
                report.already_enabled.append(name)
                continue

            try:
                await self.enable_extension(name)
            except ExtensionEnableFailure as e:
                self._log(e.message, logging.WARNING)
                report.failed[name] = e.message
                continue

            self._log(f"Enabled extension {name} in {self._database}.")
            report.newly_enabled.append(name)
            state.enabled_in_database = True

        if report.newly_enabled:
            versions = await self.enabled_extensions() or {}
            for state in report.extensions:
                if state.name in report.newly_enabled:
                    state.installed_version = versions.get(state.name)


__all__ = ["ExtensionReconciler", "validate_extension_name"]
