"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the startup orchestrator.

- Startup stages with strict ordering
- Stage and composite start results
- Service configuration (env, .env, YAML)

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import re
import uuid

import yaml
from dotenv import load_dotenv

from cluster.models import AuditReport, ReconcileReport
from core.constants import (
    DEFAULT_ADMIN_ROLE,
    DEFAULT_COMPANION_PORT,
    DEFAULT_DATABASE,
    DEFAULT_POSTGRES_PORT,
    DESIRED_EXTENSIONS,
    EXTENSION_NAME_PATTERN,
    FILE_RELEASE_DELAY_SECONDS,
    PRIMARY_EXTENSION,
    READINESS_ATTEMPT_TIMEOUT_SECONDS,
    READINESS_DEADLINE_SECONDS,
    READINESS_POLL_INTERVAL_SECONDS,
    ROLE_NAME_PATTERN,
)
from core.exceptions import InvalidConfigError
from core.layout import InstallLayout


# ============================================================
# STARTUP STAGES
# ============================================================

class StartStage(Enum):
    """
    Startup stages in strict order.

    A failed critical stage short-circuits everything after it.
    WAIT_READY and RECONCILE are soft: their failure is reported
    but the server keeps running.
    """

    VALIDATE_BINARIES = (1, "validate_binaries", "Validate bundled server binaries", True)
    CHECK_PORT = (2, "check_port", "Check the server port is free", True)
    AUDIT_DIRECTORY = (3, "audit_directory", "Audit and repair the cluster directory", True)
    BOOTSTRAP_CLUSTER = (4, "bootstrap_cluster", "Initialize a new cluster", True)
    START_SERVER = (5, "start_server", "Start the database server", True)
    WAIT_READY = (6, "wait_ready", "Wait for the server to accept connections", False)
    RECONCILE = (7, "reconcile", "Reconcile database, roles and extensions", False)

    def __init__(self, order: int, stage_id: str, description: str, critical: bool):
        self._order = order
        self._stage_id = stage_id
        self._description = description
        self._critical = critical

    @property
    def order(self) -> int:
        return self._order

    @property
    def stage_id(self) -> str:
        return self._stage_id

    @property
    def description(self) -> str:
        return self._description

    @property
    def critical(self) -> bool:
        """Whether failure aborts the start."""
        return self._critical

    @classmethod
    def get_ordered_stages(cls) -> List["StartStage"]:
        """Get all stages in execution order."""
        return sorted(cls, key=lambda s: s.order)

    @classmethod
    def get_stages_for(cls, already_running: bool) -> List["StartStage"]:
        """Stages to run given whether the server is already up."""
        if already_running:
            return [cls.WAIT_READY, cls.RECONCILE]
        return cls.get_ordered_stages()


# ============================================================
# STAGE RESULT
# ============================================================

@dataclass
class StageResult:
    """Result of executing a stage."""

    stage: StartStage
    success: bool
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    error: Optional[str] = None
    error_type: Optional[str] = None
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> timedelta:
        return timedelta(seconds=self.duration_seconds)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "stage": self.stage.stage_id,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "error_type": self.error_type,
            "recoverable": self.recoverable,
            "context": self.context,
        }


@dataclass
class StartResult:
    """Result of one composite database start."""

    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    success: bool = False
    """The server process was (or already is) registered."""
    ready: bool = False
    """The server accepted a TCP connection."""
    already_running: bool = False
    stage_results: List[StageResult] = field(default_factory=list)
    failed_stage: Optional[StartStage] = None
    error: Optional[str] = None
    audit_report: Optional[AuditReport] = None
    reconcile_report: Optional[ReconcileReport] = None
    log_lines: List[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    @property
    def stages_completed(self) -> int:
        return len([r for r in self.stage_results if r.success])

    @property
    def warnings(self) -> List[StageResult]:
        """Failed soft stages."""
        return [r for r in self.stage_results if not r.success and not r.stage.critical]

    def add_stage_result(self, result: StageResult) -> None:
        """Add a stage result; only critical failures mark the start failed."""
        self.stage_results.append(result)
        if not result.success and result.stage.critical:
            self.failed_stage = result.stage
            self.error = result.error

    def get_stage_result(self, stage: StartStage) -> Optional[StageResult]:
        for result in self.stage_results:
            if result.stage == stage:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "success": self.success,
            "ready": self.ready,
            "already_running": self.already_running,
            "duration_seconds": self.duration_seconds,
            "stages_completed": self.stages_completed,
            "failed_stage": self.failed_stage.stage_id if self.failed_stage else None,
            "error": self.error,
            "stage_results": [r.to_dict() for r in self.stage_results],
            "audit": self.audit_report.to_dict() if self.audit_report else None,
            "reconcile": self.reconcile_report.to_dict() if self.reconcile_report else None,
        }


def new_run_id() -> str:
    return f"start_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


# ============================================================
# SERVICE CONFIGURATION
# ============================================================

def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class ServiceConfig:
    """Configuration for one database (and optional companion) instance."""

    # Install
    install_root: str = "."
    """Root of the portable installation."""

    bin_dir: Optional[str] = None
    """Override for <root>/bin/<platform>."""

    data_dir: Optional[str] = None
    """Override for <root>/data."""

    # Ports
    postgres_port: int = DEFAULT_POSTGRES_PORT
    companion_port: int = DEFAULT_COMPANION_PORT

    # Roles
    admin_role: str = DEFAULT_ADMIN_ROLE
    """Superuser created by initdb."""

    db_user: str = DEFAULT_ADMIN_ROLE
    """Login role; created when it differs from admin_role."""

    db_password: str = ""

    default_database: str = DEFAULT_DATABASE

    # Extensions
    extensions: List[str] = field(default_factory=lambda: list(DESIRED_EXTENSIONS))
    primary_extension: str = PRIMARY_EXTENSION

    # Readiness
    readiness_deadline_seconds: float = READINESS_DEADLINE_SECONDS
    readiness_interval_seconds: float = READINESS_POLL_INTERVAL_SECONDS
    readiness_attempt_timeout_seconds: float = READINESS_ATTEMPT_TIMEOUT_SECONDS

    # Behaviour
    check_port: bool = True
    """Refuse to start when something else listens on the port."""

    start_companion: bool = False
    """Launch pgAdmin once the database is ready (serve action)."""

    # Shutdown
    shutdown_timeout_seconds: float = 10.0
    file_release_delay_seconds: float = FILE_RELEASE_DELAY_SECONDS

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def layout(self) -> InstallLayout:
        """Resolved install paths."""
        return InstallLayout.from_root(
            Path(self.install_root),
            bin_dir=Path(self.bin_dir) if self.bin_dir else None,
            data_dir=Path(self.data_dir) if self.data_dir else None,
        )

    @property
    def login_role(self) -> Optional[str]:
        """Extra login role to create, if any."""
        if self.db_user and self.db_user != self.admin_role:
            return self.db_user
        return None

    def with_port(self, port: Optional[int]) -> "ServiceConfig":
        """Copy with a different server port."""
        if port is None:
            return self
        return replace(self, postgres_port=int(port))

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "ServiceConfig":
        """Load configuration from environment variables (and .env)."""
        load_dotenv(env_file)
        return cls(
            install_root=os.getenv("INSTALL_ROOT", "."),
            bin_dir=os.getenv("BIN_DIR"),
            data_dir=os.getenv("DATA_DIR"),
            postgres_port=int(os.getenv("POSTGRES_PORT", str(DEFAULT_POSTGRES_PORT))),
            companion_port=int(os.getenv("COMPANION_PORT", str(DEFAULT_COMPANION_PORT))),
            admin_role=os.getenv("DB_ADMIN_ROLE", DEFAULT_ADMIN_ROLE),
            db_user=os.getenv("DB_USER", DEFAULT_ADMIN_ROLE),
            db_password=os.getenv("DB_PASSWORD", ""),
            default_database=os.getenv("DEFAULT_DATABASE", DEFAULT_DATABASE),
            extensions=_env_list("EXTENSIONS", list(DESIRED_EXTENSIONS)),
            primary_extension=os.getenv("PRIMARY_EXTENSION", PRIMARY_EXTENSION),
            readiness_deadline_seconds=float(
                os.getenv("READINESS_DEADLINE_SECONDS", str(READINESS_DEADLINE_SECONDS))
            ),
            check_port=_env_bool("CHECK_PORT", True),
            start_companion=_env_bool("START_COMPANION", False),
            shutdown_timeout_seconds=float(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "10")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "ServiceConfig":
        """Load configuration from a YAML file; unknown keys are ignored."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise InvalidConfigError(str(path), type(data).__name__, "top level must be a mapping")

        known = set(cls.__dataclass_fields__)
        values = {k: v for k, v in data.items() if k in known}
        if "extensions" in values and isinstance(values["extensions"], str):
            values["extensions"] = [e.strip() for e in values["extensions"].split(",") if e.strip()]
        return cls(**values)

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        for name in ("postgres_port", "companion_port"):
            port = getattr(self, name)
            if not 1 <= int(port) <= 65535:
                errors.append(f"{name} must be between 1 and 65535")

        if self.postgres_port == self.companion_port:
            errors.append("postgres_port and companion_port must differ")

        for name in ("admin_role", "db_user"):
            if not re.match(ROLE_NAME_PATTERN, getattr(self, name) or ""):
                errors.append(f"{name} is not a valid role name")

        for ext in list(self.extensions) + [self.primary_extension]:
            if not re.match(EXTENSION_NAME_PATTERN, ext or ""):
                errors.append(f"invalid extension name: {ext!r}")

        if self.readiness_deadline_seconds <= 0:
            errors.append("readiness_deadline_seconds must be positive")

        if self.readiness_interval_seconds <= 0:
            errors.append("readiness_interval_seconds must be positive")

        if self.log_format not in ("json", "text"):
            errors.append("log_format must be 'json' or 'text'")

        return errors


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "StartStage",
    "StageResult",
    "StartResult",
    "ServiceConfig",
    "new_run_id",
]
