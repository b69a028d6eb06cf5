"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the service supervisor.

- Provides clear exception hierarchy
- Separates fatal startup errors from soft, self-healing ones
- Supports error categorization for logging
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
ServiceError (base)
├── ConfigurationError
│   ├── MissingBinaryError
│   └── InvalidConfigError
├── DirectoryError
│   └── DirectoryCorruptionError
├── BootstrapFailure
├── ReadinessTimeout
├── CommandError
│   └── ExtensionEnableFailure
└── OrchestrationError
    ├── StartupError
    └── PipelineError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .constants import BENIGN_EXISTS_MARKERS


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for logging."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, the affected service cannot run."""

    CRITICAL = "critical"
    """Critical issue, the whole start sequence is aborted."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error is corrected automatically (repair, purge, skip)."""

    TRANSIENT = "transient"
    """Temporary error, the condition may clear by itself."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class ServiceError(Exception):
    """
    Base exception for all supervisor errors.

    All exceptions carry:
    - severity: for logging
    - context: for debugging
    - recoverable: for error handling decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    @property
    def is_fatal(self) -> bool:
        """Check if error aborts the start sequence."""
        return self.classification == ErrorClassification.NON_RECOVERABLE

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = (
            f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
            f" | recoverable={self.recoverable}"
        )
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(ServiceError):
    """Error in configuration or installation layout."""

    default_severity = Severity.HIGH
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:200]

        super().__init__(message, context=context, **kwargs)


class MissingBinaryError(ConfigurationError):
    """A required executable is not installed where expected."""

    def __init__(self, binary: str, path: Any, **kwargs):
        super().__init__(
            message=f"Binary '{binary}' not found at {path}. Please run setup.",
            config_key=binary,
            actual_value=path,
            **kwargs,
        )
        self.binary = binary
        self.path = path


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            config_key=key,
            actual_value=value,
            context={"reason": reason},
        )


# ============================================================
# DATA DIRECTORY ERRORS
# ============================================================

class DirectoryError(ServiceError):
    """Base class for cluster directory errors."""

    default_severity = Severity.MEDIUM
    default_recoverable = True
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(self, message: str, path: Optional[Any] = None, **kwargs):
        context = kwargs.pop("context", {})
        if path is not None:
            context["path"] = str(path)
        super().__init__(message, context=context, **kwargs)


class DirectoryCorruptionError(DirectoryError):
    """
    Cluster directory is corrupt and could not be reset.

    Corruption itself is self-healing (purge + bootstrap); this error is
    only raised once that healing step fails.
    """

    default_severity = Severity.CRITICAL
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE


# ============================================================
# BOOTSTRAP ERRORS
# ============================================================

class BootstrapFailure(ServiceError):
    """The cluster-create tool exited with a non-zero code."""

    default_severity = Severity.CRITICAL
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        diagnostic: str = "",
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if returncode is not None:
            context["returncode"] = returncode
        super().__init__(message, context=context, **kwargs)
        self.returncode = returncode
        self.diagnostic = diagnostic


# ============================================================
# READINESS ERRORS
# ============================================================

class ReadinessTimeout(ServiceError):
    """Server did not accept connections before the deadline."""

    default_severity = Severity.MEDIUM
    default_recoverable = True
    default_classification = ErrorClassification.TRANSIENT

    def __init__(self, port: int, host: str, timeout_seconds: float):
        super().__init__(
            message=f"Timeout waiting for port {host}:{port} after {timeout_seconds:.1f}s",
            context={"port": port, "host": host, "timeout_seconds": timeout_seconds},
        )
        self.port = port


# ============================================================
# EXTERNAL COMMAND ERRORS
# ============================================================

class CommandError(ServiceError):
    """An external one-shot command failed."""

    default_severity = Severity.MEDIUM
    default_recoverable = True
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        program: Optional[str] = None,
        returncode: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if program:
            context["program"] = program
        if returncode is not None:
            context["returncode"] = returncode
        super().__init__(message, context=context, **kwargs)


class ExtensionEnableFailure(CommandError):
    """A single extension could not be enabled. Soft, per extension."""

    default_severity = Severity.LOW

    def __init__(self, extension: str, database: str, reason: str):
        super().__init__(
            message=f"Failed to enable extension {extension} in {database}: {reason}",
            context={"extension": extension, "database": database},
        )
        self.extension = extension


# ============================================================
# ORCHESTRATION ERRORS
# ============================================================

class OrchestrationError(ServiceError):
    """Base class for orchestration-related errors."""

    default_severity = Severity.HIGH
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE


class StartupError(OrchestrationError):
    """Service start sequence failed."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        service_id: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if stage:
            context["stage"] = stage
        if service_id:
            context["service_id"] = service_id

        super().__init__(message, context=context, **kwargs)


class PipelineError(OrchestrationError):
    """Startup pipeline error."""

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if stage:
            context["stage"] = stage
        super().__init__(message, context=context, **kwargs)


# ============================================================
# EXCEPTION UTILITIES
# ============================================================

def classify_exception(exc: Exception) -> ErrorClassification:
    """Classify an exception for error handling."""
    if isinstance(exc, ServiceError):
        return exc.classification

    if isinstance(exc, (FileNotFoundError, PermissionError)):
        return ErrorClassification.NON_RECOVERABLE

    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return ErrorClassification.TRANSIENT

    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorClassification.RECOVERABLE

    if isinstance(exc, (SystemExit, KeyboardInterrupt, MemoryError)):
        return ErrorClassification.NON_RECOVERABLE

    return ErrorClassification.RECOVERABLE


def wrap_exception(
    exc: Exception,
    wrapper_class: type = ServiceError,
    message: Optional[str] = None,
    **kwargs,
) -> ServiceError:
    """Wrap a standard exception in a ServiceError."""
    msg = message or f"{type(exc).__name__}: {exc}"
    return wrapper_class(message=msg, cause=exc, **kwargs)


def is_benign_exists_error(text: Optional[str]) -> bool:
    """
    Check whether a tool's error text only reports that the object
    being created is already there.
    """
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in BENIGN_EXISTS_MARKERS)


__all__ = [
    "Severity",
    "ErrorClassification",
    "ServiceError",
    "ConfigurationError",
    "MissingBinaryError",
    "InvalidConfigError",
    "DirectoryError",
    "DirectoryCorruptionError",
    "BootstrapFailure",
    "ReadinessTimeout",
    "CommandError",
    "ExtensionEnableFailure",
    "OrchestrationError",
    "StartupError",
    "PipelineError",
    "classify_exception",
    "wrap_exception",
    "is_benign_exists_error",
]
