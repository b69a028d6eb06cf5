"""
Core Module Package.

This package contains the infrastructure components that all
other packages depend on.

Components:
- exceptions: Custom exception hierarchy
- constants: Cluster layout, timings and service identifiers
- layout: Install-root relative binary and data paths
- commands: One-shot external command runner
"""

from .exceptions import ServiceError, ConfigurationError, MissingBinaryError
from .layout import InstallLayout
from .commands import CommandResult, run_command

__all__ = [
    "ServiceError",
    "ConfigurationError",
    "MissingBinaryError",
    "InstallLayout",
    "CommandResult",
    "run_command",
]
