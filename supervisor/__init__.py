"""
Supervisor Package - Process Lifecycle.

Owns the OS child processes of the database server and the
companion tool. See process_manager for the lifecycle contract.
"""

from .models import ExitCallback, LogSink, ManagedProcess, ProcessExit, SpawnOptions
from .process_manager import ServiceSupervisor, default_log_sink

__all__ = [
    "ExitCallback",
    "LogSink",
    "ManagedProcess",
    "ProcessExit",
    "SpawnOptions",
    "ServiceSupervisor",
    "default_log_sink",
]
