"""
Cluster Package - Database Bootstrap Engine.

Everything that prepares, starts-up and reconciles the on-disk
PostgreSQL cluster, in dependency order:

    DataDirectoryAuditor -> BootstrapOrchestrator -> (server start)
    -> ReadinessWaiter -> ExtensionReconciler
"""

from .models import AuditReport, DirectoryState, ExtensionState, ReconcileReport
from .auditor import DataDirectoryAuditor
from .bootstrap import BootstrapOrchestrator
from .readiness import ReadinessWaiter, is_port_available
from .extensions import (
    ExtensionLayout,
    ExtensionSearchRoot,
    client_environment,
    list_shipped_extensions,
    resolve_extension_search_root,
)
from .sql_client import SqlClient
from .reconciler import ExtensionReconciler

__all__ = [
    "AuditReport",
    "DirectoryState",
    "ExtensionState",
    "ReconcileReport",
    "DataDirectoryAuditor",
    "BootstrapOrchestrator",
    "ReadinessWaiter",
    "is_port_available",
    "ExtensionLayout",
    "ExtensionSearchRoot",
    "client_environment",
    "list_shipped_extensions",
    "resolve_extension_search_root",
    "SqlClient",
    "ExtensionReconciler",
]
