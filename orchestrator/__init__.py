"""
Orchestrator Package - Service Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
This package is the single entrypoint the desktop shell and the
CLI use to control the local database and its companion tool.

============================================================
CORE PRINCIPLES
============================================================
1. The orchestrator has NO cluster logic of its own
2. Configuration is passed in; core packages never read settings
3. Every start is a sequence of typed stages
4. Nothing a child process does can crash the controller

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                 StartupOrchestrator                 |
    |-----------------------------------------------------|
    |  StartStage     |  7 stages in strict order         |
    |  Pipeline       |  Stage execution coordination     |
    |  ServiceConfig  |  env / .env / YAML configuration  |
    |  SettingsStore  |  desktop settings.json            |
    |  CLI            |  Command-line interface           |
    +-----------------------------------------------------+

============================================================
STARTUP STAGES
============================================================
 1. VALIDATE_BINARIES  - Validate bundled server binaries
 2. CHECK_PORT         - Check the server port is free
 3. AUDIT_DIRECTORY    - Audit and repair the cluster directory
 4. BOOTSTRAP_CLUSTER  - Initialize a new cluster
 5. START_SERVER       - Start the database server
 6. WAIT_READY         - Wait for connections (soft)
 7. RECONCILE          - Database, roles, extensions (soft)

============================================================
USAGE
============================================================

    from orchestrator import create_orchestrator

    orchestrator = create_orchestrator()
    result = await orchestrator.start_database()
    if result.ready:
        await orchestrator.start_companion()

============================================================
"""

from .models import (
    ServiceConfig,
    StageResult,
    StartResult,
    StartStage,
)
from .pipeline import StageExecutor, StageHandler, StartupPipeline
from .settings_store import AppSettings, SettingsStore
from .core import StartupOrchestrator, create_orchestrator, setup_logging
from .cli import create_parser, main

__all__ = [
    # Models
    "ServiceConfig",
    "StageResult",
    "StartResult",
    "StartStage",

    # Pipeline
    "StageExecutor",
    "StageHandler",
    "StartupPipeline",

    # Settings
    "AppSettings",
    "SettingsStore",

    # Core
    "StartupOrchestrator",
    "create_orchestrator",
    "setup_logging",

    # CLI
    "create_parser",
    "main",
]
