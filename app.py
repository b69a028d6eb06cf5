#!/usr/bin/env python3
"""
Portable PostGIS - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the supervisor.

- Compatible with PM2 / systemd style process management
- Can be started, stopped, and restarted safely
- Handles SIGINT/SIGTERM gracefully (serve)
- Picks up <root>/data/settings.json when present

============================================================
USAGE
============================================================
Direct execution:
    python app.py serve --root /opt/portable-postgis --with-companion

One-shot provisioning (bootstrap + reconcile, then stop):
    python app.py start

Environment-based configuration:
    INSTALL_ROOT=/opt/portable-postgis POSTGRES_PORT=5433 python app.py

============================================================
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from orchestrator.cli import (
    apply_flag_overrides,
    async_main,
    build_config,
    create_parser,
    print_banner,
    show_stages,
    validate_args,
)
from core.exceptions import ServiceError
from orchestrator.core import StartupOrchestrator, setup_logging
from orchestrator.models import ServiceConfig
from orchestrator.settings_store import SETTINGS_FILE_NAME, SettingsStore
from supervisor import ProcessExit


logger = logging.getLogger("app")


# ============================================================
# EXIT NOTIFICATIONS
# ============================================================

def log_service_exit(event: ProcessExit) -> None:
    """Report every service exit; non-zero codes are warnings."""
    if event.clean:
        logger.info(f"Service {event.service_id} stopped")
    else:
        logger.warning(f"Service {event.service_id} exited with code {event.code}")


# ============================================================
# CONFIGURATION
# ============================================================

def resolve_config(args) -> ServiceConfig:
    """
    Build configuration, applying the desktop settings file from the
    data directory when no --settings path was given.
    """
    config = build_config(args)
    if args.settings:
        return config

    settings_path = config.layout.data_dir / SETTINGS_FILE_NAME
    if settings_path.exists():
        logger.debug(f"Applying settings from {settings_path}")
        store = SettingsStore(settings_path)
        store.load()
        # Explicit flags still win over the settings file
        config = apply_flag_overrides(store.to_service_config(config), args)
    return config


# ============================================================
# MAIN FUNCTION
# ============================================================

async def run_application(args, config: ServiceConfig) -> int:
    orchestrator = StartupOrchestrator(config=config, on_service_exit=log_service_exit)
    return await async_main(args, config, orchestrator)


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if args.show_stages:
        show_stages()
        return 0

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = resolve_config(args)
    except ServiceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    config_errors = config.validate()
    if config_errors:
        for error in config_errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format)

    if args.action == "serve":
        print_banner(args, config)

    return asyncio.run(run_application(args, config))


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
