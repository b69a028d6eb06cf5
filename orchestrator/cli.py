"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the local database supervisor.

- Provides argparse-based CLI
- Loads configuration from YAML, .env / environment, settings.json
  and CLI flags (later sources win)
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli serve --root /opt/portable-postgis
python -m orchestrator.cli start --port 5433
python -m orchestrator.cli audit --prepare
python -m orchestrator.cli extensions --enable hstore
python -m orchestrator.cli check-port --port 5432
python -m orchestrator.cli wipe --yes

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import ServiceConfig, StartStage
from .core import StartupOrchestrator, setup_logging
from .settings_store import SettingsStore
from cluster import is_port_available
from core.exceptions import ServiceError


ACTIONS = ("serve", "start", "audit", "wipe", "extensions", "check-port")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="pgsupervisor",
        description="Portable PostgreSQL/PostGIS service supervisor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Actions:
  serve       - Start the database (and companion) and run until Ctrl+C
  start       - Bootstrap, start and reconcile once, then stop again
  audit       - Classify (and repair) the cluster directory
  wipe        - Stop everything and delete the data directory
  extensions  - List, enable or disable extensions on a running server
  check-port  - Check that the configured ports are free

Examples:
  %(prog)s serve --with-companion
  %(prog)s start --port 5433 --log-format json
  %(prog)s extensions --enable postgis_raster
        """
    )

    parser.add_argument(
        "action",
        nargs="?",
        choices=ACTIONS,
        default="serve",
        help="Action to run (default: serve)",
    )

    # --------------------------------------------------------
    # Configuration Sources
    # --------------------------------------------------------
    source_group = parser.add_argument_group("Configuration Sources")

    source_group.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        help="YAML configuration file (replaces environment defaults)",
    )

    source_group.add_argument(
        "--env-file",
        type=str,
        metavar="PATH",
        help="dotenv file to load before reading the environment",
    )

    source_group.add_argument(
        "--settings",
        type=str,
        metavar="PATH",
        help="settings.json of the desktop app (ports and credentials)",
    )

    # --------------------------------------------------------
    # Install Options
    # --------------------------------------------------------
    install_group = parser.add_argument_group("Install Options")

    install_group.add_argument("--root", type=str, metavar="PATH", help="Install root")
    install_group.add_argument("--bin-dir", type=str, metavar="PATH", help="Override <root>/bin/<platform>")
    install_group.add_argument("--data-dir", type=str, metavar="PATH", help="Override <root>/data")

    # --------------------------------------------------------
    # Service Options
    # --------------------------------------------------------
    service_group = parser.add_argument_group("Service Options")

    service_group.add_argument("--port", type=int, metavar="PORT", help="Database port")
    service_group.add_argument("--companion-port", type=int, metavar="PORT", help="pgAdmin port")

    service_group.add_argument(
        "--with-companion",
        action="store_true",
        help="Also start pgAdmin once the database is ready",
    )

    service_group.add_argument(
        "--readiness-timeout",
        type=float,
        metavar="SECONDS",
        help="Readiness deadline in seconds (default: 30)",
    )

    service_group.add_argument(
        "--no-port-check",
        action="store_true",
        help="Skip the port availability check before starting",
    )

    # --------------------------------------------------------
    # Action Options
    # --------------------------------------------------------
    action_group = parser.add_argument_group("Action Options")

    action_group.add_argument(
        "--prepare",
        action="store_true",
        help="audit: also purge a corrupt directory",
    )

    action_group.add_argument(
        "--yes",
        action="store_true",
        help="wipe: confirm deletion of all data",
    )

    action_group.add_argument("--enable", type=str, metavar="NAME", help="extensions: enable NAME")
    action_group.add_argument("--disable", type=str, metavar="NAME", help="extensions: disable NAME")
    action_group.add_argument("--database", type=str, metavar="NAME", help="extensions: target database")

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: text)",
    )

    # --------------------------------------------------------
    # Version/Info
    # --------------------------------------------------------
    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    parser.add_argument(
        "--show-stages",
        action="store_true",
        help="Show startup stages and exit",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []

    for name in ("port", "companion_port"):
        value = getattr(args, name)
        if value is not None and not 1 <= value <= 65535:
            errors.append(f"--{name.replace('_', '-')} must be between 1 and 65535")

    if args.readiness_timeout is not None and args.readiness_timeout <= 0:
        errors.append("--readiness-timeout must be positive")

    if args.action == "wipe" and not args.yes:
        errors.append("wipe deletes all data; pass --yes to confirm")

    if args.action == "extensions" and args.enable and args.disable:
        errors.append("--enable and --disable are mutually exclusive")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> ServiceConfig:
    """
    Build service configuration from all sources.

    Order: YAML file or environment, then settings.json, then flags.
    """
    if args.config:
        config = ServiceConfig.from_yaml(Path(args.config))
    else:
        config = ServiceConfig.from_env(args.env_file)

    if args.settings:
        store = SettingsStore(Path(args.settings))
        store.load()
        config = store.to_service_config(config)

    return apply_flag_overrides(config, args)


def apply_flag_overrides(config: ServiceConfig, args: argparse.Namespace) -> ServiceConfig:
    """Apply explicit command-line flags on top of a configuration."""
    overrides: Dict[str, Any] = {}
    if args.root:
        overrides["install_root"] = args.root
    if args.bin_dir:
        overrides["bin_dir"] = args.bin_dir
    if args.data_dir:
        overrides["data_dir"] = args.data_dir
    if args.port is not None:
        overrides["postgres_port"] = args.port
    if args.companion_port is not None:
        overrides["companion_port"] = args.companion_port
    if args.readiness_timeout is not None:
        overrides["readiness_deadline_seconds"] = args.readiness_timeout
    if args.no_port_check:
        overrides["check_port"] = False
    if args.with_companion:
        overrides["start_companion"] = True
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format

    return replace(config, **overrides)


# ============================================================
# SHOW STAGES
# ============================================================

def show_stages() -> None:
    """Print startup stages."""
    print("\nStartup stages")
    print("=" * 60)

    for i, stage in enumerate(StartStage.get_ordered_stages(), 1):
        kind = "critical" if stage.critical else "soft"
        print(f"  {i:2d}. [{stage.order:02d}] {stage.stage_id:20s} ({kind:8s}) - {stage.description}")

    print("\nWhen the server is already running only these run:")
    print("  " + ", ".join(s.stage_id for s in StartStage.get_stages_for(already_running=True)))
    print()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ============================================================
# ACTIONS
# ============================================================

async def _run_start(orchestrator: StartupOrchestrator, config: ServiceConfig) -> int:
    try:
        result = await orchestrator.start_database(config)
        if result.ready and config.start_companion:
            await orchestrator.start_companion(config)
        _print_json(result.to_dict())
        return 0 if result.success else 1
    finally:
        orchestrator.stop_all()
        await orchestrator.supervisor.drain(timeout=config.shutdown_timeout_seconds)


async def _run_extensions(
    orchestrator: StartupOrchestrator,
    config: ServiceConfig,
    args: argparse.Namespace,
) -> int:
    if args.enable:
        await orchestrator.enable_extension(args.enable, config, args.database)
        print(f"Enabled {args.enable}")
    elif args.disable:
        await orchestrator.disable_extension(args.disable, config, args.database)
        print(f"Disabled {args.disable}")

    states = await orchestrator.list_extensions(config, database=args.database)
    _print_json([s.to_dict() for s in states])
    return 0


def _run_check_port(config: ServiceConfig) -> int:
    ports = {"postgres": config.postgres_port, "pgadmin": config.companion_port}
    status = {name: is_port_available(port) for name, port in ports.items()}
    _print_json({name: {"port": ports[name], "available": free} for name, free in status.items()})
    return 0 if all(status.values()) else 1


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(
    args: argparse.Namespace,
    config: Optional[ServiceConfig] = None,
    orchestrator: Optional[StartupOrchestrator] = None,
) -> int:
    """
    Async main entry point.

    Args:
        args: Parsed arguments
        config: Prebuilt configuration (built from args if omitted)
        orchestrator: Prebuilt orchestrator (created if omitted)

    Returns:
        Exit code
    """
    config = config or build_config(args)
    orchestrator = orchestrator or StartupOrchestrator(config=config)

    try:
        if args.action == "serve":
            result = await orchestrator.run_forever(config)
            return 0 if result.success else 1

        if args.action == "start":
            return await _run_start(orchestrator, config)

        if args.action == "audit":
            report = orchestrator.audit_directory(config, prepare=args.prepare)
            _print_json(report.to_dict())
            return 0

        if args.action == "wipe":
            return 0 if await orchestrator.wipe_data(config) else 1

        if args.action == "extensions":
            return await _run_extensions(orchestrator, config, args)

        if args.action == "check-port":
            return _run_check_port(config)

        logging.error(f"Unknown action: {args.action}")
        return 2

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130
    except ServiceError as e:
        logging.error(e.to_log_format())
        return 1
    except Exception as e:
        logging.error(f"Fatal error: {e}", exc_info=True)
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.show_stages:
        show_stages()
        return 0

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = build_config(args)
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

    return asyncio.run(async_main(args, config))


def print_banner(args: argparse.Namespace, config: ServiceConfig) -> None:
    """Print startup banner."""
    layout = config.layout
    print()
    print("=" * 60)
    print("  PORTABLE POSTGIS")
    print("  Local Database Supervisor")
    print("=" * 60)
    print(f"  Action:     {args.action}")
    print(f"  Root:       {layout.root}")
    print(f"  Data:       {layout.cluster_dir}")
    print(f"  Port:       {config.postgres_port}")
    print(f"  Companion:  {config.companion_port if config.start_companion else 'off'}")
    print(f"  Log Level:  {config.log_level}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
