"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
The composite controller the desktop shell and CLI talk to.

- Exposes the upward interface (start/stop/is_running/exit callback)
- Runs the database start as ordered, typed stages
- Launches the companion only against a ready database
- Tears the companion down when the database exits
- Handles signals (SIGINT, SIGTERM) in serve mode

============================================================
ARCHITECTURAL POSITION
============================================================
- This orchestrator has NO cluster logic of its own
- It does NOT read settings; configuration is passed in
- It ONLY sequences the cluster, supervisor and companion parts

============================================================
"""

import asyncio
import inspect
import json
import logging
import shutil
import signal
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .models import ServiceConfig, StartResult, StartStage, new_run_id
from .pipeline import StageHandler, StartupPipeline
from cluster import (
    AuditReport,
    BootstrapOrchestrator,
    DataDirectoryAuditor,
    ExtensionReconciler,
    ExtensionState,
    ReadinessWaiter,
    SqlClient,
    client_environment,
    is_port_available,
    resolve_extension_search_root,
)
from companion import CompanionToolLauncher
from core.commands import CommandRunner, run_command
from core.constants import SERVICE_COMPANION, SERVICE_POSTGRES
from core.exceptions import (
    ConfigurationError,
    MissingBinaryError,
    ReadinessTimeout,
    StartupError,
)
from supervisor import (
    ExitCallback,
    LogSink,
    ManagedProcess,
    ProcessExit,
    ServiceSupervisor,
    SpawnOptions,
    default_log_sink,
)


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "correlation_id": correlation_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


ReadinessFactory = Callable[[ServiceConfig], ReadinessWaiter]


def default_readiness_factory(config: ServiceConfig) -> ReadinessWaiter:
    return ReadinessWaiter(
        interval_seconds=config.readiness_interval_seconds,
        attempt_timeout_seconds=config.readiness_attempt_timeout_seconds,
        deadline_seconds=config.readiness_deadline_seconds,
    )


# ============================================================
# STARTUP ORCHESTRATOR
# ============================================================

class StartupOrchestrator:
    """
    Composite controller over one database and one companion.

    A single instance owns a single ServiceSupervisor. The caller
    registers at most one exit callback.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        supervisor: Optional[ServiceSupervisor] = None,
        runner: CommandRunner = run_command,
        readiness_factory: ReadinessFactory = default_readiness_factory,
        port_checker: Callable[[int], bool] = is_port_available,
        base_env: Optional[Mapping[str, str]] = None,
        on_service_exit: Optional[ExitCallback] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Default configuration for calls that pass none
            supervisor: Process supervisor (one is created if omitted)
            runner: One-shot command runner for initdb/psql/createdb
            readiness_factory: Builds the readiness waiter per config
            port_checker: Returns True when a port is free
            base_env: Environment the children inherit (None: ours)
            on_service_exit: Caller's exit callback
        """
        self.config = config or ServiceConfig()
        self._supervisor = supervisor or ServiceSupervisor()
        self._supervisor.set_exit_callback(self._handle_exit)
        self._runner = runner
        self._readiness_factory = readiness_factory
        self._port_checker = port_checker
        self._base_env = base_env
        self._on_service_exit = on_service_exit

        self._last_result: Optional[StartResult] = None
        self._serving = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._logger = logging.getLogger("orchestrator")

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def supervisor(self) -> ServiceSupervisor:
        return self._supervisor

    @property
    def last_result(self) -> Optional[StartResult]:
        """Result of the most recent start_database call."""
        return self._last_result

    def set_exit_callback(self, on_service_exit: Optional[ExitCallback]) -> None:
        """Register the caller's exit callback (replaces any previous one)."""
        self._on_service_exit = on_service_exit

    # --------------------------------------------------------
    # Upward interface: raw services
    # --------------------------------------------------------

    async def start(
        self,
        service_id: str,
        command: str,
        args: Sequence[str] = (),
        options: Optional[SpawnOptions] = None,
        on_log: Optional[LogSink] = None,
    ) -> Optional[ManagedProcess]:
        return await self._supervisor.start(service_id, command, args, options, on_log)

    def stop(self, service_id: str) -> None:
        self._supervisor.stop(service_id)

    def stop_all(self) -> None:
        self._supervisor.stop_all()

    def is_running(self, service_id: str) -> bool:
        return self._supervisor.is_running(service_id)

    def stop_database(self) -> None:
        self._supervisor.stop(SERVICE_POSTGRES)

    def stop_companion(self) -> None:
        self._supervisor.stop(SERVICE_COMPANION)

    async def _handle_exit(self, event: ProcessExit) -> None:
        """Single exit handler installed on the supervisor."""
        self._logger.info(f"Service {event.service_id} exited with code {event.code}")

        if event.service_id == SERVICE_POSTGRES:
            if self._supervisor.is_running(SERVICE_COMPANION):
                self._logger.info("Database exited; stopping companion")
                self._supervisor.stop(SERVICE_COMPANION)
            if self._serving and self._shutdown_event and not self._shutdown_event.is_set():
                self._logger.error("Database exited while serving; shutting down")
                self._shutdown_event.set()

        if self._on_service_exit is not None:
            try:
                result = self._on_service_exit(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(f"Exit callback failed: {e}", exc_info=True)

    # --------------------------------------------------------
    # Composite database start
    # --------------------------------------------------------

    async def start_database(
        self,
        config: Optional[ServiceConfig] = None,
        port: Optional[int] = None,
        on_log: Optional[LogSink] = None,
    ) -> StartResult:
        """
        Audit, bootstrap, start, wait for and reconcile the database.

        Never raises for service failures; everything is reported in
        the returned StartResult.

        Args:
            config: Configuration (defaults to the orchestrator's)
            port: Override for config.postgres_port
            on_log: Sink for service log lines (also collected in the result)

        Returns:
            StartResult; success means the server process is registered
        """
        config = (config or self.config).with_port(port)
        layout = config.layout
        forward = on_log or default_log_sink

        result = StartResult(run_id=new_run_id(), started_at=datetime.now(timezone.utc))

        def sink(line: str) -> None:
            result.log_lines.append(line)
            forward(line)

        search_root = resolve_extension_search_root(layout.postgres_home)
        client_env = client_environment(layout.postgres_home, search_root, self._base_env)

        already_running = self._supervisor.is_running(SERVICE_POSTGRES)
        result.already_running = already_running
        if already_running:
            sink("[postgres] Already running; checking readiness and extensions.")

        async def validate_binaries() -> Dict[str, Any]:
            errors = config.validate()
            if errors:
                raise ConfigurationError(message=f"Invalid configuration: {', '.join(errors)}")
            for name, path in (("postgres", layout.postgres_bin), ("initdb", layout.initdb_bin)):
                if not path.exists():
                    raise MissingBinaryError(name, path)
            return {"postgres_bin": str(layout.postgres_bin)}

        async def check_port() -> Dict[str, Any]:
            if not config.check_port:
                return {"skipped": True}
            if not self._port_checker(config.postgres_port):
                raise ConfigurationError(
                    message=f"Port {config.postgres_port} is already in use",
                    config_key="postgres_port",
                    actual_value=config.postgres_port,
                )
            return {"port": config.postgres_port}

        async def audit_directory() -> Dict[str, Any]:
            sink("[postgres] Checking data directory...")
            auditor = DataDirectoryAuditor(layout.cluster_dir, on_log=sink)
            report = auditor.prepare()
            result.audit_report = report
            return report.to_dict()

        async def bootstrap_cluster() -> Dict[str, Any]:
            report = result.audit_report
            if report is not None and not report.needs_bootstrap:
                return {"skipped": True}
            bootstrapper = BootstrapOrchestrator(
                layout.initdb_bin,
                admin_role=config.admin_role,
                runner=self._runner,
            )
            await bootstrapper.bootstrap(layout.cluster_dir, on_log=sink)
            return {"path": str(layout.cluster_dir)}

        async def start_server() -> Dict[str, Any]:
            sink(f"[postgres] Starting server on port {config.postgres_port}...")
            managed = await self._supervisor.start(
                SERVICE_POSTGRES,
                str(layout.postgres_bin),
                ["-D", str(layout.cluster_dir), "-p", str(config.postgres_port)],
                SpawnOptions(env=client_env),
                sink,
            )
            if managed is None:
                raise StartupError(
                    message="Database server process could not be started",
                    stage=StartStage.START_SERVER.stage_id,
                    service_id=SERVICE_POSTGRES,
                )
            return {"pid": managed.pid}

        async def wait_ready() -> Dict[str, Any]:
            sink(f"[postgres] Waiting for port {config.postgres_port}...")
            waiter = self._readiness_factory(config)
            try:
                elapsed = await waiter.wait_for_port(config.postgres_port)
            except ReadinessTimeout as e:
                sink(f"[postgres] {e.message}")
                raise
            result.ready = True
            sink("[postgres] Server is accepting connections.")
            return {"elapsed_seconds": round(elapsed, 3)}

        async def reconcile() -> Dict[str, Any]:
            reconciler = self._build_reconciler(config, sink, client_env, search_root)
            report = await reconciler.reconcile()
            result.reconcile_report = report
            return report.to_dict()

        handlers: Dict[StartStage, StageHandler] = {
            StartStage.VALIDATE_BINARIES: validate_binaries,
            StartStage.CHECK_PORT: check_port,
            StartStage.AUDIT_DIRECTORY: audit_directory,
            StartStage.BOOTSTRAP_CLUSTER: bootstrap_cluster,
            StartStage.START_SERVER: start_server,
            StartStage.WAIT_READY: wait_ready,
            StartStage.RECONCILE: reconcile,
        }

        pipeline = StartupPipeline(StartStage.get_stages_for(already_running), handlers)
        result = await pipeline.execute(result)

        if not result.success:
            sink(f"[postgres] Start failed: {result.error}")
        elif not result.ready:
            sink("[postgres] Server started but is not accepting connections yet.")

        self._last_result = result
        return result

    def _build_reconciler(
        self,
        config: ServiceConfig,
        on_log: Optional[LogSink] = None,
        client_env: Optional[Dict[str, str]] = None,
        search_root=None,
    ) -> ExtensionReconciler:
        layout = config.layout
        if search_root is None:
            search_root = resolve_extension_search_root(layout.postgres_home)
        if client_env is None:
            client_env = client_environment(layout.postgres_home, search_root, self._base_env)

        client = SqlClient(
            layout.psql_bin,
            layout.createdb_bin,
            config.postgres_port,
            user=config.admin_role,
            password=config.db_password or None,
            env=client_env,
            runner=self._runner,
        )
        return ExtensionReconciler(
            client,
            search_root,
            admin_role=config.admin_role,
            default_database=config.default_database,
            desired_extensions=config.extensions,
            primary_extension=config.primary_extension,
            login_role=config.login_role,
            login_password=config.db_password,
            on_log=on_log,
        )

    # --------------------------------------------------------
    # Companion
    # --------------------------------------------------------

    async def start_companion(
        self,
        config: Optional[ServiceConfig] = None,
        on_log: Optional[LogSink] = None,
    ) -> bool:
        """
        Start pgAdmin against a running, connectable database.

        Returns:
            True if the companion is running afterwards
        """
        config = config or self.config
        layout = config.layout

        primary_ready = False
        if self._supervisor.is_running(SERVICE_POSTGRES):
            primary_ready = await self._readiness_factory(config).probe(config.postgres_port)

        launcher = CompanionToolLauncher(
            self._supervisor,
            layout.python_bin,
            layout.python_home,
            layout.companion_data_dir,
            is_windows=layout.is_windows,
            runner=self._runner,
            base_env=self._base_env,
        )
        return await launcher.launch(
            primary_ready,
            db_port=config.postgres_port,
            port=config.companion_port,
            username=config.db_user,
            on_log=on_log,
        )

    # --------------------------------------------------------
    # Maintenance
    # --------------------------------------------------------

    def audit_directory(self, config: Optional[ServiceConfig] = None, prepare: bool = False) -> AuditReport:
        """Audit the cluster directory; with prepare, also purge if corrupt."""
        config = config or self.config
        auditor = DataDirectoryAuditor(config.layout.cluster_dir)
        return auditor.prepare() if prepare else auditor.audit()

    async def wipe_data(
        self,
        config: Optional[ServiceConfig] = None,
        on_log: Optional[LogSink] = None,
    ) -> bool:
        """
        Stop everything and delete the whole data root.

        Returns:
            True if the data root is gone afterwards
        """
        config = config or self.config
        sink = on_log or default_log_sink
        data_dir = config.layout.data_dir

        self._supervisor.stop_all()
        await self._supervisor.drain(timeout=config.shutdown_timeout_seconds)
        # Children may hold file handles briefly after exiting
        await asyncio.sleep(config.file_release_delay_seconds)

        if not data_dir.exists():
            sink(f"[system] Nothing to wipe at {data_dir}")
            return True

        try:
            shutil.rmtree(data_dir)
        except OSError as e:
            self._logger.error(f"Failed to wipe {data_dir}: {e}")
            sink(f"[system] Failed to wipe data: {e}")
            return False

        sink(f"[system] Wiped data directory {data_dir}")
        return True

    async def list_extensions(
        self,
        config: Optional[ServiceConfig] = None,
        names: Optional[List[str]] = None,
        database: Optional[str] = None,
    ) -> List[ExtensionState]:
        reconciler = self._build_reconciler(config or self.config)
        return await reconciler.list_extension_states(names, database)

    async def enable_extension(
        self,
        name: str,
        config: Optional[ServiceConfig] = None,
        database: Optional[str] = None,
    ) -> None:
        reconciler = self._build_reconciler(config or self.config)
        await reconciler.enable_extension(name, database)

    async def disable_extension(
        self,
        name: str,
        config: Optional[ServiceConfig] = None,
        database: Optional[str] = None,
    ) -> None:
        reconciler = self._build_reconciler(config or self.config)
        await reconciler.disable_extension(name, database)

    # --------------------------------------------------------
    # Serve loop
    # --------------------------------------------------------

    def request_shutdown(self) -> None:
        """Ask run_forever to stop."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run_forever(
        self,
        config: Optional[ServiceConfig] = None,
        on_log: Optional[LogSink] = None,
    ) -> StartResult:
        """
        Start the database (and companion) and keep them running until
        a signal arrives or the database exits.
        """
        config = config or self.config
        self._shutdown_event = asyncio.Event()
        self._install_signal_handlers()

        try:
            result = await self.start_database(config, on_log=on_log)
            if not result.success:
                return result

            if config.start_companion and result.ready:
                await self.start_companion(config, on_log=on_log)

            self._serving = True
            self._logger.info("=== SERVING | press Ctrl+C to stop ===")
            await self._shutdown_event.wait()
            return result
        finally:
            self._serving = False
            self._logger.info("=== SHUTDOWN SEQUENCE ===")
            self._supervisor.stop_all()
            drained = await self._supervisor.drain(timeout=config.shutdown_timeout_seconds)
            if not drained:
                self._logger.warning("Some services did not exit before the shutdown timeout")
            self._restore_signal_handlers()
            self._logger.info("=== SHUTDOWN COMPLETE ===")

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        self._loop = asyncio.get_running_loop()
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGBREAK, self._signal_handler)
        else:
            for sig in (signal.SIGTERM, signal.SIGINT):
                self._loop.add_signal_handler(sig, self._async_signal_handler, sig)

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                try:
                    loop.remove_signal_handler(sig)
                except (ValueError, RuntimeError) as e:
                    self._logger.debug(f"Could not remove handler for {sig}: {e}")

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows)."""
        self._logger.info(f"Received signal {signum}")
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.request_shutdown)

    def _async_signal_handler(self, sig: signal.Signals) -> None:
        """Loop signal handler (Unix)."""
        self._logger.info(f"Received signal {sig.name}")
        self.request_shutdown()

    # --------------------------------------------------------
    # Status
    # --------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Get orchestrator status."""
        return {
            "services": self._supervisor.get_status(),
            "database_running": self.is_running(SERVICE_POSTGRES),
            "companion_running": self.is_running(SERVICE_COMPANION),
            "serving": self._serving,
            "last_start": self._last_result.to_dict() if self._last_result else None,
        }


# ============================================================
# ORCHESTRATOR FACTORY
# ============================================================

def create_orchestrator(
    config: Optional[ServiceConfig] = None,
    on_service_exit: Optional[ExitCallback] = None,
    configure_logging: bool = True,
) -> StartupOrchestrator:
    """
    Factory function to create an orchestrator.

    Args:
        config: Configuration (or load from environment)
        on_service_exit: Exit callback
        configure_logging: Install the root log handler

    Returns:
        Configured StartupOrchestrator instance
    """
    if config is None:
        config = ServiceConfig.from_env()

    if configure_logging:
        correlation_id = f"run_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"
        setup_logging(config.log_level, config.log_format, correlation_id)

    return StartupOrchestrator(config=config, on_service_exit=on_service_exit)


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "StartupOrchestrator",
    "create_orchestrator",
    "setup_logging",
    "default_readiness_factory",
]
