"""
Supervisor - Process Manager.

============================================================
RESPONSIBILITY
============================================================
Owns the OS child processes of the supervised services.

- One child per service id; a second start is a no-op
- stdout and stderr are streamed line by line to a log sink
- stop() signals and forgets; death is reported by the exit event
- Exactly one exit notification per child, through one callback

============================================================
DESIGN PRINCIPLES
============================================================
- All table mutations happen on the event loop thread
- stderr is not an error channel (PostgreSQL logs there)
- A failed spawn registers nothing and raises nothing
- No force-kill escalation after a graceful terminate

============================================================
"""

import asyncio
import inspect
import logging
from typing import Dict, List, Optional, Sequence, Set

from core.exceptions import ConfigurationError, MissingBinaryError

from .models import (
    ExitCallback,
    LogSink,
    ManagedProcess,
    ProcessExit,
    SpawnOptions,
)

logger = logging.getLogger(__name__)
service_logger = logging.getLogger("supervisor.services")


def default_log_sink(line: str) -> None:
    """Route service output to the standard logging tree."""
    service_logger.info(line)


# ============================================================
# SERVICE SUPERVISOR
# ============================================================

class ServiceSupervisor:
    """
    Supervises long-running service processes keyed by id.

    The exit callback is invoked once per child exit with a
    ProcessExit, including children that were stopped on purpose.
    """

    def __init__(self, on_exit: Optional[ExitCallback] = None):
        self._processes: Dict[str, ManagedProcess] = {}
        self._starting: Set[str] = set()
        self._watchers: Set["asyncio.Task[None]"] = set()
        self._on_exit = on_exit

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def service_ids(self) -> List[str]:
        """Ids of all tracked services."""
        return list(self._processes)

    def set_exit_callback(self, on_exit: Optional[ExitCallback]) -> None:
        """Replace the exit callback."""
        self._on_exit = on_exit

    def is_running(self, service_id: str) -> bool:
        """Check whether a service is tracked."""
        return service_id in self._processes

    def get(self, service_id: str) -> Optional[ManagedProcess]:
        """Get the record of a tracked service."""
        return self._processes.get(service_id)

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(
        self,
        service_id: str,
        command: str,
        args: Sequence[str] = (),
        options: Optional[SpawnOptions] = None,
        on_log: Optional[LogSink] = None,
    ) -> Optional[ManagedProcess]:
        """
        Start a service process.

        Args:
            service_id: Unique id (e.g. 'postgres', 'pgadmin')
            command: Path to executable
            args: Arguments
            options: Environment and working directory
            on_log: Sink for prefixed output lines

        Returns:
            The new ManagedProcess, or None when the id is already
            tracked or the spawn failed
        """
        log = on_log or default_log_sink
        options = options or SpawnOptions()
        command = str(command)
        arg_list = [str(a) for a in args]

        if service_id in self._processes or service_id in self._starting:
            logger.warning(f"Redundant start ignored for service {service_id}")
            log(f"[{service_id}] Process already running.")
            return None

        self._starting.add(service_id)
        try:
            log(f"[{service_id}] Starting {command} {' '.join(arg_list)}".rstrip())

            try:
                process = await asyncio.create_subprocess_exec(
                    command,
                    *arg_list,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=options.env,
                    cwd=str(options.cwd) if options.cwd else None,
                )
            except FileNotFoundError as e:
                error: ConfigurationError = MissingBinaryError(service_id, command, cause=e)
                self._report_spawn_failure(service_id, error, log)
                return None
            except OSError as e:
                error = ConfigurationError(
                    message=f"Cannot execute {command}: {e}",
                    config_key=service_id,
                    cause=e,
                )
                self._report_spawn_failure(service_id, error, log)
                return None

            managed = ManagedProcess(
                service_id=service_id,
                process=process,
                command=command,
                args=arg_list,
                env=options.env,
            )
            self._processes[service_id] = managed

            watcher = asyncio.create_task(self._watch(managed, log))
            managed.watcher = watcher
            self._watchers.add(watcher)
            watcher.add_done_callback(self._watchers.discard)

            logger.info(f"Service {service_id} started (pid={process.pid})")
            return managed
        finally:
            self._starting.discard(service_id)

    def stop(self, service_id: str) -> None:
        """
        Request graceful termination and drop the record.

        Does not wait for the process to die.
        """
        managed = self._processes.pop(service_id, None)
        if managed is None:
            return

        logger.info(f"[{service_id}] Stopping...")
        if managed.process.returncode is None:
            try:
                managed.process.terminate()
            except ProcessLookupError:
                logger.debug(f"[{service_id}] Process already gone")

    def stop_all(self) -> None:
        """Stop every tracked service."""
        for service_id in list(self._processes):
            self.stop(service_id)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for outstanding exit notifications.

        Returns:
            True if every watcher finished within the timeout
        """
        pending = [w for w in self._watchers if not w.done()]
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    # --------------------------------------------------------
    # Internals
    # --------------------------------------------------------

    def _report_spawn_failure(self, service_id: str, error: ConfigurationError, log: LogSink) -> None:
        logger.error(error.to_log_format())
        log(f"[{service_id}] Failed to start: {error.message}")

    async def _stream(self, stream: Optional[asyncio.StreamReader], prefix: str, log: LogSink) -> None:
        if stream is None:
            return
        try:
            while True:
                raw = await stream.readline()
                if not raw:
                    break
                text = raw.decode("utf-8", errors="replace").rstrip()
                if text:
                    log(f"{prefix} {text}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{prefix} Error reading output: {e}")

    async def _watch(self, managed: ManagedProcess, log: LogSink) -> None:
        prefix = f"[{managed.service_id}]"
        process = managed.process

        await asyncio.gather(
            self._stream(process.stdout, prefix, log),
            self._stream(process.stderr, prefix, log),
        )
        code = await process.wait()

        log(f"{prefix} Process exited with code {code}")

        # A stop followed by a fresh start must keep the new record
        if self._processes.get(managed.service_id) is managed:
            del self._processes[managed.service_id]

        await self._publish(ProcessExit(service_id=managed.service_id, code=code))

    async def _publish(self, event: ProcessExit) -> None:
        if self._on_exit is None:
            return
        try:
            result = self._on_exit(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Exit callback failed for {event.service_id}: {e}", exc_info=True)

    def get_status(self) -> Dict[str, Dict]:
        """Get a status summary of tracked services."""
        return {sid: managed.to_dict() for sid, managed in self._processes.items()}


__all__ = [
    "ServiceSupervisor",
    "default_log_sink",
]
