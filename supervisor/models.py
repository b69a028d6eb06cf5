"""
Supervisor - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the process supervisor.

- ManagedProcess: one supervised OS child
- SpawnOptions: environment and working directory
- ProcessExit: the single exit notification payload

============================================================
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


LogSink = Callable[[str], None]


@dataclass
class SpawnOptions:
    """Options passed through to the child process."""

    env: Optional[Dict[str, str]] = None
    """Full child environment. None inherits the supervisor's."""

    cwd: Optional[Path] = None
    """Working directory."""


@dataclass(frozen=True)
class ProcessExit:
    """Published once per child exit."""

    service_id: str
    code: Optional[int]

    @property
    def clean(self) -> bool:
        return self.code == 0


ExitCallback = Callable[[ProcessExit], Any]


@dataclass
class ManagedProcess:
    """Runtime record of a supervised child process."""

    service_id: str
    process: asyncio.subprocess.Process
    command: str
    args: List[str] = field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    watcher: Optional["asyncio.Task[None]"] = None
    """Task that streams output and publishes the exit notification."""

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "service_id": self.service_id,
            "pid": self.pid,
            "command": self.command,
            "args": list(self.args),
            "started_at": self.started_at.isoformat(),
            "returncode": self.returncode,
        }


__all__ = [
    "LogSink",
    "SpawnOptions",
    "ProcessExit",
    "ExitCallback",
    "ManagedProcess",
]
