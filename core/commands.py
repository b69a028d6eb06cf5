"""
Core Module - One-Shot Commands.

============================================================
RESPONSIBILITY
============================================================
Runs external one-shot tools (initdb, psql, createdb, pgAdmin setup)
on the event loop and turns every outcome into a CommandResult.

- Output is read line by line while the tool runs
- A missing or non-executable binary becomes a failed result
- Nothing here raises for a failing tool

There is deliberately no timeout: the call returns when the tool exits.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)


LineSink = Callable[[str], None]


# ============================================================
# COMMAND RESULT
# ============================================================

@dataclass
class CommandResult:
    """Outcome of one external command."""

    program: str
    args: List[str] = field(default_factory=list)
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
    """Set when the process could not be spawned at all."""

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0

    @property
    def spawned(self) -> bool:
        return self.error is None

    @property
    def diagnostic(self) -> str:
        """Best human-readable explanation of a failure."""
        if self.error:
            return self.error
        text = self.stderr.strip() or self.stdout.strip()
        if text:
            return text
        return f"exited with code {self.returncode}"

    @property
    def lines(self) -> List[str]:
        """Non-empty stdout lines (psql unaligned tuples-only output)."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]

    @property
    def rows(self) -> List[List[str]]:
        """stdout split into '|' separated columns."""
        return [[col.strip() for col in line.split("|")] for line in self.lines]

    @property
    def command_line(self) -> str:
        return " ".join([self.program, *self.args])


CommandRunner = Callable[..., Awaitable[CommandResult]]


# ============================================================
# RUNNER
# ============================================================

async def _pump(stream: Optional[asyncio.StreamReader], sink: List[str], on_line: Optional[LineSink]) -> None:
    if stream is None:
        return
    while True:
        raw = await stream.readline()
        if not raw:
            break
        text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        sink.append(text)
        if on_line and text.strip():
            on_line(text)


async def run_command(
    program: Union[str, Path],
    args: Sequence[str] = (),
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Union[str, Path]] = None,
    on_line: Optional[LineSink] = None,
) -> CommandResult:
    """
    Run a command to completion.

    Args:
        program: Executable path
        args: Arguments
        env: Full environment for the child (None inherits ours)
        cwd: Working directory
        on_line: Called with every non-empty stdout/stderr line as it arrives

    Returns:
        CommandResult, never raises for tool failures
    """
    program = str(program)
    arg_list = [str(a) for a in args]
    result = CommandResult(program=program, args=arg_list)

    try:
        process = await asyncio.create_subprocess_exec(
            program,
            *arg_list,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
            cwd=str(cwd) if cwd else None,
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
        result.error = f"{type(e).__name__}: {e}"
        logger.debug(f"Spawn failed for {program}: {result.error}")
        return result
    except OSError as e:
        result.error = f"OSError: {e}"
        logger.debug(f"Spawn failed for {program}: {result.error}")
        return result

    out_lines: List[str] = []
    err_lines: List[str] = []
    await asyncio.gather(
        _pump(process.stdout, out_lines, on_line),
        _pump(process.stderr, err_lines, on_line),
    )
    result.returncode = await process.wait()
    result.stdout = "\n".join(out_lines)
    result.stderr = "\n".join(err_lines)
    return result


def merged_env(base: Optional[Mapping[str, str]], extra: Mapping[str, str]) -> Dict[str, str]:
    """Overlay extra variables on a base environment."""
    env = dict(base or {})
    env.update({k: str(v) for k, v in extra.items()})
    return env


__all__ = [
    "CommandResult",
    "CommandRunner",
    "LineSink",
    "run_command",
    "merged_env",
]
