"""
Cluster - Readiness.

============================================================
RESPONSIBILITY
============================================================
Confirms the server accepts TCP connections.

The server exposes no readiness callback, so acceptance of a fresh
connection is the only signal available without parsing its logs.

- One attempt every 0.5s, each bounded to 0.2s
- Resolves on the first accepted connection
- Raises ReadinessTimeout after a 30s wall-clock deadline
- Sleeps on the event loop between attempts; never busy-waits

============================================================
"""

import asyncio
import logging
import os
import socket

from core.constants import (
    LOCALHOST,
    READINESS_ATTEMPT_TIMEOUT_SECONDS,
    READINESS_DEADLINE_SECONDS,
    READINESS_POLL_INTERVAL_SECONDS,
)
from core.exceptions import ReadinessTimeout

logger = logging.getLogger(__name__)


class ReadinessWaiter:
    """Polls a TCP port until it accepts a connection."""

    def __init__(
        self,
        host: str = LOCALHOST,
        interval_seconds: float = READINESS_POLL_INTERVAL_SECONDS,
        attempt_timeout_seconds: float = READINESS_ATTEMPT_TIMEOUT_SECONDS,
        deadline_seconds: float = READINESS_DEADLINE_SECONDS,
    ):
        self.host = host
        self.interval_seconds = interval_seconds
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self.deadline_seconds = deadline_seconds

    async def probe(self, port: int) -> bool:
        """Make one bounded connection attempt."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, port),
                timeout=self.attempt_timeout_seconds,
            )
        except (asyncio.TimeoutError, OSError):
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def wait_for_port(self, port: int) -> float:
        """
        Wait until the port accepts connections.

        Returns:
            Seconds waited

        Raises:
            ReadinessTimeout: No connection accepted before the deadline
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + self.deadline_seconds
        attempts = 0

        while True:
            attempts += 1
            if await self.probe(port):
                elapsed = loop.time() - started
                logger.info(f"Port {port} ready after {elapsed:.2f}s ({attempts} attempts)")
                return elapsed

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"Port {port} not ready after {attempts} attempts")
                raise ReadinessTimeout(port, self.host, self.deadline_seconds)

            # Ticks are anchored to the start so slow attempts do not stretch the cadence
            next_tick = started + attempts * self.interval_seconds
            await asyncio.sleep(max(0.0, min(next_tick - loop.time(), remaining)))


def is_port_available(port: int, host: str = LOCALHOST) -> bool:
    """Check that nothing is listening on the port by binding to it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        if os.name != "nt":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


__all__ = ["ReadinessWaiter", "is_port_available"]
