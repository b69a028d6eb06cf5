"""
Companion Package - pgAdmin launcher.

Runs the optional admin web tool against the local database,
supervised by the same ServiceSupervisor as the server itself.
"""

from .locator import CompanionInstall, locate_companion, search_entrypoint
from .launcher import (
    CompanionToolLauncher,
    companion_environment,
    render_local_config,
    server_profile,
)

__all__ = [
    "CompanionInstall",
    "locate_companion",
    "search_entrypoint",
    "CompanionToolLauncher",
    "companion_environment",
    "render_local_config",
    "server_profile",
]
