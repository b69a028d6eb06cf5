"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Defines all system-wide constants.

- Provides single source of truth for magic values
- Documents the on-disk cluster layout the auditor expects
- Fixes the timing contract of the readiness poll
- Prevents hardcoding throughout codebase

============================================================
DESIGN PRINCIPLES
============================================================
- All constants are immutable
- Related constants are grouped
- No business logic here

============================================================
"""

from typing import Tuple


# ============================================================
# SERVICE IDENTIFIERS
# ============================================================

SERVICE_POSTGRES = "postgres"
SERVICE_COMPANION = "pgadmin"

LOCALHOST = "127.0.0.1"

DEFAULT_POSTGRES_PORT = 5432
DEFAULT_COMPANION_PORT = 5050


# ============================================================
# CLUSTER DIRECTORY LAYOUT
# ============================================================

MARKER_FILE = "PG_VERSION"
CONFIG_FILE = "postgresql.conf"

# Primary storage: one subdirectory per database
STORAGE_SUBDIR = "base"

# Cluster-wide catalogs
BOOKKEEPING_SUBDIR = "global"

# A fresh cluster always holds template0, template1 and postgres
MIN_STORAGE_ENTRIES = 2

# Subdirectories PostgreSQL needs but that hold no user data; they are
# recreated empty when a copy or partial extraction dropped them.
REGENERATABLE_SUBDIRECTORIES: Tuple[str, ...] = (
    "pg_commit_ts",
    "pg_dynshmem",
    "pg_logical",
    "pg_logical/mappings",
    "pg_logical/snapshots",
    "pg_multixact",
    "pg_multixact/members",
    "pg_multixact/offsets",
    "pg_notify",
    "pg_replslot",
    "pg_serial",
    "pg_snapshots",
    "pg_stat",
    "pg_stat_tmp",
    "pg_subtrans",
    "pg_tblspc",
    "pg_twophase",
    "pg_wal",
    "pg_wal/archive_status",
    "pg_xact",
)

OWNER_ONLY_MODE = 0o700


# ============================================================
# BOOTSTRAP
# ============================================================

DEFAULT_ADMIN_ROLE = "postgres"
BOOTSTRAP_AUTH_METHOD = "trust"
BOOTSTRAP_ENCODING = "UTF8"

DEFAULT_DATABASE = "postgres"
TEMPLATE_DATABASE = "template1"


# ============================================================
# READINESS
# ============================================================

READINESS_POLL_INTERVAL_SECONDS = 0.5
READINESS_ATTEMPT_TIMEOUT_SECONDS = 0.2
READINESS_DEADLINE_SECONDS = 30.0


# ============================================================
# EXTENSIONS
# ============================================================

PRIMARY_EXTENSION = "postgis"

DESIRED_EXTENSIONS: Tuple[str, ...] = (
    "postgis",
    "postgis_topology",
    "postgis_raster",
)

EXTENSION_NAME_PATTERN = r"^[A-Za-z0-9_]+$"
ROLE_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"

# Error text fragments that mean "the thing you are creating is already there"
BENIGN_EXISTS_MARKERS: Tuple[str, ...] = (
    "already exists",
)


# ============================================================
# COMPANION TOOL
# ============================================================

COMPANION_ENTRYPOINT = "pgAdmin4.py"
COMPANION_PACKAGE_DIR = "pgadmin4"
COMPANION_SETUP_SCRIPT = "setup.py"
COMPANION_LOCAL_CONFIG = "config_local.py"
COMPANION_SERVERS_FILE = "servers.json"
COMPANION_APP_NAME = "Portable PostGIS"
COMPANION_SERVER_PROFILE = "Portable Postgres"
COMPANION_SEARCH_MAX_DEPTH = 5


# ============================================================
# SHUTDOWN
# ============================================================

# Pause after stopping services before touching their files
FILE_RELEASE_DELAY_SECONDS = 1.0
