"""
Orchestrator - Settings Store.

============================================================
RESPONSIBILITY
============================================================
Caller-side persistence of the user's settings record.

- ports, database user and password, theme, first-run flag
- JSON on disk, keys in the desktop app's camelCase form
- Missing keys are filled from defaults on load
- A corrupt file falls back to defaults (and is left alone)

The core packages never read this file; the orchestrator turns
the record into a ServiceConfig between restarts.

============================================================
"""

import json
import logging
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.constants import DEFAULT_ADMIN_ROLE, DEFAULT_COMPANION_PORT, DEFAULT_POSTGRES_PORT

from .models import ServiceConfig

logger = logging.getLogger(__name__)


SETTINGS_FILE_NAME = "settings.json"


# =============================================================
# SCHEMAS
# =============================================================

class ThemeEnum(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    AUTO = "auto"


class PortSettings(BaseModel):
    """Listening ports."""
    model_config = ConfigDict(extra="ignore")

    postgres: int = Field(default=DEFAULT_POSTGRES_PORT, ge=1, le=65535)
    pgadmin: int = Field(default=DEFAULT_COMPANION_PORT, ge=1, le=65535)


class AppSettings(BaseModel):
    """The persisted settings record."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    ports: PortSettings = Field(default_factory=PortSettings)
    db_user: str = Field(default=DEFAULT_ADMIN_ROLE, alias="dbUser")
    db_password: str = Field(default="postgres", alias="dbPassword")
    theme: ThemeEnum = ThemeEnum.LIGHT
    first_run: bool = Field(default=True, alias="firstRun")

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================
# STORE
# =============================================================

class SettingsStore:
    """Loads, merges and saves AppSettings."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._current: Optional[AppSettings] = None

    def get(self) -> AppSettings:
        """Current settings (defaults before the first load)."""
        return self._current or AppSettings()

    def load(self) -> AppSettings:
        """
        Load settings from disk.

        A missing file is created with defaults; an unreadable one is
        logged and replaced in memory by defaults.
        """
        if not self.path.exists():
            self._current = AppSettings()
            self._write(self._current)
            return self._current

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("settings root must be an object")
            self._current = AppSettings.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load settings from {self.path}: {e}")
            self._current = AppSettings()
        return self._current

    def save(self, updates: Dict[str, Any]) -> Optional[AppSettings]:
        """
        Merge a partial update into the current settings and persist.

        Nested ports are merged key by key.

        Returns:
            The merged settings, or None if writing failed
        """
        updates = dict(updates)
        for name, info in AppSettings.model_fields.items():
            if info.alias and name in updates:
                updates[info.alias] = updates.pop(name)

        base = self.get().to_json_dict()
        merged = {**base, **updates}
        merged["ports"] = {**base.get("ports", {}), **(updates.get("ports") or {})}

        try:
            settings = AppSettings.model_validate(merged)
        except ValidationError as e:
            logger.error(f"Rejected settings update: {e}")
            return None

        if not self._write(settings):
            return None
        self._current = settings
        return settings

    def _write(self, settings: AppSettings) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(settings.to_json_dict(), f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save settings to {self.path}: {e}")
            return False
        return True

    def to_service_config(self, base: Optional[ServiceConfig] = None) -> ServiceConfig:
        """Apply the stored settings onto a ServiceConfig."""
        settings = self.get()
        return replace(
            base or ServiceConfig(),
            postgres_port=settings.ports.postgres,
            companion_port=settings.ports.pgadmin,
            db_user=settings.db_user,
            db_password=settings.db_password,
        )


__all__ = [
    "AppSettings",
    "PortSettings",
    "SettingsStore",
    "ThemeEnum",
    "SETTINGS_FILE_NAME",
]
