"""
Tests for the desktop settings store.
"""

import json

import pytest

from orchestrator.models import ServiceConfig
from orchestrator.settings_store import AppSettings, SettingsStore, ThemeEnum


@pytest.fixture
def settings_path(tmp_path):
    return tmp_path / "data" / "settings.json"


class TestLoad:
    """Tests for SettingsStore.load."""

    def test_missing_file_is_created_with_defaults(self, settings_path):
        settings = SettingsStore(settings_path).load()

        assert settings.ports.postgres == 5432
        assert settings.ports.pgadmin == 5050
        assert settings.first_run
        on_disk = json.loads(settings_path.read_text())
        assert on_disk["dbUser"] == "postgres"
        assert on_disk["firstRun"] is True
        assert on_disk["ports"] == {"postgres": 5432, "pgadmin": 5050}

    def test_missing_keys_fall_back_to_defaults(self, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text(json.dumps({"ports": {"postgres": 5433}, "theme": "dark"}))

        settings = SettingsStore(settings_path).load()

        assert settings.ports.postgres == 5433
        assert settings.ports.pgadmin == 5050
        assert settings.theme == ThemeEnum.DARK
        assert settings.db_password == "postgres"

    def test_corrupt_file_uses_defaults_and_is_kept(self, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text("{not json")

        settings = SettingsStore(settings_path).load()

        assert settings == AppSettings()
        assert settings_path.read_text() == "{not json"

    def test_unknown_keys_survive(self, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text(json.dumps({"windowBounds": {"w": 800}}))

        store = SettingsStore(settings_path)
        store.load()
        store.save({"theme": "auto"})

        assert json.loads(settings_path.read_text())["windowBounds"] == {"w": 800}


class TestSave:
    """Tests for SettingsStore.save."""

    def test_ports_merge_per_key(self, settings_path):
        store = SettingsStore(settings_path)
        store.load()

        settings = store.save({"ports": {"pgadmin": 5055}})

        assert settings.ports.pgadmin == 5055
        assert settings.ports.postgres == 5432

    def test_field_names_and_aliases_both_accepted(self, settings_path):
        store = SettingsStore(settings_path)
        store.load()

        store.save({"db_user": "gis"})
        settings = store.save({"firstRun": False})

        assert settings.db_user == "gis"
        assert not settings.first_run
        on_disk = json.loads(settings_path.read_text())
        assert on_disk["dbUser"] == "gis"
        assert "db_user" not in on_disk

    def test_invalid_update_is_rejected(self, settings_path):
        store = SettingsStore(settings_path)
        store.load()

        assert store.save({"ports": {"postgres": 70000}}) is None
        assert store.get().ports.postgres == 5432


class TestToServiceConfig:
    """Tests for SettingsStore.to_service_config."""

    def test_applies_ports_and_credentials(self, settings_path, tmp_path):
        store = SettingsStore(settings_path)
        store.load()
        store.save({"ports": {"postgres": 5440, "pgadmin": 5060}, "dbUser": "gis", "dbPassword": "pw"})

        config = store.to_service_config(ServiceConfig(install_root=str(tmp_path)))

        assert config.postgres_port == 5440
        assert config.companion_port == 5060
        assert config.login_role == "gis"
        assert config.db_password == "pw"
        assert config.install_root == str(tmp_path)
