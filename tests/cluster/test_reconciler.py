"""
Tests for the Extension Reconciler.

============================================================
PURPOSE
============================================================
Runs ExtensionReconciler against the in-memory FakePostgres.

TEST PRINCIPLES:
- A second pass changes nothing and enables nothing
- One failing extension never stops the others
- No primary extension in the catalog: nothing is enabled
- "already exists" from a racing creator counts as success

============================================================
"""

import pytest

from cluster import ExtensionReconciler, SqlClient, resolve_extension_search_root
from cluster.reconciler import validate_extension_name
from core.exceptions import CommandError, InvalidConfigError


def make_reconciler(fake_pg, home, lines=None, **kwargs):
    client = SqlClient(home / "bin" / "psql", home / "bin" / "createdb", 5432, runner=fake_pg)
    return ExtensionReconciler(
        client,
        resolve_extension_search_root(home),
        on_log=lines.append if lines is not None else None,
        **kwargs,
    )


# ============================================================
# FULL PASS
# ============================================================

class TestReconcile:
    """Tests for ExtensionReconciler.reconcile."""

    @pytest.mark.asyncio
    async def test_fresh_cluster_enables_everything(self, fake_pg, extension_home):
        lines = []
        report = await make_reconciler(fake_pg, extension_home, lines).reconcile()

        assert report.default_database_ok
        assert report.admin_role_ok
        assert report.login_role_ok is None
        assert report.newly_enabled == ["postgis", "postgis_topology", "postgis_raster"]
        assert report.failed == {}
        assert not report.extensions_skipped
        assert all(fake_pg.is_enabled(n) for n in report.newly_enabled)
        assert [s.installed_version for s in report.extensions] == ["3.4.2"] * 3
        assert "[postgres] Enabled extension postgis in postgres." in lines
        assert '[postgres] Ensured "postgres" user privileges.' in lines

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(self, fake_pg, extension_home):
        reconciler = make_reconciler(fake_pg, extension_home)
        await reconciler.reconcile()
        enabled_before = dict(fake_pg.enabled["postgres"])
        creates_before = len(fake_pg.create_extension_statements())

        report = await reconciler.reconcile()

        assert report.newly_enabled == []
        assert report.already_enabled == ["postgis", "postgis_topology", "postgis_raster"]
        assert fake_pg.enabled["postgres"] == enabled_before
        assert len(fake_pg.create_extension_statements()) == creates_before

    @pytest.mark.asyncio
    async def test_enable_order_follows_configuration(self, fake_pg, extension_home):
        reconciler = make_reconciler(
            fake_pg, extension_home,
            desired_extensions=["postgis_topology", "postgis"],
        )
        first = await reconciler.reconcile()

        assert first.newly_enabled == ["postgis_topology", "postgis"]
        assert fake_pg.create_extension_statements() == [
            'CREATE EXTENSION IF NOT EXISTS "postgis_topology" CASCADE;',
            'CREATE EXTENSION IF NOT EXISTS "postgis" CASCADE;',
        ]

    @pytest.mark.asyncio
    async def test_primary_missing_enables_nothing(self, fake_pg, extension_home):
        fake_pg.available = {"plpgsql", "hstore"}
        lines = []
        report = await make_reconciler(fake_pg, extension_home, lines).reconcile()

        assert report.skipped_reason == "postgis not available"
        assert report.newly_enabled == []
        assert fake_pg.create_extension_statements() == []
        assert "[postgres] Extension postgis is not available in this server build." in lines
        checked = [line for line in lines if "Checked extension location" in line]
        assert len(checked) == 2
        assert any("(present)" in line for line in checked)
        assert any("(missing)" in line for line in checked)

    @pytest.mark.asyncio
    async def test_unavailable_optional_is_skipped(self, fake_pg, extension_home):
        fake_pg.available.discard("postgis_raster")
        lines = []
        report = await make_reconciler(fake_pg, extension_home, lines).reconcile()

        assert report.newly_enabled == ["postgis", "postgis_topology"]
        assert "[postgres] Extension postgis_raster not available, skipping." in lines
        raster = [s for s in report.extensions if s.name == "postgis_raster"][0]
        assert not raster.available_in_catalog

    @pytest.mark.asyncio
    async def test_reported_states_reflect_the_pass(self, fake_pg, extension_home):
        fake_pg.available.discard("postgis_raster")
        fake_pg.failing_extensions.add("postgis_topology")

        report = await make_reconciler(fake_pg, extension_home).reconcile()

        states = {s.name: s for s in report.extensions}
        assert states["postgis"].enabled_in_database
        assert not states["postgis"].needs_enabling
        assert states["postgis_topology"].needs_enabling
        assert not states["postgis_raster"].needs_enabling

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_rest(self, fake_pg, extension_home):
        fake_pg.failing_extensions.add("postgis_topology")
        report = await make_reconciler(fake_pg, extension_home).reconcile()

        assert report.newly_enabled == ["postgis", "postgis_raster"]
        assert "postgis_topology" in report.failed
        assert "could not load library" in report.failed["postgis_topology"]
        assert not fake_pg.is_enabled("postgis_topology")

    @pytest.mark.asyncio
    async def test_catalog_failure_skips_extensions(self, fake_pg, extension_home):
        fake_pg.catalog_broken = True
        report = await make_reconciler(fake_pg, extension_home).reconcile()

        assert report.skipped_reason == "extension catalog query failed"
        assert report.default_database_ok
        assert fake_pg.create_extension_statements() == []


# ============================================================
# DATABASE AND ROLES
# ============================================================

class TestDatabaseAndRoles:
    """Tests for default database and role handling."""

    @pytest.mark.asyncio
    async def test_missing_default_database_is_created(self, fake_pg, extension_home):
        fake_pg.databases.discard("postgres")
        lines = []
        assert await make_reconciler(fake_pg, extension_home, lines).ensure_default_database()

        assert "postgres" in fake_pg.databases
        assert '[postgres] Created default "postgres" database.' in lines

    @pytest.mark.asyncio
    async def test_racing_creator_counts_as_success(self, fake_pg, extension_home):
        fake_pg.ping_failures = 1
        lines = []
        assert await make_reconciler(fake_pg, extension_home, lines).ensure_default_database()

        assert "createdb" in fake_pg.calls
        assert '[postgres] Default database "postgres" already exists.' in lines

    @pytest.mark.asyncio
    async def test_login_role_created_once(self, fake_pg, extension_home):
        reconciler = make_reconciler(
            fake_pg, extension_home,
            login_role="gis_user",
            login_password="o'brien",
        )

        first = await reconciler.reconcile()
        second = await reconciler.reconcile()

        assert first.login_role_ok and second.login_role_ok
        assert "gis_user" in fake_pg.roles
        creates = [s for s in fake_pg.statements if s.startswith("CREATE ROLE")]
        assert creates == ['CREATE ROLE "gis_user" WITH LOGIN SUPERUSER PASSWORD \'o\'\'brien\';']

    @pytest.mark.asyncio
    async def test_login_role_equal_to_admin_is_ignored(self, fake_pg, extension_home):
        report = await make_reconciler(fake_pg, extension_home, login_role="postgres").reconcile()
        assert report.login_role_ok is None

    @pytest.mark.asyncio
    async def test_invalid_login_role_is_refused(self, fake_pg, extension_home):
        reconciler = make_reconciler(fake_pg, extension_home, login_role="bad-name; DROP")
        assert not await reconciler.ensure_login_role()
        assert not any(s.startswith("CREATE ROLE") for s in fake_pg.statements)


# ============================================================
# ENABLE / DISABLE
# ============================================================

class TestEnableDisable:
    """Tests for single-extension operations."""

    @pytest.mark.asyncio
    async def test_enable_then_disable(self, fake_pg, extension_home):
        reconciler = make_reconciler(fake_pg, extension_home)

        await reconciler.enable_extension("postgis")
        assert fake_pg.is_enabled("postgis")

        await reconciler.disable_extension("postgis")
        assert not fake_pg.is_enabled("postgis")

    @pytest.mark.asyncio
    async def test_disable_failure_raises(self, fake_pg, extension_home):
        reconciler = make_reconciler(fake_pg, extension_home)
        with pytest.raises(CommandError):
            await reconciler.disable_extension("postgis", database="missing_db")

    @pytest.mark.asyncio
    async def test_invalid_names_never_reach_psql(self, fake_pg, extension_home):
        reconciler = make_reconciler(fake_pg, extension_home)
        with pytest.raises(InvalidConfigError):
            await reconciler.enable_extension('postgis"; DROP TABLE x; --')
        assert fake_pg.statements == []

    def test_invalid_desired_extension_rejected_up_front(self, fake_pg, extension_home):
        with pytest.raises(InvalidConfigError):
            make_reconciler(fake_pg, extension_home, desired_extensions=["ok", "not ok"])

    def test_validate_extension_name(self):
        assert validate_extension_name("postgis_raster") == "postgis_raster"
        with pytest.raises(InvalidConfigError):
            validate_extension_name("")

    @pytest.mark.asyncio
    async def test_list_extension_states(self, fake_pg, extension_home):
        reconciler = make_reconciler(fake_pg, extension_home)
        await reconciler.enable_extension("postgis")

        states = {s.name: s for s in await reconciler.list_extension_states(["postgis", "hstore"])}

        assert states["postgis"].enabled_in_database
        assert states["postgis"].installed_version == "3.4.2"
        assert not states["hstore"].available_in_catalog
