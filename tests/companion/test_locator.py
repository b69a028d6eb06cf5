"""
Tests for locating the bundled pgAdmin installation.
"""

from companion import CompanionInstall, locate_companion, search_entrypoint
from companion.locator import site_packages_candidates


def touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("")
    return path


class TestSitePackages:
    """Tests for site_packages_candidates."""

    def test_windows_layout(self, tmp_path):
        candidates = site_packages_candidates(tmp_path / "python", is_windows=True)
        assert candidates == [
            tmp_path / "python" / "Lib" / "site-packages",
            tmp_path / "Lib" / "site-packages",
        ]

    def test_posix_prefers_newest_versioned_dir(self, tmp_path):
        (tmp_path / "lib" / "python3.10").mkdir(parents=True)
        (tmp_path / "lib" / "python3.12").mkdir(parents=True)

        candidates = site_packages_candidates(tmp_path, is_windows=False)

        assert candidates[0] == tmp_path / "lib" / "python3.12" / "site-packages"
        assert candidates[-1] == tmp_path / "lib" / "site-packages"


class TestLocateCompanion:
    """Tests for locate_companion."""

    def test_direct_hit(self, tmp_path):
        python = touch(tmp_path / "bin" / "python3")
        entry = touch(tmp_path / "lib" / "python3.11" / "site-packages" / "pgadmin4" / "pgAdmin4.py")

        install = locate_companion(python, tmp_path, is_windows=False)

        assert install == CompanionInstall(python_bin=python, entrypoint=entry)
        assert install.setup_script == entry.parent / "setup.py"
        assert install.local_config_path == entry.parent / "config_local.py"

    def test_missing_runtime(self, tmp_path):
        touch(tmp_path / "lib" / "site-packages" / "pgadmin4" / "pgAdmin4.py")
        assert locate_companion(tmp_path / "bin" / "python3", tmp_path, is_windows=False) is None

    def test_fallback_search(self, tmp_path):
        python = touch(tmp_path / "python.exe")
        entry = touch(tmp_path / "vendor" / "apps" / "pgadmin4" / "pgAdmin4.py")

        install = locate_companion(python, tmp_path, is_windows=True)

        assert install is not None
        assert install.entrypoint == entry
        assert install.found_by_search

    def test_nothing_found(self, tmp_path):
        python = touch(tmp_path / "python.exe")
        assert locate_companion(python, tmp_path, is_windows=True) is None


class TestSearchEntrypoint:
    """Tests for the bounded search."""

    def test_depth_limit(self, tmp_path):
        touch(tmp_path / "a" / "b" / "c" / "d" / "e" / "f" / "pgadmin4" / "pgAdmin4.py")
        assert search_entrypoint(tmp_path, max_depth=3) is None
        assert search_entrypoint(tmp_path, max_depth=10) is not None

    def test_requires_package_directory_name(self, tmp_path):
        touch(tmp_path / "other" / "pgAdmin4.py")
        assert search_entrypoint(tmp_path) is None

    def test_missing_root(self, tmp_path):
        assert search_entrypoint(tmp_path / "absent") is None
