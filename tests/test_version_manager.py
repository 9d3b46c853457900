"""
Unit tests for goswitch/core/version_manager.py
"""

import os
import shutil
import threading

import pytest
import requests

from goswitch.core.exceptions import (
    BusyError,
    InstallRootError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    PreconditionError,
)
from goswitch.core.remote_fetcher import CACHE_KEY
from goswitch.core.version_manager import VersionManager
from goswitch.utils.input_validator import InputValidationError

from conftest import INDEX_URL

# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def vm(config_manager):
    return VersionManager(config_manager)


def _active(versions):
    return [v for v in versions if v["active"]]


# ============================================================================
# INSTALL
# ============================================================================


class TestInstall:
    """Install orchestration"""

    def test_install_registers_without_activating(self, vm, serve_catalog):
        serve_catalog()
        progress = []

        path = vm.install_version("1.22.0", progress.append)

        assert path == vm.store.managed_path("1.22.0")
        assert vm.list_versions() == [
            {"version": "1.22.0", "path": path, "active": False, "managed": True}
        ]
        assert progress[0] == 0 and progress[-1] == 100
        assert vm.get_download_state() == {"version": "", "progress": 0}

    def test_progress_follows_chunk_boundaries(self, vm, serve_catalog, releases):
        archive = releases["1.22.0"].archive
        split = (37 * len(archive) + 99) // 100
        serve_catalog(chunks={"1.22.0": [archive[:split], archive[split:]]})
        progress = []

        vm.install_version("1.22.0", progress.append)

        assert progress == [0, 37, 99, 100]

    def test_accepts_go_prefix(self, vm, serve_catalog):
        serve_catalog()

        vm.install_version("go1.21.0")

        assert vm.store.exists("1.21.0")

    def test_unknown_version(self, vm, serve_catalog):
        serve_catalog()

        with pytest.raises(NotFoundError):
            vm.install_version("1.99.0")
        assert vm.get_download_state()["version"] == ""

    def test_release_without_platform_archive(self, vm, serve_catalog):
        serve_catalog()

        with pytest.raises(NotFoundError):
            vm.install_version("1.23rc1")

    def test_already_installed(self, vm, serve_catalog):
        serve_catalog()
        vm.install_version("1.22.0")

        with pytest.raises(PreconditionError):
            vm.install_version("1.22.0")

    @pytest.mark.parametrize("bad", ["../1.22.0", "1.22/0", "", "..\\evil"])
    def test_rejects_path_like_versions(self, vm, bad):
        with pytest.raises(InputValidationError):
            vm.install_version(bad)

    def test_integrity_failure_leaves_nothing_behind(self, vm, serve_catalog):
        serve_catalog(overrides={"1.22.0": {"sha256": "0" * 64}})

        with pytest.raises(IntegrityError):
            vm.install_version("1.22.0")

        assert vm.list_versions() == []
        assert not vm.store.sdk_root.exists() or os.listdir(vm.store.sdk_root) == []

    def test_crash_before_rename_leaves_listing_unchanged(self, vm, serve_catalog, monkeypatch):
        serve_catalog()
        vm.install_version("1.21.0")
        before = vm.list_versions()

        def crash(source_dir, version):
            raise OSError("killed before rename")

        monkeypatch.setattr(vm.store, "commit_staging", crash)
        progress = []

        with pytest.raises(InstallRootError):
            vm.install_version("1.22.0", progress.append)

        assert progress[-1] == 99
        assert vm.list_versions() == before
        assert sorted(os.listdir(vm.store.sdk_root)) == ["1.21.0"]

    def test_auto_activate_first_install(self, config_manager, serve_catalog):
        config_manager.set_setting("auto_activate_first_install", True)
        vm = VersionManager(config_manager)
        serve_catalog()

        vm.install_version("1.21.0")
        vm.install_version("1.22.0")

        active = _active(vm.list_versions())
        assert [v["version"] for v in active] == ["1.21.0"]


class TestBusyGate:
    """At most one install in flight"""

    def test_second_install_is_rejected_without_touching_state(self, vm):
        vm.begin_install("1.22.0")
        vm.download_state.update(40)

        with pytest.raises(BusyError) as excinfo:
            vm.install_version("1.21.0")

        assert excinfo.value.active_version == "1.22.0"
        assert vm.get_download_state() == {"version": "1.22.0", "progress": 40}
        vm.abort_install()
        assert vm.get_download_state() == {"version": "", "progress": 0}

    def test_gate_released_after_failure(self, vm, serve_catalog):
        serve_catalog()

        with pytest.raises(NotFoundError):
            vm.install_version("1.99.0")

        vm.install_version("1.22.0")
        assert vm.store.exists("1.22.0")

    def test_cancel_without_install(self, vm):
        assert vm.cancel_install() is False

    def test_cancel_in_flight(self, vm):
        vm.begin_install("1.22.0")

        assert vm.cancel_install() is True
        assert vm._cancel_event.is_set()
        vm.abort_install()

    def test_purge_spares_staging_while_installing(self, vm):
        staging = vm.store.create_staging_dir("1.22.0")
        vm.begin_install("1.22.0")

        vm.purge_stale()
        assert os.path.isdir(staging)

        vm.abort_install()
        vm.purge_stale()
        assert not os.path.exists(staging)


# ============================================================================
# SWITCH
# ============================================================================


class TestSwitch:
    """Switching the active version"""

    def test_exactly_one_active_after_each_switch(self, vm, make_install):
        first = make_install(vm.store.sdk_root / "1.21.0")
        second = make_install(vm.store.sdk_root / "1.22.0")

        vm.switch_version(first)
        assert [v["path"] for v in _active(vm.list_versions())] == [first]

        vm.switch_version(second)
        assert [v["path"] for v in _active(vm.list_versions())] == [second]
        assert os.path.isdir(first)

    def test_switch_to_managed_version(self, vm, make_install):
        path = make_install(vm.store.sdk_root / "1.22.0")

        vm.switch_to_managed("go1.22.0")

        assert vm.get_active_version()["path"] == path

    def test_switch_to_foreign_install(self, config_manager, make_install, tmp_path):
        foreign = make_install(tmp_path / "usr-local-go", version="1.20.5")
        config_manager.set_setting("system_paths", [foreign])
        vm = VersionManager(config_manager)

        vm.switch_version(foreign)

        active = vm.get_active_version()
        assert active == {"version": "1.20.5", "path": foreign, "active": True, "managed": False}

    def test_missing_path(self, vm, tmp_path):
        with pytest.raises(NotFoundError):
            vm.switch_version(str(tmp_path / "nowhere"))

    def test_path_without_go_binary(self, vm, tmp_path):
        empty = tmp_path / "not-go"
        empty.mkdir()

        with pytest.raises(NotFoundError):
            vm.switch_version(str(empty))

        assert vm.store.read_active_pointer() is None

    def test_switch_to_the_pointer_itself_keeps_active_version(self, vm, make_install, home):
        path = make_install(vm.store.sdk_root / "1.22.0")
        vm.switch_version(path)

        vm.switch_version(str(home / "current"))

        assert os.readlink(home / "current") == os.path.realpath(path)
        assert [v["path"] for v in _active(vm.list_versions())] == [path]

    def test_switch_through_symlink_activates_real_install(self, vm, make_install, tmp_path):
        path = make_install(vm.store.sdk_root / "1.22.0")
        alias = tmp_path / "go-latest"
        os.symlink(path, alias, target_is_directory=True)

        assert vm.switch_version(str(alias)) == os.path.realpath(path)

        active = _active(vm.list_versions())
        assert [(v["version"], v["managed"]) for v in active] == [("1.22.0", True)]

    def test_switch_writes_activation_scripts(self, vm, make_install, home):
        path = make_install(vm.store.sdk_root / "1.22.0")

        vm.switch_version(path)

        script = (home / "env.sh").read_text()
        assert f'export GOROOT="{home / "current"}"' in script
        assert (home / "env.ps1").exists()


# ============================================================================
# UNINSTALL
# ============================================================================


class TestUninstall:
    """Removing managed installs"""

    def test_uninstall_inactive(self, vm, make_install):
        make_install(vm.store.sdk_root / "1.21.0")
        keep = make_install(vm.store.sdk_root / "1.22.0")
        vm.switch_version(keep)

        vm.uninstall_version("1.21.0")

        assert [v["version"] for v in vm.list_versions()] == ["1.22.0"]

    def test_active_version_is_protected(self, vm, make_install):
        path = make_install(vm.store.sdk_root / "1.22.0")
        vm.switch_version(path)

        with pytest.raises(PreconditionError):
            vm.uninstall_version("1.22.0")

        assert os.path.isfile(os.path.join(path, "bin", "go"))
        assert vm.get_active_version()["path"] == path

    def test_unknown_version(self, vm):
        with pytest.raises(NotFoundError):
            vm.uninstall_version("1.22.0")

    def test_foreign_install_is_never_deleted(self, config_manager, make_install, tmp_path):
        foreign = make_install(tmp_path / "go", version="1.20.5")
        config_manager.set_setting("system_paths", [foreign])
        vm = VersionManager(config_manager)

        with pytest.raises(PreconditionError):
            vm.uninstall_version("1.20.5")

        assert os.path.isdir(foreign)

    def test_stale_trash_is_purged_on_startup(self, config_manager, make_install):
        vm = VersionManager(config_manager)
        trash = vm.store.sdk_root / ".trash-1.19.0-deadbeef"
        make_install(trash)

        VersionManager(config_manager)

        assert not trash.exists()


class TestSwitchUninstallOrdering:
    """Switch and uninstall of the same path are serialised"""

    def test_uninstall_cannot_slip_in_after_switch_validation(self, vm, make_install, monkeypatch):
        other = make_install(vm.store.sdk_root / "1.21.0")
        target = make_install(vm.store.sdk_root / "1.22.0")
        vm.switch_version(other)
        outcome = []

        def uninstall_target():
            try:
                vm.uninstall_version("1.22.0")
                outcome.append("removed")
            except PreconditionError as e:
                outcome.append(e)

        worker = threading.Thread(target=uninstall_target)
        real_check = vm.local_manager.is_valid_installation

        def check_then_uninstall(path):
            valid = real_check(path)
            if not worker.is_alive() and not outcome:
                worker.start()
                worker.join(timeout=0.5)
            return valid

        monkeypatch.setattr(vm.local_manager, "is_valid_installation", check_then_uninstall)

        vm.switch_version(target)
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert len(outcome) == 1 and isinstance(outcome[0], PreconditionError)
        assert os.path.isdir(target)
        assert [v["path"] for v in _active(vm.list_versions())] == [target]

    def test_switch_after_uninstall_is_rejected(self, vm, make_install):
        other = make_install(vm.store.sdk_root / "1.21.0")
        target = make_install(vm.store.sdk_root / "1.22.0")
        vm.switch_version(other)

        vm.uninstall_version("1.22.0")

        with pytest.raises(NotFoundError):
            vm.switch_version(target)
        assert [v["path"] for v in _active(vm.list_versions())] == [other]


class TestListing:
    """Version discovery through the manager"""

    def test_remote_listing_and_refresh(self, vm, serve_catalog):
        http = serve_catalog()

        releases = vm.get_remote_versions()
        vm.get_remote_versions(refresh=True)

        assert [r["version"] for r in releases] == ["1.23rc1", "1.22.0", "1.21.0"]
        assert http.count("https://mirror.test/dl/?mode=json&include=all") == 2

    def test_dangling_pointer_means_none_active(self, vm, make_install):
        path = make_install(vm.store.sdk_root / "1.22.0")
        other = make_install(vm.store.sdk_root / "1.21.0")
        vm.switch_version(path)

        shutil.rmtree(path)

        assert _active(vm.list_versions()) == []
        assert [v["path"] for v in vm.list_versions()] == [other]

    def test_refresh_discards_stale_catalog_cache(self, vm, serve_catalog, config_manager):
        http = serve_catalog()
        vm.get_remote_versions()
        assert CACHE_KEY in config_manager.get_cache()

        http.add(INDEX_URL, requests.exceptions.ConnectionError("offline"))

        with pytest.raises(NetworkError):
            vm.get_remote_versions(refresh=True)
        assert CACHE_KEY not in config_manager.get_cache()
        with pytest.raises(NetworkError):
            vm.get_remote_versions()
