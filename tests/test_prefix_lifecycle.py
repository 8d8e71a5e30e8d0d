import logging
import os
import shutil
import stat

import pytest
import yaml

from protonverbs.framework.discovery import ApplicationLocation
from protonverbs.framework.locking import LOCK_FILENAME, prefix_lock
from protonverbs.framework import prefix as prefix_module
from protonverbs.framework.prefix import MARKER_FILENAME, PrefixManager, inspect, read_marker
from protonverbs.framework.runtime import RuntimeInstall
from verbkit.errors import (
    LockContentionError,
    NotFoundError,
    PrefixStateError,
    RuntimeProcessError,
    StorageIOError,
    ValidationError,
)

LOGGER = logging.getLogger("test.prefix")

USER_REG = """WINE REGISTRY Version 2
;; All keys relative to \\\\User\\\\S-1-5-21-0-0-0-1000

[Software\\\\Wine\\\\Fonts\\\\External Fonts] 1700000000
"Arial"="C:\\\\windows\\\\Fonts\\\\arial.ttf"
"Keep"="not a path"

[Software\\\\Wine\\\\Direct3D] 1700000000
"renderer"="vulkan"
"""


class FakeDiscovery:
    def __init__(self, runtime_root, compat_root=None):
        self.runtime_root = runtime_root
        self.compat_root = compat_root

    def resolve_runtime(self, name):
        if name != "Proton 9.0":
            raise NotFoundError(f"Runtime not found: {name}")
        return RuntimeInstall.at(name, self.runtime_root)

    def resolve_application(self, appid):
        if self.compat_root is None:
            raise NotFoundError(f"Application not found: {appid}")
        return ApplicationLocation(appid=appid, compat_data_path=self.compat_root / appid)


@pytest.fixture
def runtime_root(tmp_path):
    root = tmp_path / "proton"
    image = root / "files" / "share" / "default_pfx"
    (image / "drive_c" / "windows" / "system32").mkdir(parents=True)
    (image / "drive_c" / "windows" / "system32" / "kernel32.dll").write_bytes(b"dll")
    (image / "dosdevices").mkdir()
    (image / "user.reg").write_text(USER_REG, encoding="utf-8")
    (image / "system.reg").write_text("WINE REGISTRY Version 2\n", encoding="utf-8")
    (root / "files" / "bin").mkdir(parents=True)
    return root


@pytest.fixture
def manager(runtime_root):
    return PrefixManager(FakeDiscovery(runtime_root), logger=LOGGER)


def test_create_copies_base_image_and_marks_ready(tmp_path, manager):
    target = tmp_path / "prefixes" / "game"

    state = manager.create(target, "Proton 9.0", "win64")

    assert state.lifecycle == "Ready"
    assert state.runtime_version == "Proton 9.0"
    assert (target / "drive_c" / "windows" / "system32" / "kernel32.dll").read_bytes() == b"dll"
    assert os.readlink(target / "dosdevices" / "c:") == "../drive_c"
    assert os.readlink(target / "dosdevices" / "z:") == "/"
    assert read_marker(target)["status"] == "ready"
    assert not (target / LOCK_FILENAME).exists()
    assert inspect(target).lifecycle == "Ready"


def test_create_filters_machine_specific_font_paths(tmp_path, manager):
    target = tmp_path / "pfx"

    manager.create(target, "Proton 9.0")

    user_reg = (target / "user.reg").read_text(encoding="utf-8")
    assert "arial.ttf" not in user_reg
    assert '"Keep"="not a path"' in user_reg
    assert '"renderer"="vulkan"' in user_reg


def test_create_on_ready_prefix_is_rejected(tmp_path, manager):
    target = tmp_path / "pfx"
    manager.create(target, "Proton 9.0")

    with pytest.raises(PrefixStateError, match="already exists"):
        manager.create(target, "Proton 9.0")


def test_create_refuses_foreign_directory(tmp_path, manager):
    target = tmp_path / "documents"
    target.mkdir()
    (target / "thesis.odt").write_text("important", encoding="utf-8")

    with pytest.raises(ValidationError, match="not a prefix created by this tool"):
        manager.create(target, "Proton 9.0")

    assert (target / "thesis.odt").exists()


def test_create_with_unknown_runtime_leaves_nothing_behind(tmp_path, manager):
    target = tmp_path / "pfx"

    with pytest.raises(NotFoundError):
        manager.create(target, "Proton 1.0")

    assert not target.exists()


def test_create_rejects_unknown_arch(tmp_path, manager):
    with pytest.raises(ValidationError, match="architecture"):
        manager.create(tmp_path / "pfx", "Proton 9.0", "arm64")


def test_interrupted_creation_is_corrupt_and_force_recreates(tmp_path, manager):
    target = tmp_path / "pfx"
    target.mkdir()
    (target / MARKER_FILENAME).write_text(
        yaml.safe_dump({"status": "initializing", "arch": "win64", "runtime_version": "Proton 9.0"}),
        encoding="utf-8",
    )

    state = inspect(target)
    assert state.lifecycle == "Corrupt"

    with pytest.raises(PrefixStateError, match="corrupt"):
        manager.create(target, "Proton 9.0")

    assert manager.create(target, "Proton 9.0", force=True).lifecycle == "Ready"


def test_creation_in_progress_is_initializing_and_busy(tmp_path, manager):
    target = tmp_path / "pfx"
    target.mkdir()
    (target / MARKER_FILENAME).write_text(yaml.safe_dump({"status": "initializing"}), encoding="utf-8")

    with prefix_lock(target, operation="create"):
        assert inspect(target).lifecycle == "Initializing"
        with pytest.raises(LockContentionError):
            manager.create(target, "Proton 9.0")

    assert inspect(target).lifecycle == "Corrupt"


def test_wineboot_failure_is_logged_and_creation_completes(tmp_path, runtime_root, caplog):
    calls = []

    def failing_wineboot(state, runtime):
        calls.append((state.root_path, runtime.name))
        raise RuntimeProcessError("wineboot --init exited with code 1", returncode=1)

    manager = PrefixManager(
        FakeDiscovery(runtime_root), logger=LOGGER, run_wineboot=True, initializer=failing_wineboot
    )

    with caplog.at_level(logging.WARNING, logger="test.prefix"):
        state = manager.create(tmp_path / "pfx", "Proton 9.0")

    assert state.lifecycle == "Ready"
    assert calls == [(tmp_path / "pfx", "Proton 9.0")]
    assert "wineboot failed" in caplog.text


def test_delete_removes_owned_prefix_and_is_idempotent(tmp_path, manager):
    target = tmp_path / "pfx"
    manager.create(target, "Proton 9.0")

    assert manager.delete(target).lifecycle == "Absent"
    assert not target.exists()
    assert manager.delete(target).lifecycle == "Absent"


def test_delete_refuses_directory_without_marker(tmp_path, manager):
    target = tmp_path / "pfx"
    target.mkdir()
    (target / "keep.txt").write_text("x", encoding="utf-8")

    with pytest.raises(PrefixStateError, match="Refusing to delete"):
        manager.delete(target)

    assert (target / "keep.txt").exists()


def test_delete_while_locked_is_busy(tmp_path, manager):
    target = tmp_path / "pfx"
    manager.create(target, "Proton 9.0")

    with prefix_lock(target, operation="run"):
        with pytest.raises(LockContentionError):
            PrefixManager(FakeDiscovery(tmp_path), logger=LOGGER).delete(target)

    assert (target / "drive_c").exists()


def test_locate_reports_steam_managed_prefix(tmp_path, runtime_root):
    compat = tmp_path / "compatdata"
    (compat / "620" / "pfx" / "drive_c").mkdir(parents=True)
    manager = PrefixManager(FakeDiscovery(runtime_root, compat_root=compat), logger=LOGGER)

    state, application = manager.locate("620")

    assert state.kind == "SteamManaged"
    assert state.lifecycle == "Ready"
    assert state.root_path == compat / "620" / "pfx"
    assert application.appid == "620"


def test_locate_never_creates_missing_prefix(tmp_path, runtime_root):
    compat = tmp_path / "compatdata"
    manager = PrefixManager(FakeDiscovery(runtime_root, compat_root=compat), logger=LOGGER)

    state, _application = manager.locate("999")

    assert state.lifecycle == "Absent"
    assert not (compat / "999").exists()


def test_copy_failure_leaves_corrupt_prefix_that_delete_removes(tmp_path, manager, monkeypatch):
    target = tmp_path / "pfx"

    def unreadable(src, dst, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(src))

    monkeypatch.setattr(prefix_module.shutil, "copy2", unreadable)
    with pytest.raises(StorageIOError, match="Permission denied"):
        manager.create(target, "Proton 9.0")
    monkeypatch.undo()

    state = inspect(target)
    assert state.lifecycle == "Corrupt"
    assert state.detail == "creation did not complete"
    assert not (target / LOCK_FILENAME).exists()

    assert manager.delete(target).lifecycle == "Absent"
    assert not target.exists()


def test_create_keeps_symlinks_and_file_modes(tmp_path, runtime_root, manager):
    image = runtime_root / "files" / "share" / "default_pfx"
    system32 = image / "drive_c" / "windows" / "system32"
    (system32 / "launcher.sh").write_text("#!/bin/sh\n", encoding="utf-8")
    (system32 / "launcher.sh").chmod(0o755)
    (system32 / "secret.key").write_text("k", encoding="utf-8")
    (system32 / "secret.key").chmod(0o600)
    os.symlink("kernel32.dll", system32 / "kernel.dll")
    target = tmp_path / "pfx"

    manager.create(target, "Proton 9.0")

    copied = target / "drive_c" / "windows" / "system32"
    assert stat.S_IMODE((copied / "launcher.sh").stat().st_mode) == 0o755
    assert stat.S_IMODE((copied / "secret.key").stat().st_mode) == 0o600
    assert (copied / "kernel.dll").is_symlink()
    assert os.readlink(copied / "kernel.dll") == "kernel32.dll"
    assert (copied / "kernel.dll").read_bytes() == b"dll"


def test_interrupted_delete_stays_owned_and_can_be_retried(tmp_path, manager, monkeypatch):
    target = tmp_path / "pfx"
    manager.create(target, "Proton 9.0")
    real_rmtree = shutil.rmtree
    calls = []

    def flaky_rmtree(path, *args, **kwargs):
        calls.append(path)
        if len(calls) == 2:
            raise PermissionError(13, "Permission denied", str(path))
        real_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(prefix_module.shutil, "rmtree", flaky_rmtree)
    with pytest.raises(StorageIOError, match="Cannot delete prefix"):
        manager.delete(target)
    monkeypatch.undo()

    assert read_marker(target)["status"] == "deleting"
    state = inspect(target)
    assert state.lifecycle == "Corrupt"
    assert state.detail == "deletion did not complete"
    assert not (target / LOCK_FILENAME).exists()

    assert manager.delete(target).lifecycle == "Absent"
    assert not target.exists()


def test_delete_does_not_recreate_a_prefix_removed_concurrently(tmp_path, manager, monkeypatch):
    target = tmp_path / "pfx"
    manager.create(target, "Proton 9.0")
    real_prefix_lock = prefix_module.prefix_lock

    def lock_after_removal(root, **kwargs):
        shutil.rmtree(root)
        return real_prefix_lock(root, **kwargs)

    monkeypatch.setattr(prefix_module, "prefix_lock", lock_after_removal)
    with pytest.raises(PrefixStateError, match="does not exist"):
        manager.delete(target)

    assert not target.exists()
