import os
import subprocess
import sys

import pytest

from protonverbs.framework.locking import LOCK_FILENAME, lock_is_held, prefix_lock, read_lock_owner
from verbkit.errors import LockContentionError, PrefixStateError

HOLDER_SCRIPT = """
import fcntl, os, sys
fd = os.open(sys.argv[1], os.O_CREAT | os.O_RDWR, 0o644)
fcntl.flock(fd, fcntl.LOCK_EX)
os.write(fd, b"pid=%d\\noperation=create\\n" % os.getpid())
print("locked", flush=True)
sys.stdin.readline()
"""


def _dead_pid():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


def test_lock_file_records_owner_and_is_removed(tmp_path):
    with prefix_lock(tmp_path, operation="run") as lock_path:
        assert lock_path == tmp_path / LOCK_FILENAME
        owner = read_lock_owner(lock_path)
        assert owner["pid"] == str(os.getpid())
        assert owner["operation"] == "run"
        assert owner["created_at"].endswith("Z")
        assert lock_is_held(tmp_path)

    assert not (tmp_path / LOCK_FILENAME).exists()
    assert not lock_is_held(tmp_path)


def test_second_acquisition_fails_fast(tmp_path):
    with prefix_lock(tmp_path, operation="create"):
        with pytest.raises(LockContentionError, match="create"):
            with prefix_lock(tmp_path, operation="run"):
                pass


def test_lock_is_released_when_block_raises(tmp_path):
    with pytest.raises(RuntimeError):
        with prefix_lock(tmp_path, operation="run"):
            raise RuntimeError("boom")

    assert not (tmp_path / LOCK_FILENAME).exists()


def test_leftover_lock_file_from_dead_process_is_reacquired(tmp_path):
    lock_path = tmp_path / LOCK_FILENAME
    lock_path.write_text(f"pid={_dead_pid()}\noperation=run\n", encoding="utf-8")

    assert not lock_is_held(tmp_path)
    with prefix_lock(tmp_path, operation="delete") as acquired:
        owner = read_lock_owner(acquired)
        assert owner["pid"] == str(os.getpid())
        assert owner["operation"] == "delete"


def test_garbage_lock_file_does_not_block(tmp_path):
    (tmp_path / LOCK_FILENAME).write_text("garbage", encoding="utf-8")

    with prefix_lock(tmp_path, operation="run"):
        assert lock_is_held(tmp_path)


def test_holder_keeps_the_lock_even_when_its_file_looks_stale(tmp_path):
    with prefix_lock(tmp_path, operation="run") as lock_path:
        # Content naming a dead pid must not let a second caller in.
        lock_path.write_text(f"pid={_dead_pid()}\noperation=run\n", encoding="utf-8")
        for _ in range(3):
            with pytest.raises(LockContentionError):
                with prefix_lock(tmp_path, operation="delete"):
                    pass
        assert lock_path.exists()


def test_lock_held_by_another_process_is_busy_until_it_exits(tmp_path):
    holder = subprocess.Popen(
        [sys.executable, "-c", HOLDER_SCRIPT, str(tmp_path / LOCK_FILENAME)],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        text=True,
    )
    try:
        assert holder.stdout.readline().strip() == "locked"
        assert lock_is_held(tmp_path)
        with pytest.raises(LockContentionError, match=f"pid={holder.pid}"):
            with prefix_lock(tmp_path, operation="run"):
                pass
    finally:
        holder.communicate("\n", timeout=30)

    with prefix_lock(tmp_path, operation="run") as lock_path:
        assert read_lock_owner(lock_path)["pid"] == str(os.getpid())


def test_release_leaves_a_replaced_lock_file_alone(tmp_path):
    lock_path = tmp_path / LOCK_FILENAME
    with prefix_lock(tmp_path, operation="run"):
        lock_path.unlink()
        lock_path.write_text("pid=1\noperation=create\n", encoding="utf-8")

    assert read_lock_owner(lock_path) == {"pid": "1", "operation": "create"}


def test_missing_prefix_directory_is_not_created(tmp_path):
    root = tmp_path / "gone"

    with pytest.raises(PrefixStateError, match="does not exist"):
        with prefix_lock(root, operation="run"):
            pass

    assert not root.exists()


def test_remove_root_drops_the_empty_directory_before_unlocking(tmp_path):
    root = tmp_path / "pfx"
    root.mkdir()

    with prefix_lock(root, operation="delete", remove_root=True):
        assert root.is_dir()

    assert not root.exists()


def test_remove_root_is_skipped_when_the_block_fails(tmp_path):
    root = tmp_path / "pfx"
    root.mkdir()

    with pytest.raises(RuntimeError):
        with prefix_lock(root, operation="delete", remove_root=True):
            raise RuntimeError("boom")

    assert root.is_dir()
    assert not (root / LOCK_FILENAME).exists()
