"""Per-prefix exclusive lock.

The lock is an advisory `flock` on `<prefix>/.protonverbs.lock`. The kernel drops
it when the holder exits, so a lock file left behind by a dead process is simply
re-locked by the next caller. The `key=value` lines inside the file only describe
the current holder for error messages.
"""

from __future__ import annotations

import fcntl
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from verbkit.errors import LockContentionError, PrefixStateError, StorageIOError

LOCK_FILENAME = ".protonverbs.lock"


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def read_lock_owner(lock_path: str | os.PathLike[str]) -> dict[str, str]:
    """Parse the `key=value` lines of a lock file; unreadable files yield {}."""

    try:
        text = Path(lock_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return {}
    owner: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            owner[key.strip()] = value.strip()
    return owner


def _try_flock(fd: int, mode: int = fcntl.LOCK_EX) -> bool:
    try:
        fcntl.flock(fd, mode | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True


def _same_file(fd: int, path: Path) -> bool:
    try:
        on_disk = os.stat(path)
    except FileNotFoundError:
        return False
    held = os.fstat(fd)
    return (held.st_dev, held.st_ino) == (on_disk.st_dev, on_disk.st_ino)


def lock_is_held(prefix_root: str | os.PathLike[str]) -> bool:
    """True while some open file description (in any process) holds the prefix lock."""

    lock_path = Path(prefix_root) / LOCK_FILENAME
    try:
        fd = os.open(lock_path, os.O_RDONLY)
    except FileNotFoundError:
        return False
    try:
        if not _try_flock(fd, fcntl.LOCK_SH):
            return True
        fcntl.flock(fd, fcntl.LOCK_UN)
        return False
    finally:
        os.close(fd)


def _open_locked(lock_path: Path, prefix_root: Path) -> int | None:
    """Return a descriptor holding the lock on the file currently at `lock_path`, or None if busy."""

    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o644)
        except FileNotFoundError:
            raise PrefixStateError(f"Prefix directory does not exist: {prefix_root}", path=str(prefix_root)) from None
        except OSError as exc:
            raise StorageIOError(f"Cannot open prefix lock {lock_path}: {exc}", path=str(lock_path)) from exc
        if not _try_flock(fd):
            os.close(fd)
            return None
        # A releasing holder unlinks the file before unlocking; start over on a fresh inode.
        if _same_file(fd, lock_path):
            return fd
        os.close(fd)


def _release(fd: int, lock_path: Path, *, remove_root: bool, logger: logging.Logger | None) -> None:
    """Unlink our lock file (never a newer holder's), optionally rmdir the prefix, then unlock."""

    try:
        try:
            if _same_file(fd, lock_path):
                os.remove(lock_path)
        except OSError as exc:
            raise StorageIOError(f"Cannot remove prefix lock {lock_path}: {exc}", path=str(lock_path)) from exc
        if remove_root:
            try:
                lock_path.parent.rmdir()
            except OSError as exc:
                raise StorageIOError(
                    f"Cannot remove prefix directory {lock_path.parent}: {exc}", path=str(lock_path.parent)
                ) from exc
    finally:
        os.close(fd)
        if logger:
            logger.debug("Released prefix lock %s", lock_path)


@contextmanager
def prefix_lock(
    prefix_root: str | os.PathLike[str],
    *,
    operation: str,
    logger: logging.Logger | None = None,
    remove_root: bool = False,
) -> Iterator[Path]:
    """
    Hold the exclusive lock of one prefix for the duration of the block.

    The prefix directory must already exist; it is never created here. Fails
    fast with LockContentionError when the lock is held elsewhere. With
    `remove_root`, a block that completes also removes the (then empty) prefix
    directory before the lock is let go.
    """

    root = Path(prefix_root)
    if not root.is_dir():
        raise PrefixStateError(f"Prefix directory does not exist: {root}", path=str(root))
    lock_path = root / LOCK_FILENAME

    fd = _open_locked(lock_path, root)
    if fd is None:
        owner = read_lock_owner(lock_path)
        raise LockContentionError(
            f"Prefix is busy: {prefix_root} is locked by pid={owner.get('pid', '?')} "
            f"({owner.get('operation', 'unknown operation')} since {owner.get('created_at', '?')})",
            path=str(lock_path),
        )

    try:
        os.ftruncate(fd, 0)
        os.write(fd, f"pid={os.getpid()}\noperation={operation}\ncreated_at={utc_now_iso8601()}\n".encode("utf-8"))
    except OSError as exc:
        _release(fd, lock_path, remove_root=False, logger=logger)
        raise StorageIOError(f"Cannot write prefix lock {lock_path}: {exc}", path=str(lock_path)) from exc

    if logger:
        logger.debug("Acquired prefix lock %s for %s", lock_path, operation)
    completed = False
    try:
        yield lock_path
        completed = True
    finally:
        _release(fd, lock_path, remove_root=remove_root and completed, logger=logger)
