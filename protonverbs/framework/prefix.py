"""Prefix lifecycle: inspect, create, delete, and locate Wine prefixes.

A standalone prefix is "ours" only when it carries the marker file. The marker
is written with status `initializing` before the base image is copied and is
rewritten with status `ready` once creation completes, so an interrupted
creation leaves an owned, Corrupt prefix that `delete` can remove.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Literal, TypeAlias

import yaml

from protonverbs.framework.config import ALLOWED_ARCHES
from protonverbs.framework.discovery import ApplicationLocation, Discovery
from protonverbs.framework.locking import LOCK_FILENAME, lock_is_held, prefix_lock, utc_now_iso8601
from protonverbs.framework.regedit import filter_registry_file
from protonverbs.framework.runtime import RuntimeInstall
from verbkit.errors import (
    LockContentionError,
    NotFoundError,
    PrefixStateError,
    StorageIOError,
    ValidationError,
    VerbkitError,
)

PrefixKind: TypeAlias = Literal["SteamManaged", "Standalone"]
Lifecycle: TypeAlias = Literal["Absent", "Initializing", "Ready", "Corrupt"]

MARKER_FILENAME = ".protonverbs.yaml"
_BOOKKEEPING = (MARKER_FILENAME, LOCK_FILENAME)

PrefixInitializer: TypeAlias = Callable[["PrefixState", RuntimeInstall], None]


@dataclass(frozen=True)
class PrefixState:
    root_path: Path
    kind: PrefixKind
    arch: str
    runtime_version: str | None
    lifecycle: Lifecycle
    created_at: str | None = None
    detail: str | None = None

    def __post_init__(self) -> None:
        root = Path(self.root_path).expanduser()
        if not root.is_absolute():
            root = root.absolute()
        object.__setattr__(self, "root_path", root)
        if self.kind not in ("SteamManaged", "Standalone"):
            raise ValueError(f"PrefixState.kind must be SteamManaged or Standalone (got {self.kind!r})")
        if self.arch not in ALLOWED_ARCHES:
            raise ValueError(f"PrefixState.arch must be one of {', '.join(ALLOWED_ARCHES)} (got {self.arch!r})")
        if self.lifecycle not in ("Absent", "Initializing", "Ready", "Corrupt"):
            raise ValueError(f"Invalid lifecycle: {self.lifecycle!r}")

    @property
    def marker_path(self) -> Path:
        return self.root_path / MARKER_FILENAME

    @property
    def is_ready(self) -> bool:
        return self.lifecycle == "Ready"


def read_marker(root: str | os.PathLike[str]) -> dict[str, Any] | None:
    """Return the marker mapping, None when absent; raise ValueError when unreadable."""

    path = Path(root) / MARKER_FILENAME
    if not path.exists():
        return None
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"Unreadable prefix marker {path}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ValueError(f"Prefix marker must contain a YAML mapping: {path}")
    return dict(payload)


def write_marker(root: Path, payload: Mapping[str, Any]) -> None:
    path = root / MARKER_FILENAME
    tmp_path = root / (MARKER_FILENAME + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(payload), handle, sort_keys=False)
    os.replace(tmp_path, path)


def _has_content(root: Path) -> bool:
    return any(child.name != LOCK_FILENAME for child in root.iterdir())


def inspect(
    path: str | os.PathLike[str],
    *,
    kind: PrefixKind = "Standalone",
    arch: str = "win64",
    runtime_version: str | None = None,
    holding_lock: bool = False,
) -> PrefixState:
    """
    Report the lifecycle state of the prefix at `path`.

    Raises:
        ValidationError: a non-empty standalone directory without our marker.
    """

    root = Path(path).expanduser().absolute()
    base = PrefixState(root_path=root, kind=kind, arch=arch, runtime_version=runtime_version, lifecycle="Absent")

    if not root.is_dir():
        if root.exists():
            raise ValidationError(f"Prefix path is not a directory: {root}", path=str(root))
        return base

    if kind == "SteamManaged":
        if (root / "system.reg").exists() or (root / "drive_c").is_dir():
            return replace(base, lifecycle="Ready")
        return base

    try:
        marker = read_marker(root)
    except ValueError as exc:
        return replace(base, lifecycle="Corrupt", detail=str(exc))

    if marker is None:
        if _has_content(root):
            raise ValidationError(
                f"Directory is not empty and is not a prefix created by this tool: {root}",
                path=str(root),
            )
        return base

    marker_arch = str(marker.get("arch", arch))
    state = replace(
        base,
        arch=marker_arch if marker_arch in ALLOWED_ARCHES else arch,
        runtime_version=marker.get("runtime_version") or runtime_version,
        created_at=marker.get("created_at"),
    )
    status = marker.get("status")
    if status == "ready":
        return replace(state, lifecycle="Ready")
    if status == "initializing":
        if lock_is_held(root) and not holding_lock:
            return replace(state, lifecycle="Initializing")
        return replace(state, lifecycle="Corrupt", detail="creation did not complete")
    if status == "deleting":
        return replace(state, lifecycle="Corrupt", detail="deletion did not complete")
    return replace(state, lifecycle="Corrupt", detail=f"unknown marker status: {status!r}")


def _copy_entry(entry: Path, target: Path) -> None:
    """Copy one entry over `target`, keeping symlinks as links and overwriting files."""

    if target.is_symlink() or target.is_file():
        target.unlink()
    if entry.is_symlink():
        os.symlink(os.readlink(entry), target)
    elif entry.is_dir():
        target.mkdir(exist_ok=True)
        for child in sorted(entry.iterdir()):
            _copy_entry(child, target / child.name)
        shutil.copystat(entry, target)
    else:
        shutil.copy2(entry, target)


def create_dosdevices(root: Path) -> None:
    dosdevices = root / "dosdevices"
    dosdevices.mkdir(parents=True, exist_ok=True)
    for drive, target in (("c:", "../drive_c"), ("z:", "/")):
        link = dosdevices / drive
        if not os.path.lexists(link):
            os.symlink(target, link)


class PrefixManager:
    def __init__(
        self,
        discovery: Discovery,
        *,
        logger: logging.Logger,
        run_wineboot: bool = False,
        initializer: PrefixInitializer | None = None,
    ) -> None:
        self._discovery = discovery
        self._logger = logger
        self._run_wineboot = run_wineboot
        self._initializer = initializer

    def inspect(self, path: str | os.PathLike[str]) -> PrefixState:
        return inspect(path, kind="Standalone")

    def locate(self, appid: str, *, arch: str = "win64") -> tuple[PrefixState, ApplicationLocation]:
        """Canonical Steam-managed prefix for `appid`; never creates anything."""

        application = self._discovery.resolve_application(appid)
        state = inspect(application.compat_data_path / "pfx", kind="SteamManaged", arch=arch)
        return state, application

    def _check_creatable(self, state: PrefixState, *, force: bool) -> None:
        if state.lifecycle == "Absent":
            return
        if state.lifecycle == "Initializing":
            raise LockContentionError(f"Prefix is being created by another process: {state.root_path}")
        if state.lifecycle == "Corrupt":
            if force:
                return
            raise PrefixStateError(
                f"Prefix is corrupt ({state.detail}); delete it or pass --force: {state.root_path}",
                path=str(state.root_path),
            )
        raise PrefixStateError(f"Prefix already exists: {state.root_path}", path=str(state.root_path))

    def create(
        self,
        path: str | os.PathLike[str],
        runtime_version: str,
        arch: str = "win64",
        *,
        force: bool = False,
    ) -> PrefixState:
        if arch not in ALLOWED_ARCHES:
            raise ValidationError(f"Unknown architecture: {arch!r} (expected one of {', '.join(ALLOWED_ARCHES)})")

        root = Path(path).expanduser().absolute()
        self._check_creatable(inspect(root), force=force)

        runtime = self._discovery.resolve_runtime(runtime_version)
        base_image = runtime.base_image
        if not base_image.is_dir():
            raise NotFoundError(
                f"Runtime {runtime.name!r} has no base prefix image: {base_image}", path=str(base_image)
            )

        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageIOError(f"Cannot create prefix directory {root}: {exc}", path=str(root)) from exc

        with prefix_lock(root, operation="create", logger=self._logger):
            self._check_creatable(inspect(root, holding_lock=True), force=force)

            marker = {
                "runtime_version": runtime.name,
                "arch": arch,
                "kind": "Standalone",
                "created_at": utc_now_iso8601(),
                "status": "initializing",
            }
            state = PrefixState(
                root_path=root,
                kind="Standalone",
                arch=arch,
                runtime_version=runtime.name,
                lifecycle="Initializing",
                created_at=marker["created_at"],
            )
            try:
                write_marker(root, marker)
                self._logger.info("Copying base image %s -> %s", base_image, root)
                for entry in sorted(base_image.iterdir()):
                    if entry.name in ("dosdevices", *_BOOKKEEPING):
                        continue
                    _copy_entry(entry, root / entry.name)
                create_dosdevices(root)
            except OSError as exc:
                self._logger.error("Prefix creation failed, %s is left corrupt: %s", root, exc)
                raise StorageIOError(f"Prefix creation failed: {exc}", path=str(root)) from exc

            if self._run_wineboot and self._initializer is not None:
                self._logger.info("Running wineboot --init in %s", root)
                try:
                    self._initializer(state, runtime)
                except VerbkitError as exc:
                    self._logger.warning("wineboot failed (continuing): %s", exc.describe())

            for hive in ("user.reg", "system.reg"):
                hive_path = root / hive
                if not hive_path.exists():
                    continue
                try:
                    removed = filter_registry_file(hive_path)
                except OSError as exc:
                    self._logger.warning("Failed to filter %s: %s", hive_path, exc)
                    continue
                self._logger.debug("Filtered %d machine-specific font path(s) from %s", removed, hive)

            try:
                write_marker(root, {**marker, "status": "ready"})
            except OSError as exc:
                raise StorageIOError(f"Cannot write prefix marker: {exc}", path=str(root)) from exc

        self._logger.info("Prefix ready: %s (runtime=%s, arch=%s)", root, runtime.name, arch)
        return replace(state, lifecycle="Ready")

    def delete(self, path: str | os.PathLike[str]) -> PrefixState:
        root = Path(path).expanduser().absolute()
        absent = PrefixState(root_path=root, kind="Standalone", arch="win64", runtime_version=None, lifecycle="Absent")
        if not root.exists() or (root.is_dir() and not _has_content(root)):
            self._logger.info("Prefix already absent: %s", root)
            return absent
        if not (root / MARKER_FILENAME).exists():
            raise PrefixStateError(
                f"Refusing to delete {root}: no {MARKER_FILENAME} marker (not a prefix created by this tool)",
                path=str(root),
            )

        with prefix_lock(root, operation="delete", logger=self._logger, remove_root=True):
            if not (root / MARKER_FILENAME).exists():
                raise PrefixStateError(f"Prefix changed while waiting for its lock: {root}", path=str(root))
            try:
                marker = read_marker(root) or {}
            except ValueError:
                marker = {}
            try:
                # Until the marker goes, an interrupted delete stays ours and reads as Corrupt.
                write_marker(root, {**marker, "status": "deleting"})
                for child in sorted(root.iterdir()):
                    if child.name in _BOOKKEEPING:
                        continue
                    if child.is_dir() and not child.is_symlink():
                        shutil.rmtree(child)
                    else:
                        child.unlink()
                (root / MARKER_FILENAME).unlink()
            except OSError as exc:
                self._logger.error("Prefix deletion failed, %s is left corrupt: %s", root, exc)
                raise StorageIOError(f"Cannot delete prefix {root}: {exc}", path=str(root)) from exc

        self._logger.info("Deleted prefix %s", root)
        return absent
