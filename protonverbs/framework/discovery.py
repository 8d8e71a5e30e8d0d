from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from protonverbs.framework.config import ToolConfig
from protonverbs.framework.runtime import RuntimeInstall, is_runtime_ready
from verbkit.errors import NotFoundError


@dataclass(frozen=True)
class ApplicationLocation:
    appid: str
    compat_data_path: Path
    install_path: Path | None = None


class Discovery(Protocol):
    def resolve_application(self, appid: str) -> ApplicationLocation:
        ...

    def resolve_runtime(self, name: str) -> RuntimeInstall:
        ...


class ConfiguredDiscovery:
    """
    Discovery backed by configuration and a directory scan.

    Runtimes come from the explicit `runtimes` table first, then from the
    subdirectories of `runtime_dirs` and of `<library>/steamapps/common` for each
    Steam library. Applications come from the `applications` table, then from
    `<library>/steamapps/compatdata/<appid>`.
    """

    def __init__(self, config: ToolConfig, *, logger: logging.Logger | None = None) -> None:
        self._config = config
        self._logger = logger

    def _scan_roots(self) -> list[Path]:
        roots = [Path(p) for p in self._config.runtime_dirs]
        for library in self._config.steam_libraries:
            roots.append(Path(library) / "steamapps" / "common")
            roots.append(Path(library) / "compatibilitytools.d")
        return roots

    def installed_runtimes(self) -> dict[str, Path]:
        found: dict[str, Path] = {}
        for name, path in self._config.runtimes.items():
            found[name] = Path(path)
        for root in self._scan_roots():
            if not root.is_dir():
                continue
            for child in sorted(root.iterdir()):
                if child.is_dir() and child.name not in found and is_runtime_ready(child):
                    found[child.name] = child
        return found

    def resolve_runtime(self, name: str) -> RuntimeInstall:
        key = (name or "").strip()
        if not key:
            raise NotFoundError("No runtime selected (pass --runtime, set PROTON_VERSION, or default_runtime)")
        installed = self.installed_runtimes()

        if key in installed:
            return RuntimeInstall.at(key, installed[key])

        needle = key.casefold()
        matches = sorted(n for n in installed if needle in n.casefold())
        if matches:
            chosen = matches[0]
            if self._logger and len(matches) > 1:
                self._logger.warning(
                    "Runtime name %r matches %s; using %r", key, ", ".join(matches), chosen
                )
            return RuntimeInstall.at(chosen, installed[chosen])

        suggestions = tuple(difflib.get_close_matches(key, list(installed), n=3))
        available = ", ".join(sorted(installed)) or "<none>"
        raise NotFoundError(f"Runtime not found: {key} (available: {available})", suggestions=suggestions)

    def resolve_application(self, appid: str) -> ApplicationLocation:
        key = str(appid).strip()
        entry = self._config.applications.get(key)
        if entry is not None:
            return ApplicationLocation(
                appid=key,
                compat_data_path=Path(entry.compat_data_path),
                install_path=Path(entry.install_path) if entry.install_path else None,
            )

        for library in self._config.steam_libraries:
            candidate = Path(library) / "steamapps" / "compatdata" / key
            if candidate.is_dir():
                return ApplicationLocation(appid=key, compat_data_path=candidate)

        raise NotFoundError(f"Application not found: {key} (no configured entry or Steam compatdata)")
