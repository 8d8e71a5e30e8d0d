from __future__ import annotations

import os
from collections.abc import Mapping

from protonverbs.framework.discovery import ApplicationLocation
from protonverbs.framework.prefix import PrefixState
from protonverbs.framework.runtime import RuntimeInstall

RUNTIME_PATH_KEYS: tuple[str, ...] = ("WINE", "WINE64", "WINESERVER", "WINELOADER", "WINEDLLPATH", "PROTON_PATH")


def derive_environment(
    prefix: PrefixState,
    runtime: RuntimeInstall | None,
    *,
    application: ApplicationLocation | None = None,
    overrides: Mapping[str, str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """
    Build the variable set every action of a run observes.

    Layering, lowest first: `base_env` (defaults to the process environment),
    values derived from the prefix, runtime, and application, then explicit
    `overrides`. When WINE is overridden but WINELOADER is not, WINELOADER
    follows the overridden WINE.
    """

    env: dict[str, str] = dict(os.environ if base_env is None else base_env)

    derived: dict[str, str] = {
        "WINEPREFIX": str(prefix.root_path),
        "WINEARCH": prefix.arch,
    }
    if runtime is not None:
        derived.update(
            {
                "WINE": str(runtime.wine),
                "WINE64": str(runtime.wine64),
                "WINESERVER": str(runtime.wineserver),
                "WINELOADER": str(runtime.wine),
                "WINEDLLPATH": runtime.dll_path(),
                "PROTON_PATH": str(runtime.root),
            }
        )
    if application is not None:
        derived.update(
            {
                "SteamAppId": application.appid,
                "SteamGameId": application.appid,
                "STEAM_COMPAT_DATA_PATH": str(application.compat_data_path),
            }
        )
        if application.install_path is not None:
            derived["STEAM_COMPAT_INSTALL_PATH"] = str(application.install_path)
    env.update(derived)

    explicit = {str(k): str(v) for k, v in (overrides or {}).items()}
    env.update(explicit)
    if "WINE" in explicit and "WINELOADER" not in explicit:
        env["WINELOADER"] = explicit["WINE"]
    return env
