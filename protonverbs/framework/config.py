from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from protonverbs.foundation.config_io import default_cache_dir, default_config_dir, expand_path

Arch = Literal["win32", "win64"]
ALLOWED_ARCHES: tuple[str, ...] = ("win32", "win64")


def parse_bool(value: Any, path: str) -> bool:
    """
    Strict boolean parsing to avoid bool('false') footguns.

    Accepts True/False, 0/1, and the strings true/false/1/0/yes/no
    (case-insensitive). Anything else raises ValueError naming `path`.
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
        raise ValueError(f"Invalid boolean for {path}: {value!r}")
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes"}:
            return True
        if normalized in {"false", "0", "no"}:
            return False
    raise ValueError(f"Invalid boolean for {path}: {value!r}")


def parse_float(value: Any, path: str) -> float:
    if value is None:
        raise ValueError(f"Invalid config value for {path}: None")
    if isinstance(value, bool):
        raise ValueError(f"Invalid config type for {path}: expected float, got bool")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid config value for {path}: must be a float") from exc
    raise ValueError(f"Invalid config value for {path}: must be a float")


def parse_int(value: Any, path: str) -> int:
    if value is None:
        raise ValueError(f"Invalid config value for {path}: None")
    if isinstance(value, bool):
        raise ValueError(f"Invalid config type for {path}: expected int, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid config value for {path}: must be an int") from exc
    raise ValueError(f"Invalid config value for {path}: must be an int")


def _parse_str(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid config value for {path}: must be a non-empty string")
    return value.strip()


def _parse_path_list(value: Any, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValueError(f"Invalid config type for {path}: expected a list of paths")
    return tuple(expand_path(_parse_str(item, f"{path}[{i}]")) for i, item in enumerate(value))


def _parse_mapping(value: Any, path: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Invalid config type for {path}: expected a mapping")
    return value


@dataclass(frozen=True)
class PathsConfig:
    verbs_dir: str
    cache_dir: str
    log_dir: str | None

    @property
    def download_cache_dir(self) -> str:
        return os.path.join(self.cache_dir, "downloads")

    @property
    def scratch_root(self) -> str:
        return os.path.join(self.cache_dir, "tmp")


@dataclass(frozen=True)
class DownloadSettings:
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    timeout_seconds: float = 60.0
    cache: bool = True


@dataclass(frozen=True)
class RunSettings:
    timeout_seconds: float | None = 1800.0
    wait_for_server: bool = True


@dataclass(frozen=True)
class PrefixSettings:
    default_arch: Arch = "win64"
    run_wineboot: bool = False


@dataclass(frozen=True)
class ApplicationEntry:
    appid: str
    compat_data_path: str
    install_path: str | None = None


@dataclass(frozen=True)
class ToolConfig:
    paths: PathsConfig
    download: DownloadSettings = field(default_factory=DownloadSettings)
    run: RunSettings = field(default_factory=RunSettings)
    prefix: PrefixSettings = field(default_factory=PrefixSettings)
    default_runtime: str | None = None
    runtimes: Mapping[str, str] = field(default_factory=dict)
    runtime_dirs: tuple[str, ...] = ()
    steam_libraries: tuple[str, ...] = ()
    applications: Mapping[str, ApplicationEntry] = field(default_factory=dict)
    overrides: Mapping[str, str] = field(default_factory=dict)

    @staticmethod
    def from_dict(cfg: Mapping[str, Any]) -> tuple["ToolConfig", list[str]]:
        """
        Parse and validate configuration, returning (ToolConfig, warnings).

        Raises:
            ValueError: if a value is invalid, or on unknown keys with `strict: true`.
        """

        if not isinstance(cfg, Mapping):
            raise ValueError("Config must be a mapping")

        warnings: list[str] = []
        strict_unknown_keys = parse_bool(cfg["strict"], "strict") if "strict" in cfg else False

        ANY: object = object()
        schema: Mapping[str, Any] = {
            "strict": None,
            "default_runtime": None,
            "paths": {"verbs_dir": None, "cache_dir": None, "log_dir": None},
            "download": {
                "max_attempts": None,
                "backoff_seconds": None,
                "timeout_seconds": None,
                "cache": None,
            },
            "run": {"timeout_seconds": None, "wait_for_server": None},
            "prefix": {"default_arch": None, "run_wineboot": None},
            "runtimes": ANY,
            "runtime_dirs": None,
            "steam_libraries": None,
            "applications": ANY,
            "overrides": ANY,
        }

        def collect_unknown_keys(mapping: Any, subschema: Mapping[str, Any], *, prefix: str) -> list[str]:
            if not isinstance(mapping, Mapping):
                return []
            unknown: list[str] = []
            for key, value in mapping.items():
                key_path = f"{prefix}.{key}" if prefix else str(key)
                if key not in subschema:
                    unknown.append(key_path)
                    continue
                nested = subschema[key]
                if isinstance(nested, Mapping):
                    unknown.extend(collect_unknown_keys(value, nested, prefix=key_path))
            return unknown

        unknown_keys = sorted(set(collect_unknown_keys(cfg, schema, prefix="")))
        if unknown_keys:
            if strict_unknown_keys:
                raise ValueError("Unknown config keys: " + ", ".join(unknown_keys))
            warnings.extend(f"Unknown config key: {key}" for key in unknown_keys)

        paths_cfg = _parse_mapping(cfg.get("paths"), "paths")
        cache_dir = expand_path(_parse_str(paths_cfg["cache_dir"], "paths.cache_dir")) if paths_cfg.get("cache_dir") is not None else default_cache_dir()
        verbs_dir = (
            expand_path(_parse_str(paths_cfg["verbs_dir"], "paths.verbs_dir"))
            if paths_cfg.get("verbs_dir") is not None
            else os.path.join(default_config_dir(), "verbs")
        )
        if "log_dir" in paths_cfg and paths_cfg["log_dir"] is None:
            log_dir: str | None = None
        elif paths_cfg.get("log_dir") is not None:
            log_dir = expand_path(_parse_str(paths_cfg["log_dir"], "paths.log_dir"))
        else:
            log_dir = os.path.join(cache_dir, "logs")
        paths = PathsConfig(verbs_dir=verbs_dir, cache_dir=cache_dir, log_dir=log_dir)

        download_cfg = _parse_mapping(cfg.get("download"), "download")
        defaults = DownloadSettings()
        download = DownloadSettings(
            max_attempts=parse_int(download_cfg.get("max_attempts", defaults.max_attempts), "download.max_attempts"),
            backoff_seconds=parse_float(
                download_cfg.get("backoff_seconds", defaults.backoff_seconds), "download.backoff_seconds"
            ),
            timeout_seconds=parse_float(
                download_cfg.get("timeout_seconds", defaults.timeout_seconds), "download.timeout_seconds"
            ),
            cache=parse_bool(download_cfg.get("cache", defaults.cache), "download.cache"),
        )
        if download.max_attempts < 1:
            raise ValueError("Invalid config value for download.max_attempts: must be >= 1")
        if download.backoff_seconds < 0:
            raise ValueError("Invalid config value for download.backoff_seconds: must be >= 0")
        if download.timeout_seconds <= 0:
            raise ValueError("Invalid config value for download.timeout_seconds: must be > 0")

        run_cfg = _parse_mapping(cfg.get("run"), "run")
        run_timeout: float | None = RunSettings().timeout_seconds
        if "timeout_seconds" in run_cfg:
            raw_timeout = run_cfg["timeout_seconds"]
            run_timeout = None if raw_timeout is None else parse_float(raw_timeout, "run.timeout_seconds")
            if run_timeout is not None and run_timeout <= 0:
                raise ValueError("Invalid config value for run.timeout_seconds: must be > 0 (or null)")
        run = RunSettings(
            timeout_seconds=run_timeout,
            wait_for_server=parse_bool(run_cfg.get("wait_for_server", True), "run.wait_for_server"),
        )

        prefix_cfg = _parse_mapping(cfg.get("prefix"), "prefix")
        default_arch = str(prefix_cfg.get("default_arch", "win64")).strip().lower()
        if default_arch not in ALLOWED_ARCHES:
            raise ValueError(
                f"Invalid config value for prefix.default_arch: {default_arch!r} (expected one of {', '.join(ALLOWED_ARCHES)})"
            )
        prefix = PrefixSettings(
            default_arch=default_arch,  # type: ignore[arg-type]
            run_wineboot=parse_bool(prefix_cfg.get("run_wineboot", False), "prefix.run_wineboot"),
        )

        runtimes: dict[str, str] = {}
        for name, value in _parse_mapping(cfg.get("runtimes"), "runtimes").items():
            runtimes[str(name)] = expand_path(_parse_str(value, f"runtimes.{name}"))

        applications: dict[str, ApplicationEntry] = {}
        for appid, value in _parse_mapping(cfg.get("applications"), "applications").items():
            entry = _parse_mapping(value, f"applications.{appid}")
            if "compat_data_path" not in entry:
                raise ValueError(f"Missing required config key: applications.{appid}.compat_data_path")
            install_path = entry.get("install_path")
            applications[str(appid)] = ApplicationEntry(
                appid=str(appid),
                compat_data_path=expand_path(
                    _parse_str(entry["compat_data_path"], f"applications.{appid}.compat_data_path")
                ),
                install_path=(
                    expand_path(_parse_str(install_path, f"applications.{appid}.install_path"))
                    if install_path is not None
                    else None
                ),
            )

        overrides: dict[str, str] = {}
        for key, value in _parse_mapping(cfg.get("overrides"), "overrides").items():
            overrides[str(key)] = _parse_str(value, f"overrides.{key}")

        default_runtime = cfg.get("default_runtime")
        return (
            ToolConfig(
                paths=paths,
                download=download,
                run=run,
                prefix=prefix,
                default_runtime=(
                    _parse_str(default_runtime, "default_runtime") if default_runtime is not None else None
                ),
                runtimes=runtimes,
                runtime_dirs=_parse_path_list(cfg.get("runtime_dirs"), "runtime_dirs"),
                steam_libraries=_parse_path_list(cfg.get("steam_libraries"), "steam_libraries"),
                applications=applications,
                overrides=overrides,
            ),
            warnings,
        )
