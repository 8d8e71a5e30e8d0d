from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

import yaml

APP_NAME = "protonverbs"


def xdg_config_home() -> str:
    raw = os.environ.get("XDG_CONFIG_HOME", "").strip()
    return raw or os.path.join(os.path.expanduser("~"), ".config")


def xdg_cache_home() -> str:
    raw = os.environ.get("XDG_CACHE_HOME", "").strip()
    return raw or os.path.join(os.path.expanduser("~"), ".cache")


def default_config_dir() -> str:
    return os.path.join(xdg_config_home(), APP_NAME)


def default_cache_dir() -> str:
    return os.path.join(xdg_cache_home(), APP_NAME)


def expand_path(value: str) -> str:
    return os.path.abspath(os.path.expandvars(os.path.expanduser(value)))


def _load_yaml_mapping(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


def _shape_conflict(path: str, base: Any, overlay: Any, *, base_kind: str | None = None) -> ValueError:
    kind = base_kind or type(base).__name__
    return ValueError(
        f"Invalid config overlay merge at {path}: base is {kind} but overlay is {type(overlay).__name__}"
    )


def _deep_merge(base: Any, overlay: Any, *, path: str) -> Any:
    """Overlay wins; mappings merge per key, lists are replaced whole, null clears."""

    if overlay is None or base is None:
        return overlay

    if isinstance(base, Mapping):
        if not isinstance(overlay, Mapping):
            raise _shape_conflict(path, base, overlay, base_kind="mapping")
        merged: dict[str, Any] = dict(base)
        for key, value in overlay.items():
            child = f"{path}.{key}" if path else str(key)
            merged[key] = _deep_merge(base[key], value, path=child) if key in base else value
        return merged

    if isinstance(base, (list, tuple)):
        if not isinstance(overlay, (list, tuple)):
            raise _shape_conflict(path, base, overlay, base_kind="list")
        return list(overlay)

    if isinstance(overlay, (Mapping, list, tuple)):
        raise _shape_conflict(path, base, overlay)
    return overlay


def load_config(**kwargs) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load tool configuration from YAML, returning (cfg, meta).

    Resolution order:
      - `config_path` (explicit, e.g. --config) or the env var: single file, no overlay
      - `<config_dir>/config.yaml` deep-merged with `<config_dir>/config.local.yaml`
      - nothing found: empty mapping (all defaults)
    """

    config_path_override = kwargs.get("config_path")
    env_var = kwargs.get("env_var", "PROTONVERBS_CONFIG")
    config_dir = kwargs.get("config_dir") or default_config_dir()
    config_name = kwargs.get("config_name", "config.yaml")

    explicit_path = None
    if config_path_override is not None:
        explicit_path = str(config_path_override).strip() or None
    elif env_var:
        explicit_path = os.environ.get(str(env_var), "").strip() or None

    if explicit_path:
        expanded = expand_path(explicit_path)
        if not os.path.exists(expanded):
            raise FileNotFoundError(f"Config file not found: {expanded}")
        cfg = _load_yaml_mapping(expanded)
        meta = {
            "mode": "env" if config_path_override is None else "explicit",
            "paths": [expanded],
            "env_var": env_var,
        }
        return cfg, meta

    base_config_path = os.path.join(str(config_dir), config_name)
    local_overlay_path = os.path.join(str(config_dir), "config.local.yaml")

    if not os.path.exists(base_config_path):
        return {}, {"mode": "defaults", "paths": [], "env_var": env_var}

    cfg = _load_yaml_mapping(base_config_path)
    loaded_paths = [os.path.abspath(base_config_path)]
    mode = "base"

    if os.path.exists(local_overlay_path):
        overlay = _load_yaml_mapping(local_overlay_path)
        cfg = _deep_merge(cfg, overlay, path="")
        loaded_paths.append(os.path.abspath(local_overlay_path))
        mode = "base+local"

    return cfg, {"mode": mode, "paths": loaded_paths, "env_var": env_var}
