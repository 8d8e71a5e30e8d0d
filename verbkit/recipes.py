from __future__ import annotations

import os
import tomllib
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, TypeAlias

import yaml

from verbkit.actions import (
    Action,
    Copy,
    DllOverride,
    Download,
    RegistryImport,
    RegistrySet,
    Run,
    WineConfig,
)
from verbkit.errors import ParseError, StorageIOError, ValidationError, VerbkitError
from verbkit.schema import validate_document

Category: TypeAlias = Literal["apps", "dlls", "fonts", "settings", "custom"]
CATEGORIES: tuple[str, ...] = ("apps", "dlls", "fonts", "settings", "custom")

_CATEGORY_ALIASES: dict[str, str] = {
    "app": "apps",
    "apps": "apps",
    "dll": "dlls",
    "dlls": "dlls",
    "font": "fonts",
    "fonts": "fonts",
    "setting": "settings",
    "settings": "settings",
    "custom": "custom",
}

RECIPE_SUFFIXES: tuple[str, ...] = (".toml", ".yaml", ".yml")

_ACTION_TYPE_ALIASES: dict[str, str] = {
    "registry": "reg_import",
    "dll_override": "override",
    "local_installer": "run",
}


def normalize_category(value: Any) -> str:
    """Map a declared category (singular or plural) onto a known one; anything else is custom."""

    if not isinstance(value, str):
        return "custom"
    return _CATEGORY_ALIASES.get(value.strip().lower(), "custom")


@dataclass(frozen=True)
class VerbDefinition:
    name: str
    description: str
    category: str
    actions: tuple[Action, ...]
    source: str = "builtin"
    storage_dir: str | None = None
    publisher: str | None = None
    year: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("verb name must be a non-empty string")
        object.__setattr__(self, "name", self.name.strip())
        if self.category not in CATEGORIES:
            raise ValidationError(
                f"verb category must be one of: {', '.join(CATEGORIES)} (got {self.category!r})",
                verb=self.name,
            )
        object.__setattr__(self, "actions", tuple(self.actions))

    @property
    def is_builtin(self) -> bool:
        return self.source == "builtin"


def _expand_user(path: str) -> str:
    if path.startswith("~/"):
        return os.path.expanduser(path)
    return path


def _normalize_action_aliases(raw: Mapping[str, Any]) -> dict[str, Any]:
    entry = dict(raw)
    declared = entry.get("type")
    if not isinstance(declared, str):
        return entry
    action_type = _ACTION_TYPE_ALIASES.get(declared.strip().lower(), declared.strip().lower())
    entry["type"] = action_type
    if declared == "local_installer" and "path" in entry and "executable" not in entry:
        entry["executable"] = _expand_user(str(entry.pop("path")))
    return entry


def _build_action(entry: Mapping[str, Any], *, known_presets: Collection[str] | None) -> Action:
    action_type = entry["type"]
    if action_type == "download":
        return Download(url=entry["url"], filename=entry["filename"], sha256=entry.get("sha256"))
    if action_type == "run":
        return Run(
            executable=entry["executable"],
            args=tuple(entry.get("args") or ()),
            best_effort=entry.get("best_effort", False),
            timeout_seconds=entry.get("timeout"),
        )
    if action_type == "copy":
        return Copy(src=entry["src"], dest=entry["dest"])
    if action_type == "reg":
        value = entry["value"]
        value_type = entry.get("value_type")
        if value_type is None:
            if isinstance(value, int):
                value_type = "dword"
            elif isinstance(value, list):
                value_type = "multi_string"
            else:
                value_type = "string"
        return RegistrySet(
            hive_path=entry["path"],
            name=entry["name"],
            value=value,
            value_type=value_type,
        )
    if action_type == "reg_import":
        return RegistryImport(content=entry["content"])
    if action_type == "override":
        return DllOverride(dll_name=entry["dll"], mode=entry["mode"])
    if action_type == "winecfg":
        action = WineConfig(preset_name=entry["preset"])
        if known_presets is not None and action.preset_name not in known_presets:
            raise ValidationError(f"unknown winecfg preset: {action.preset_name!r}")
        return action
    raise ValidationError(f"unknown action type {action_type!r}")


def parse_recipe_document(
    payload: Any,
    *,
    source: str,
    storage_dir: str | None = None,
    known_presets: Collection[str] | None = None,
) -> VerbDefinition:
    """Validate a decoded recipe document and build its VerbDefinition.

    `known_presets` enables the load-time check of winecfg preset names.
    """

    if isinstance(payload, Mapping) and isinstance(payload.get("actions"), list):
        payload = dict(payload)
        payload["actions"] = [
            _normalize_action_aliases(item) if isinstance(item, Mapping) else item
            for item in payload["actions"]
        ]

    validate_document(payload, source=source)

    verb_section = payload["verb"]
    name = verb_section["name"].strip()
    description = (verb_section.get("description") or verb_section.get("title") or "").strip() or name
    year = verb_section.get("year")

    actions: list[Action] = []
    for index, entry in enumerate(payload.get("actions") or []):
        try:
            actions.append(_build_action(entry, known_presets=known_presets))
        except VerbkitError as exc:
            raise type(exc)(
                f"{source} actions[{index}]: {exc.message}",
                path=source,
                verb=name,
                action_index=index,
                action_type=entry.get("type"),
            ) from None

    return VerbDefinition(
        name=name,
        description=description,
        category=normalize_category(verb_section.get("category")),
        actions=tuple(actions),
        source=source,
        storage_dir=storage_dir,
        publisher=verb_section.get("publisher") or None,
        year=str(year) if year is not None else None,
    )


def _decode(path: Path) -> Any:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise StorageIOError(f"Cannot read recipe file {path}: {exc}", path=str(path)) from exc

    suffix = path.suffix.lower()
    try:
        if suffix == ".toml":
            return tomllib.loads(raw.decode("utf-8"))
        return yaml.safe_load(raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ParseError(f"Recipe file is not UTF-8: {path}: {exc}", path=str(path)) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ParseError(f"Invalid TOML in {path}: {exc}", path=str(path)) from exc
    except yaml.YAMLError as exc:
        raise ParseError(f"Invalid YAML in {path}: {exc}", path=str(path)) from exc


def parse_recipe_file(path: str | os.PathLike[str], *, known_presets: Collection[str] | None = None) -> VerbDefinition:
    recipe_path = Path(path)
    if recipe_path.suffix.lower() not in RECIPE_SUFFIXES:
        raise ParseError(
            f"Unsupported recipe file type: {recipe_path.name} (expected {', '.join(RECIPE_SUFFIXES)})",
            path=str(recipe_path),
        )
    payload = _decode(recipe_path)
    if payload is None:
        raise ParseError(f"Recipe file is empty: {recipe_path}", path=str(recipe_path))
    return parse_recipe_document(
        payload,
        source=str(recipe_path),
        storage_dir=str(recipe_path.parent.resolve()),
        known_presets=known_presets,
    )
