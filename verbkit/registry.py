from __future__ import annotations

import difflib
import logging
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from verbkit.errors import NotFoundError, VerbkitError
from verbkit.recipes import CATEGORIES, RECIPE_SUFFIXES, VerbDefinition, parse_recipe_file


@dataclass(frozen=True)
class LoadIssue:
    severity: Literal["warning", "error"]
    message: str
    path: str | None = None
    error: VerbkitError | None = None


@dataclass(frozen=True)
class VerbListing:
    name: str
    description: str
    category: str
    source: str


def scan_recipe_files(custom_dir: str | Path) -> list[Path]:
    """Recipe files directly in `custom_dir` or one directory below, in scan order.

    Scan order is the lexicographic order of the path relative to `custom_dir`.
    """

    root = Path(custom_dir)
    if not root.is_dir():
        return []
    found: list[Path] = []
    for pattern in ("*", "*/*"):
        for candidate in root.glob(pattern):
            if candidate.is_file() and candidate.suffix.lower() in RECIPE_SUFFIXES:
                found.append(candidate)
    return sorted(found, key=lambda p: p.relative_to(root).as_posix())


@dataclass(frozen=True)
class VerbRegistry:
    _by_name: dict[str, VerbDefinition]

    @classmethod
    def from_definitions(cls, definitions: Iterable[VerbDefinition]) -> "VerbRegistry":
        entries: dict[str, VerbDefinition] = {}
        for definition in definitions:
            if definition.name in entries:
                raise ValueError(f"Duplicate built-in verb name: {definition.name}")
            entries[definition.name] = definition
        return cls(_by_name=entries)

    @classmethod
    def load(
        cls,
        builtin_table: Iterable[VerbDefinition],
        custom_dir: str | Path | None,
        *,
        known_presets: Collection[str] | None = None,
        logger: logging.Logger | None = None,
    ) -> tuple["VerbRegistry", list[LoadIssue]]:
        """Merge built-in definitions with the recipe files found in `custom_dir`.

        A file that fails to parse or validate is reported once and skipped.
        Custom definitions replace built-in ones of the same name; among custom
        files declaring the same name, the last one in scan order wins.
        """

        entries = dict(cls.from_definitions(builtin_table)._by_name)
        issues: list[LoadIssue] = []
        custom_seen: dict[str, str] = {}

        for path in scan_recipe_files(custom_dir) if custom_dir else []:
            try:
                definition = parse_recipe_file(path, known_presets=known_presets)
            except VerbkitError as exc:
                issues.append(LoadIssue("error", exc.describe(), path=str(path), error=exc))
                if logger:
                    logger.warning("Skipping recipe file %s: %s", path, exc.message)
                continue

            previous = entries.get(definition.name)
            if definition.name in custom_seen:
                message = (
                    f"Custom verb {definition.name!r} from {path} replaces the one from "
                    f"{custom_seen[definition.name]}"
                )
                issues.append(LoadIssue("warning", message, path=str(path)))
            elif previous is not None and previous.is_builtin:
                message = f"Custom verb {definition.name!r} from {path} overrides the built-in verb"
                issues.append(LoadIssue("warning", message, path=str(path)))
            else:
                message = None

            if message and logger:
                logger.warning(message)
            entries[definition.name] = definition
            custom_seen[definition.name] = str(path)

        if logger:
            logger.debug(
                "Verb registry loaded: %d verbs (%d custom), %d issues",
                len(entries),
                len(custom_seen),
                len(issues),
            )
        return cls(_by_name=entries), issues

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._by_name

    def available(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_name.keys()))

    def resolve(self, name: str) -> VerbDefinition:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("verb name must be a non-empty string")
        key = name.strip()
        definition = self._by_name.get(key)
        if definition is not None:
            return definition

        suggestions = self.suggest(key)
        hint = f" (did you mean: {', '.join(suggestions)})" if suggestions else ""
        raise NotFoundError(f"Unknown verb: {key}{hint}", verb=key, suggestions=suggestions)

    def suggest(self, name: str, *, limit: int = 3) -> tuple[str, ...]:
        key = (name or "").strip()
        if not key or not self._by_name:
            return ()
        return tuple(difflib.get_close_matches(key, list(self._by_name.keys()), n=limit))

    def list(self, category: str | None = None) -> tuple[VerbListing, ...]:
        if category is not None and category not in CATEGORIES:
            raise ValueError(f"Unknown category: {category} (known: {', '.join(CATEGORIES)})")
        rows = [
            VerbListing(d.name, d.description, d.category, d.source)
            for d in self._by_name.values()
            if category is None or d.category == category
        ]
        rows.sort(key=lambda row: (row.category, row.name))
        return tuple(rows)

    def search(self, query: str) -> tuple[VerbListing, ...]:
        needle = (query or "").strip().casefold()
        if not needle:
            return self.list()
        return tuple(
            row
            for row in self.list()
            if needle in row.name.casefold() or needle in row.description.casefold()
        )

    def describe(self) -> tuple[dict[str, Any], ...]:
        rows: list[dict[str, Any]] = []
        for listing in self.list():
            definition = self._by_name[listing.name]
            rows.append(
                {
                    "name": definition.name,
                    "description": definition.description,
                    "category": definition.category,
                    "source": definition.source,
                    "publisher": definition.publisher,
                    "year": definition.year,
                    "action_types": list(dict.fromkeys(action.type_name for action in definition.actions)),
                    "actions": [action.describe() for action in definition.actions],
                }
            )
        return tuple(rows)
