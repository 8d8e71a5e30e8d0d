"""JSON schemas for recipe documents (TOML and YAML decode to the same shape)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import jsonschema

from verbkit.errors import ValidationError

_STRING = {"type": "string", "minLength": 1}

VERB_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["name"],
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string", "pattern": r"^[A-Za-z0-9][A-Za-z0-9_.+=-]*$"},
        "description": {"type": "string"},
        "title": {"type": "string"},
        "category": {"type": "string"},
        "publisher": {"type": "string"},
        "year": {"type": ["string", "integer"]},
    },
}

ACTION_SCHEMAS: dict[str, dict[str, Any]] = {
    "download": {
        "type": "object",
        "required": ["type", "url", "filename"],
        "additionalProperties": False,
        "properties": {
            "type": {"const": "download"},
            "url": _STRING,
            "filename": _STRING,
            "sha256": {"type": "string"},
        },
    },
    "run": {
        "type": "object",
        "required": ["type", "executable"],
        "additionalProperties": False,
        "properties": {
            "type": {"const": "run"},
            "executable": _STRING,
            "args": {"type": "array", "items": {"type": "string"}},
            "best_effort": {"type": "boolean"},
            "timeout": {"type": "number", "exclusiveMinimum": 0},
        },
    },
    "copy": {
        "type": "object",
        "required": ["type", "src", "dest"],
        "additionalProperties": False,
        "properties": {
            "type": {"const": "copy"},
            "src": _STRING,
            "dest": _STRING,
        },
    },
    "reg": {
        "type": "object",
        "required": ["type", "path", "name", "value"],
        "additionalProperties": False,
        "properties": {
            "type": {"const": "reg"},
            "path": _STRING,
            "name": {"type": "string"},
            "value": {
                "anyOf": [
                    {"type": "string"},
                    {"type": "integer"},
                    {"type": "array", "items": {"type": "string"}},
                ]
            },
            "value_type": {"type": "string"},
        },
    },
    "override": {
        "type": "object",
        "required": ["type", "dll", "mode"],
        "additionalProperties": False,
        "properties": {
            "type": {"const": "override"},
            "dll": _STRING,
            "mode": _STRING,
        },
    },
    "reg_import": {
        "type": "object",
        "required": ["type", "content"],
        "additionalProperties": False,
        "properties": {
            "type": {"const": "reg_import"},
            "content": _STRING,
        },
    },
    "winecfg": {
        "type": "object",
        "required": ["type", "preset"],
        "additionalProperties": False,
        "properties": {
            "type": {"const": "winecfg"},
            "preset": _STRING,
        },
    },
}

DOCUMENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["verb"],
    "additionalProperties": False,
    "properties": {
        "verb": VERB_SCHEMA,
        "actions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["type"],
                "properties": {"type": {"type": "string"}},
            },
        },
    },
}


def _format_error(exc: jsonschema.ValidationError, *, where: str) -> str:
    location = "/".join(str(part) for part in exc.absolute_path)
    if location:
        return f"{where}: {exc.message} (at {location})"
    return f"{where}: {exc.message}"


def validate_document(payload: Any, *, source: str) -> None:
    """Validate the outer document shape, then each action against its type schema.

    Raises:
        ValidationError: with the action index set when a single action is at fault.
    """

    try:
        jsonschema.validate(payload, DOCUMENT_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise ValidationError(_format_error(exc, where=source), path=source) from None

    if not isinstance(payload, Mapping):
        raise ValidationError(f"{source}: recipe document must be a mapping", path=source)
    for index, action in enumerate(payload.get("actions") or []):
        action_type = action["type"]
        schema = ACTION_SCHEMAS.get(action_type)
        if schema is None:
            known = ", ".join(sorted(ACTION_SCHEMAS))
            raise ValidationError(
                f"{source}: unknown action type {action_type!r} (known: {known})",
                path=source,
                action_index=index,
                action_type=action_type,
            )
        try:
            jsonschema.validate(action, schema)
        except jsonschema.ValidationError as exc:
            raise ValidationError(
                _format_error(exc, where=f"{source} actions[{index}]"),
                path=source,
                action_index=index,
                action_type=action_type,
            ) from None
