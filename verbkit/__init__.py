"""App-agnostic verb execution engine.

This package must not import `protonverbs.*`.
"""

from verbkit.actions import (
    Action,
    ActionOutcome,
    ActionState,
    Copy,
    DllOverride,
    Download,
    RegistryImport,
    RegistrySet,
    Run,
    WineConfig,
)
from verbkit.errors import (
    LockContentionError,
    NotFoundError,
    ParseError,
    PathTraversalError,
    PrefixStateError,
    RuntimeProcessError,
    StorageIOError,
    ValidationError,
    VerbkitError,
)
from verbkit.interpreter import ActionInterpreter, ExecutionContext, VerbResult
from verbkit.recipes import VerbDefinition, parse_recipe_document, parse_recipe_file
from verbkit.registry import VerbRegistry

__all__ = [
    "Action",
    "ActionInterpreter",
    "ActionOutcome",
    "ActionState",
    "Copy",
    "DllOverride",
    "Download",
    "ExecutionContext",
    "LockContentionError",
    "NotFoundError",
    "ParseError",
    "PathTraversalError",
    "PrefixStateError",
    "RegistryImport",
    "RegistrySet",
    "Run",
    "RuntimeProcessError",
    "StorageIOError",
    "ValidationError",
    "VerbDefinition",
    "VerbRegistry",
    "VerbResult",
    "VerbkitError",
    "WineConfig",
    "parse_recipe_document",
    "parse_recipe_file",
]
