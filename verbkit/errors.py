"""Error taxonomy shared by the engine and the application layer."""

from __future__ import annotations

from typing import Any


class VerbkitError(Exception):
    """Base class for every error the engine raises on purpose.

    Structured fields are optional; `describe()` renders the ones that are set.
    """

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        verb: str | None = None,
        action_index: int | None = None,
        action_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.verb = verb
        self.action_index = action_index
        self.action_type = action_type

    def fields(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key in ("path", "verb", "action_index", "action_type"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out

    def describe(self) -> str:
        extras = ", ".join(f"{key}={value}" for key, value in self.fields().items())
        if not extras:
            return self.message
        return f"{self.message} ({extras})"


class ParseError(VerbkitError):
    """A recipe file could not be decoded (TOML/YAML syntax)."""


class ValidationError(VerbkitError):
    """Unknown action type, missing field, invalid preset, or similar."""


class NotFoundError(VerbkitError):
    """Verb, runtime, application, or referenced file does not exist."""

    def __init__(self, message: str, *, suggestions: tuple[str, ...] = (), **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.suggestions = tuple(suggestions)


class StorageIOError(VerbkitError):
    """Copy, download, or registry write failure."""


class PathTraversalError(VerbkitError):
    """A destination resolves outside of the prefix root."""


class RuntimeProcessError(VerbkitError):
    """A launched program exited nonzero, timed out, or died from a signal."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        timed_out: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.returncode = returncode
        self.timed_out = timed_out


class LockContentionError(VerbkitError):
    """Another operation holds the prefix lock."""


class PrefixStateError(VerbkitError):
    """The prefix lifecycle state does not allow the requested operation."""
