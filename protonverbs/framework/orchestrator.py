"""Run a queue of verbs against one ready prefix."""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from protonverbs.framework.locking import prefix_lock
from protonverbs.framework.prefix import PrefixState, inspect
from verbkit.errors import PrefixStateError
from verbkit.interpreter import ActionInterpreter, ExecutionContext, VerbResult
from verbkit.recipes import VerbDefinition
from verbkit.registry import VerbRegistry


@dataclass(frozen=True)
class FailurePoint:
    verb: str
    action_index: int | None
    action_type: str | None
    error_type: str
    message: str


@dataclass(frozen=True)
class InvocationReport:
    prefix: Path
    requested: tuple[str, ...]
    results: tuple[VerbResult, ...] = ()
    not_run: tuple[str, ...] = ()
    dll_overrides: Mapping[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> tuple[str, ...]:
        return tuple(r.verb for r in self.results if r.succeeded)

    @property
    def partial(self) -> tuple[str, ...]:
        return tuple(r.verb for r in self.results if r.partial)

    @property
    def failure(self) -> FailurePoint | None:
        for result in self.results:
            if result.succeeded or result.error is None:
                continue
            error = result.error
            return FailurePoint(
                verb=result.verb,
                action_index=error.action_index,
                action_type=error.action_type,
                error_type=type(error).__name__,
                message=error.message,
            )
        return None

    @property
    def ok(self) -> bool:
        return self.failure is None and not self.not_run


class Orchestrator:
    def __init__(
        self,
        *,
        registry: VerbRegistry,
        interpreter: ActionInterpreter,
        scratch_root: str | Path,
        logger: logging.Logger,
    ) -> None:
        self._registry = registry
        self._interpreter = interpreter
        self._scratch_root = Path(scratch_root)
        self._logger = logger

    def _require_still_ready(self, prefix: PrefixState) -> None:
        current = inspect(
            prefix.root_path,
            kind=prefix.kind,
            arch=prefix.arch,
            runtime_version=prefix.runtime_version,
            holding_lock=True,
        )
        if not current.is_ready:
            raise PrefixStateError(
                f"Prefix changed before it could be locked (state={current.lifecycle}"
                + (f", {current.detail}" if current.detail else "")
                + f"): {prefix.root_path}",
                path=str(prefix.root_path),
            )

    def run(
        self,
        prefix: PrefixState,
        verb_names: Sequence[str],
        *,
        environment: Mapping[str, str],
        dry_run: bool = False,
    ) -> InvocationReport:
        """
        Run `verb_names` in order against `prefix`.

        Every name is resolved before anything runs, so a typo fails the whole
        invocation up front (NotFoundError). The prefix lock is held for the full
        run. A failing verb stops the queue; remaining verbs are reported as not run.
        """

        if not prefix.is_ready:
            raise PrefixStateError(
                f"Prefix is not ready (state={prefix.lifecycle}"
                + (f", {prefix.detail}" if prefix.detail else "")
                + f"): {prefix.root_path}",
                path=str(prefix.root_path),
            )
        if not verb_names:
            raise ValueError("At least one verb name is required")

        definitions: list[VerbDefinition] = [self._registry.resolve(name) for name in verb_names]
        requested = tuple(d.name for d in definitions)
        results: list[VerbResult] = []
        dll_overrides: dict[str, str] = {}

        self._scratch_root.mkdir(parents=True, exist_ok=True)
        with prefix_lock(prefix.root_path, operation="run", logger=self._logger):
            self._require_still_ready(prefix)
            for position, definition in enumerate(definitions):
                scratch_dir = Path(tempfile.mkdtemp(prefix=f"{definition.name}-", dir=str(self._scratch_root)))
                ctx = ExecutionContext(
                    prefix_root=prefix.root_path,
                    environment=dict(environment),
                    scratch_dir=scratch_dir,
                    dry_run=dry_run,
                    logger=self._logger,
                    storage_dir=Path(definition.storage_dir) if definition.storage_dir else None,
                    dll_overrides=dll_overrides,
                )
                self._logger.info(
                    "Running verb %s (%d/%d)%s", definition.name, position + 1, len(definitions),
                    " [dry run]" if dry_run else "",
                )
                try:
                    result = self._interpreter.execute(definition, ctx)
                finally:
                    shutil.rmtree(scratch_dir, ignore_errors=True)
                results.append(result)

                if not result.succeeded:
                    not_run = requested[position + 1 :]
                    if not_run:
                        self._logger.warning("Skipping remaining verbs: %s", ", ".join(not_run))
                    return InvocationReport(
                        prefix=prefix.root_path,
                        requested=requested,
                        results=tuple(results),
                        not_run=not_run,
                        dll_overrides=dict(dll_overrides),
                    )
                self._logger.info("Verb %s completed", definition.name)

        return InvocationReport(
            prefix=prefix.root_path,
            requested=requested,
            results=tuple(results),
            dll_overrides=dict(dll_overrides),
        )
