"""Action interpreter: runs one verb's actions in order against an execution context.

The interpreter knows nothing about prefixes, runtimes, or HTTP. Side effects go
through three collaborators (fetcher, launcher, registry writer) supplied by the
consuming application, so tests can substitute fakes.
"""

from __future__ import annotations

import glob
import logging
import os
import re
import shutil
import tempfile
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Protocol

from verbkit.actions import (
    DLL_OVERRIDES_KEY,
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
    NotFoundError,
    PathTraversalError,
    PrefixStateError,
    RuntimeProcessError,
    StorageIOError,
    ValidationError,
    VerbkitError,
)
from verbkit.paths import ensure_within, resolve_inside
from verbkit.recipes import VerbDefinition

_WINDOWS_PATH_RE = re.compile(r"^[A-Za-z]:[\\/]")
_GLOB_CHARS = ("*", "?", "[")


@dataclass
class ExecutionContext:
    prefix_root: Path
    environment: dict[str, str]
    scratch_dir: Path
    dry_run: bool = False
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("verbkit"))
    storage_dir: Path | None = None
    artifacts: dict[str, Path] = field(default_factory=dict)
    dll_overrides: dict[str, str] = field(default_factory=dict)
    verb_name: str | None = None

    def __post_init__(self) -> None:
        self.prefix_root = Path(self.prefix_root)
        self.scratch_dir = Path(self.scratch_dir)
        if self.storage_dir is not None:
            self.storage_dir = Path(self.storage_dir)
        self.environment = {str(k): str(v) for k, v in dict(self.environment).items()}


class Fetcher(Protocol):
    def fetch(self, url: str, dest: Path, *, sha256: str | None, logger: logging.Logger) -> Path:
        ...


class ProcessLauncher(Protocol):
    def launch(
        self,
        executable: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str],
        timeout_seconds: float | None,
        logger: logging.Logger,
    ) -> int:
        """Run a program under the runtime and return its exit code.

        Raises RuntimeProcessError(timed_out=True) when the timeout elapses.
        """
        ...


class RegistryWriter(Protocol):
    def apply(self, entries: Sequence[RegistrySet], ctx: ExecutionContext) -> None:
        ...

    def import_reg(self, content: str, ctx: ExecutionContext) -> None:
        ...


class ActionRecorder(Protocol):
    def on_action_start(self, ctx: ExecutionContext, index: int, action: Action) -> None:
        ...

    def on_action_end(self, ctx: ExecutionContext, outcome: ActionOutcome) -> None:
        ...

    def on_action_error(
        self, ctx: ExecutionContext, index: int, action: Action, exc: VerbkitError
    ) -> None:
        ...


class DefaultActionRecorder:
    def on_action_start(self, ctx: ExecutionContext, index: int, action: Action) -> None:
        ctx.logger.info("[%s #%d] %s", ctx.verb_name or "?", index, action.describe())

    def on_action_end(self, ctx: ExecutionContext, outcome: ActionOutcome) -> None:
        suffix = f" ({outcome.message})" if outcome.message else ""
        if outcome.state == "skipped" and outcome.message != "dry-run":
            ctx.logger.warning(
                "[%s #%d] skipped%s", ctx.verb_name or "?", outcome.index, suffix
            )
            return
        ctx.logger.info(
            "[%s #%d] %s in %sms%s",
            ctx.verb_name or "?",
            outcome.index,
            outcome.state,
            outcome.elapsed_ms,
            suffix,
        )

    def on_action_error(
        self, ctx: ExecutionContext, index: int, action: Action, exc: VerbkitError
    ) -> None:
        ctx.logger.error("[%s #%d] %s failed: %s", ctx.verb_name or "?", index, action.type_name, exc.message)


class NullActionRecorder:
    def on_action_start(self, ctx: ExecutionContext, index: int, action: Action) -> None:
        return

    def on_action_end(self, ctx: ExecutionContext, outcome: ActionOutcome) -> None:
        return

    def on_action_error(
        self, ctx: ExecutionContext, index: int, action: Action, exc: VerbkitError
    ) -> None:
        return


@dataclass(frozen=True)
class VerbResult:
    verb: str
    outcomes: tuple[ActionOutcome, ...]
    status: Literal["succeeded", "failed"]
    error: VerbkitError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def failed_outcome(self) -> ActionOutcome | None:
        for outcome in self.outcomes:
            if outcome.state == "failed":
                return outcome
        return None

    @property
    def partial(self) -> bool:
        """True when the verb failed after at least one action completed."""
        return self.status == "failed" and any(o.state != "failed" for o in self.outcomes)


def format_dll_overrides(table: Mapping[str, str]) -> str:
    # WINEDLLOVERRIDES syntax: "name=mode;name=mode", empty mode disables the DLL.
    return ";".join(f"{name}={'' if mode == 'disabled' else mode}" for name, mode in table.items())


def run_environment(ctx: ExecutionContext) -> dict[str, str]:
    env = dict(ctx.environment)
    if ctx.dll_overrides:
        ours = format_dll_overrides(ctx.dll_overrides)
        existing = env.get("WINEDLLOVERRIDES", "").strip()
        env["WINEDLLOVERRIDES"] = f"{existing};{ours}" if existing else ours
    return env


def _atomic_copy_file(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".tmp", dir=str(dest.parent))
    os.close(fd)
    try:
        shutil.copy2(src, tmp_name)
        os.replace(tmp_name, dest)
    except BaseException:
        try:
            os.remove(tmp_name)
        except FileNotFoundError:
            pass
        raise


class ActionInterpreter:
    def __init__(
        self,
        *,
        fetcher: Fetcher,
        launcher: ProcessLauncher,
        registry_writer: RegistryWriter,
        presets: Mapping[str, Sequence[RegistrySet]],
        recorder: ActionRecorder | None = None,
        run_timeout_seconds: float | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._launcher = launcher
        self._registry_writer = registry_writer
        self._presets = presets
        self._recorder = recorder or DefaultActionRecorder()
        self._run_timeout_seconds = run_timeout_seconds
        self._handlers: dict[type, Callable[[object, ExecutionContext], tuple[ActionState, str | None]]] = {
            Download: self._download,
            Run: self._run,
            Copy: self._copy,
            RegistrySet: self._registry_set,
            RegistryImport: self._registry_import,
            DllOverride: self._dll_override,
            WineConfig: self._wine_config,
        }

    @property
    def preset_names(self) -> tuple[str, ...]:
        return tuple(sorted(self._presets))

    def execute(self, verb: VerbDefinition, ctx: ExecutionContext) -> VerbResult:
        """Run every action of `verb` in declared order; stop at the first failure.

        Taxonomy errors become a failed VerbResult. Anything else propagates.
        """

        if not ctx.prefix_root.is_absolute() or not ctx.prefix_root.is_dir():
            raise PrefixStateError(
                f"prefix root must be an existing absolute directory: {ctx.prefix_root}",
                path=str(ctx.prefix_root),
                verb=verb.name,
            )
        ctx.verb_name = verb.name
        if verb.storage_dir and ctx.storage_dir is None:
            ctx.storage_dir = Path(verb.storage_dir)

        outcomes: list[ActionOutcome] = []
        for index, action in enumerate(verb.actions):
            handler = self._handlers.get(type(action))
            self._recorder.on_action_start(ctx, index, action)
            started = time.monotonic()
            try:
                if handler is None:
                    raise ValidationError(f"unsupported action: {type(action).__name__}")
                state, message = handler(action, ctx)
            except VerbkitError as exc:
                if exc.verb is None:
                    exc.verb = verb.name
                if exc.action_index is None:
                    exc.action_index = index
                if exc.action_type is None:
                    exc.action_type = action.type_name
                outcome = ActionOutcome(
                    index=index,
                    action_type=action.type_name,
                    description=action.describe(),
                    state="failed",
                    message=exc.message,
                    elapsed_ms=int((time.monotonic() - started) * 1000),
                )
                outcomes.append(outcome)
                self._recorder.on_action_error(ctx, index, action, exc)
                return VerbResult(verb=verb.name, outcomes=tuple(outcomes), status="failed", error=exc)

            outcome = ActionOutcome(
                index=index,
                action_type=action.type_name,
                description=action.describe(),
                state=state,
                message=message,
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )
            outcomes.append(outcome)
            self._recorder.on_action_end(ctx, outcome)

        return VerbResult(verb=verb.name, outcomes=tuple(outcomes), status="succeeded")

    def _download(self, action: Download, ctx: ExecutionContext) -> tuple[ActionState, str | None]:
        dest = ctx.scratch_dir / action.filename
        if ctx.dry_run:
            ctx.artifacts[action.filename] = dest
            return "skipped", "dry-run"

        try:
            ctx.scratch_dir.mkdir(parents=True, exist_ok=True)
            path = Path(self._fetcher.fetch(action.url, dest, sha256=action.sha256, logger=ctx.logger))
        except OSError as exc:
            raise StorageIOError(f"download of {action.url} failed: {exc}", path=str(dest)) from exc
        try:
            size = path.stat().st_size
        except OSError as exc:
            raise StorageIOError(f"download produced no file: {path}", path=str(path)) from exc
        if size == 0:
            raise StorageIOError(f"download produced an empty file: {path}", path=str(path))
        ctx.artifacts[action.filename] = path
        return "succeeded", f"{size} bytes"

    def _resolve_executable(self, executable: str, ctx: ExecutionContext) -> str:
        if executable in ctx.artifacts:
            return str(ctx.artifacts[executable])
        if os.path.isabs(executable):
            if not os.path.exists(executable):
                raise NotFoundError(f"executable not found: {executable}", path=executable)
            return executable
        if _WINDOWS_PATH_RE.match(executable):
            return executable
        if ctx.storage_dir is not None:
            candidate = ctx.storage_dir / executable
            if candidate.is_file():
                return str(candidate)
        if "/" in executable or "\\" in executable:
            raise NotFoundError(f"executable not found: {executable}", path=executable)
        # Bare names are runtime built-in programs (regedit, winecfg, msiexec...).
        return executable

    def _run(self, action: Run, ctx: ExecutionContext) -> tuple[ActionState, str | None]:
        executable = self._resolve_executable(action.executable, ctx)
        if ctx.dry_run:
            return "skipped", "dry-run"

        timeout = action.timeout_seconds or self._run_timeout_seconds
        returncode = self._launcher.launch(
            executable,
            action.args,
            env=run_environment(ctx),
            timeout_seconds=timeout,
            logger=ctx.logger,
        )
        if returncode == 0:
            return "succeeded", None
        if action.best_effort:
            return "skipped", f"exit code {returncode} ignored (best effort)"
        raise RuntimeProcessError(
            f"{action.executable} exited with code {returncode}",
            returncode=returncode,
        )

    def _resolve_copy_sources(self, src: str, ctx: ExecutionContext) -> tuple[list[Path], bool, Path | None]:
        """Return (sources, into_directory, confining root); artifacts are not confined."""

        if src in ctx.artifacts:
            return [Path(ctx.artifacts[src])], False, None

        if ctx.storage_dir is None:
            raise NotFoundError(f"copy source has no storage directory to resolve against: {src}", path=src)
        base = ctx.storage_dir / src

        if any(ch in src for ch in _GLOB_CHARS):
            matches = sorted(Path(p) for p in glob.glob(str(base)))
            if not matches:
                raise NotFoundError(f"copy source matched nothing: {base}", path=str(base))
            return matches, True, ctx.storage_dir
        if not base.exists():
            raise NotFoundError(f"copy source not found: {base}", path=str(base))
        return [base], False, ctx.storage_dir

    def _copy(self, action: Copy, ctx: ExecutionContext) -> tuple[ActionState, str | None]:
        sources, into_directory, source_root = self._resolve_copy_sources(action.src, ctx)
        if source_root is not None:
            for source in sources:
                ensure_within(source_root, source, what="copy source")
        dest_root = resolve_inside(ctx.prefix_root, action.dest)

        plan: list[tuple[Path, Path]] = []
        for source in sources:
            target_base = dest_root / source.name if into_directory else dest_root
            if source.is_dir():
                for dirpath, _dirnames, filenames in os.walk(source):
                    for filename in sorted(filenames):
                        file_path = Path(dirpath) / filename
                        relative = file_path.relative_to(source)
                        plan.append((file_path, target_base / relative))
            elif target_base.is_dir():
                plan.append((source, target_base / source.name))
            else:
                plan.append((source, target_base))

        root = ctx.prefix_root.resolve()
        for src_file, target in plan:
            if source_root is not None:
                # Symlinked files inside a copied directory may point anywhere.
                ensure_within(source_root, src_file, what="copy source")
            # Existing symlinked parents may still point outside the prefix.
            resolved = target.parent.resolve() / target.name
            try:
                resolved.relative_to(root)
            except ValueError:
                raise PathTraversalError(
                    f"copy destination resolves outside the prefix: {target}", path=str(resolved)
                ) from None

        if ctx.dry_run:
            return "skipped", "dry-run"

        for src_file, target in plan:
            try:
                _atomic_copy_file(src_file, target)
            except OSError as exc:
                raise StorageIOError(f"copy {src_file} -> {target} failed: {exc}", path=str(target)) from exc
        return "succeeded", f"{len(plan)} file(s)"

    def _registry_set(self, action: RegistrySet, ctx: ExecutionContext) -> tuple[ActionState, str | None]:
        if ctx.dry_run:
            return "skipped", "dry-run"
        self._registry_writer.apply([action], ctx)
        return "succeeded", None

    def _registry_import(self, action: RegistryImport, ctx: ExecutionContext) -> tuple[ActionState, str | None]:
        if ctx.dry_run:
            return "skipped", "dry-run"
        self._registry_writer.import_reg(action.content, ctx)
        return "succeeded", None

    def _dll_override(self, action: DllOverride, ctx: ExecutionContext) -> tuple[ActionState, str | None]:
        if ctx.dry_run:
            return "skipped", "dry-run"
        entry = RegistrySet(
            hive_path=DLL_OVERRIDES_KEY,
            name=action.dll_name,
            value=action.registry_value,
            value_type="string",
        )
        self._registry_writer.apply([entry], ctx)
        ctx.dll_overrides[action.dll_name] = action.mode
        return "succeeded", None

    def expand_preset(self, preset_name: str) -> tuple[RegistrySet, ...]:
        expansion = self._presets.get(preset_name)
        if expansion is None:
            known = ", ".join(self.preset_names) or "<none>"
            raise ValidationError(f"unknown winecfg preset: {preset_name!r} (known: {known})")
        return tuple(expansion)

    def _wine_config(self, action: WineConfig, ctx: ExecutionContext) -> tuple[ActionState, str | None]:
        expansion = self.expand_preset(action.preset_name)
        if ctx.dry_run:
            return "skipped", "dry-run"
        if expansion:
            self._registry_writer.apply(list(expansion), ctx)
        return "succeeded", f"{len(expansion)} registry value(s)"
