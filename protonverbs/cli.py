from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Sequence

from protonverbs.foundation.config_io import load_config
from protonverbs.foundation.logging_utils import close_logger, generate_run_id, setup_operational_logger
from protonverbs.framework.config import ALLOWED_ARCHES, ToolConfig
from protonverbs.framework.discovery import ApplicationLocation, ConfiguredDiscovery
from protonverbs.framework.download import HttpFetcher
from protonverbs.framework.environment import derive_environment
from protonverbs.framework.orchestrator import InvocationReport, Orchestrator
from protonverbs.framework.prefix import PrefixManager, PrefixState, inspect
from protonverbs.framework.presets import PRESET_VALUES, PRESETS
from protonverbs.framework.process import RuntimeLauncher
from protonverbs.framework.regedit import RegeditWriter
from protonverbs.framework.runtime import RuntimeInstall
from protonverbs.verbs.builtin import builtin_verbs
from verbkit.errors import (
    LockContentionError,
    NotFoundError,
    RuntimeProcessError,
    VerbkitError,
)
from verbkit.interpreter import ActionInterpreter
from verbkit.recipes import CATEGORIES
from verbkit.registry import VerbRegistry

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_FOUND = 3
EXIT_BUSY = 4

# Environment variables that count as explicit runtime overrides.
_OVERRIDE_ENV_KEYS = ("WINE", "WINE64", "WINESERVER", "WINELOADER")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="protonverbs", add_help=True)
    parser.add_argument("--config", default=None, help="Path to a config YAML (skips the local overlay)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output on the console")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run verbs against a Steam application's prefix")
    run.add_argument("appid")
    run.add_argument("verbs", nargs="+")
    run.add_argument("--runtime", default=None, help="Proton version (default: PROTON_VERSION or config)")
    run.add_argument("--dry-run", action="store_true")

    prefix_run = sub.add_parser("prefix-run", help="Run verbs against a standalone prefix")
    prefix_run.add_argument("path")
    prefix_run.add_argument("verbs", nargs="+")
    prefix_run.add_argument("--runtime", default=None, help="Override the runtime recorded in the prefix")
    prefix_run.add_argument("--dry-run", action="store_true")

    create = sub.add_parser("create-prefix", help="Create a standalone prefix")
    create.add_argument("path")
    create.add_argument("--runtime", default=None, help="Proton version (default: PROTON_VERSION or config)")
    create.add_argument("--arch", choices=ALLOWED_ARCHES, default=None)
    create.add_argument("--force", action="store_true", help="Re-copy over a corrupt prefix")

    delete = sub.add_parser("delete-prefix", help="Delete a standalone prefix created by this tool")
    delete.add_argument("path")

    list_verbs = sub.add_parser("list-verbs", help="List available verbs")
    list_verbs.add_argument("--category", choices=CATEGORIES, default=None)
    list_verbs.add_argument("--search", default=None)

    return parser


def _runtime_name(args: argparse.Namespace, cfg: ToolConfig) -> str | None:
    return args.runtime or os.environ.get("PROTON_VERSION", "").strip() or cfg.default_runtime


def _explicit_overrides(cfg: ToolConfig) -> dict[str, str]:
    overrides = dict(cfg.overrides)
    for key in _OVERRIDE_ENV_KEYS:
        value = os.environ.get(key, "").strip()
        if value:
            overrides[key] = value
    return overrides


def _load_registry(cfg: ToolConfig, logger: logging.Logger) -> VerbRegistry:
    registry, issues = VerbRegistry.load(
        builtin_verbs(),
        cfg.paths.verbs_dir,
        known_presets=PRESETS.keys(),
        logger=logger,
    )
    for issue in issues:
        print(f"{issue.severity.upper()}: {issue.message}", file=sys.stderr)
    return registry


def _build_orchestrator(
    cfg: ToolConfig, runtime: RuntimeInstall | None, registry: VerbRegistry, logger: logging.Logger
) -> Orchestrator:
    launcher = RuntimeLauncher(runtime, wait_for_server=cfg.run.wait_for_server)
    fetcher = HttpFetcher(
        max_attempts=cfg.download.max_attempts,
        backoff_seconds=cfg.download.backoff_seconds,
        timeout_seconds=cfg.download.timeout_seconds,
        cache_dir=cfg.paths.download_cache_dir if cfg.download.cache else None,
    )
    interpreter = ActionInterpreter(
        fetcher=fetcher,
        launcher=launcher,
        registry_writer=RegeditWriter(launcher),
        presets=PRESET_VALUES,
        run_timeout_seconds=cfg.run.timeout_seconds,
    )
    return Orchestrator(
        registry=registry,
        interpreter=interpreter,
        scratch_root=cfg.paths.scratch_root,
        logger=logger,
    )


def _print_report(report: InvocationReport) -> None:
    if report.succeeded:
        print(f"Succeeded: {', '.join(report.succeeded)}")
    failure = report.failure
    if failure is not None:
        where = f"action #{failure.action_index} ({failure.action_type})" if failure.action_index is not None else "setup"
        state = "partially ran" if failure.verb in report.partial else "failed"
        print(f"Failed: {failure.verb} {state} at {where}: {failure.error_type}: {failure.message}")
    if report.not_run:
        print(f"Not run: {', '.join(report.not_run)}")


def _run_verbs(
    cfg: ToolConfig,
    logger: logging.Logger,
    prefix: PrefixState,
    runtime: RuntimeInstall,
    verb_names: Sequence[str],
    *,
    application: ApplicationLocation | None,
    dry_run: bool,
) -> int:
    registry = _load_registry(cfg, logger)
    environment = derive_environment(
        prefix, runtime, application=application, overrides=_explicit_overrides(cfg)
    )
    orchestrator = _build_orchestrator(cfg, runtime, registry, logger)
    report = orchestrator.run(prefix, verb_names, environment=environment, dry_run=dry_run)
    _print_report(report)
    return EXIT_OK if report.ok else EXIT_FAILED


def _cmd_run(args: argparse.Namespace, cfg: ToolConfig, logger: logging.Logger) -> int:
    discovery = ConfiguredDiscovery(cfg, logger=logger)
    manager = PrefixManager(discovery, logger=logger)
    prefix, application = manager.locate(args.appid, arch=cfg.prefix.default_arch)
    runtime = discovery.resolve_runtime(_runtime_name(args, cfg) or "")
    logger.info("Using prefix %s (state=%s) with runtime %s", prefix.root_path, prefix.lifecycle, runtime.name)
    return _run_verbs(
        cfg, logger, prefix, runtime, args.verbs, application=application, dry_run=args.dry_run
    )


def _cmd_prefix_run(args: argparse.Namespace, cfg: ToolConfig, logger: logging.Logger) -> int:
    discovery = ConfiguredDiscovery(cfg, logger=logger)
    prefix = inspect(args.path)
    runtime_name = args.runtime or prefix.runtime_version
    if not runtime_name:
        raise NotFoundError(f"No runtime recorded for {prefix.root_path}; pass --runtime")
    runtime = discovery.resolve_runtime(runtime_name)
    return _run_verbs(cfg, logger, prefix, runtime, args.verbs, application=None, dry_run=args.dry_run)


def _cmd_create_prefix(args: argparse.Namespace, cfg: ToolConfig, logger: logging.Logger) -> int:
    overrides = _explicit_overrides(cfg)

    def wineboot(state: PrefixState, runtime: RuntimeInstall) -> None:
        env = derive_environment(state, runtime, overrides=overrides)
        launcher = RuntimeLauncher(runtime, wait_for_server=True)
        returncode = launcher.launch(
            "wineboot", ["--init"], env=env, timeout_seconds=cfg.run.timeout_seconds, logger=logger
        )
        if returncode != 0:
            raise RuntimeProcessError(f"wineboot --init exited with code {returncode}", returncode=returncode)

    manager = PrefixManager(
        ConfiguredDiscovery(cfg, logger=logger),
        logger=logger,
        run_wineboot=cfg.prefix.run_wineboot,
        initializer=wineboot,
    )
    state = manager.create(
        args.path,
        _runtime_name(args, cfg) or "",
        args.arch or cfg.prefix.default_arch,
        force=args.force,
    )
    print(f"Created prefix {state.root_path} (runtime={state.runtime_version}, arch={state.arch})")
    return EXIT_OK


def _cmd_delete_prefix(args: argparse.Namespace, cfg: ToolConfig, logger: logging.Logger) -> int:
    manager = PrefixManager(ConfiguredDiscovery(cfg, logger=logger), logger=logger)
    state = manager.delete(args.path)
    print(f"Deleted prefix {state.root_path}")
    return EXIT_OK


def _cmd_list_verbs(args: argparse.Namespace, cfg: ToolConfig, logger: logging.Logger) -> int:
    registry = _load_registry(cfg, logger)
    rows = registry.search(args.search) if args.search else registry.list(args.category)
    for row in rows:
        if args.category and row.category != args.category:
            continue
        print(f"{row.name}\t{row.category}\t{row.description}")
    return EXIT_OK


_COMMANDS = {
    "run": _cmd_run,
    "prefix-run": _cmd_prefix_run,
    "create-prefix": _cmd_create_prefix,
    "delete-prefix": _cmd_delete_prefix,
    "list-verbs": _cmd_list_verbs,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    try:
        cfg_dict, _meta = load_config(config_path=args.config)
        cfg, warnings = ToolConfig.from_dict(cfg_dict)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_FAILED

    log_dir = None if args.command == "list-verbs" else cfg.paths.log_dir
    logger, _log_file = setup_operational_logger(log_dir, generate_run_id(), verbose=args.verbose)
    for warning in warnings:
        logger.warning(warning)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        raise AssertionError(f"Unhandled command: {args.command}")

    try:
        return handler(args, cfg, logger)
    except NotFoundError as exc:
        print(f"ERROR: {exc.describe()}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except LockContentionError as exc:
        print(f"ERROR: {exc.describe()}", file=sys.stderr)
        return EXIT_BUSY
    except VerbkitError as exc:
        print(f"ERROR: {type(exc).__name__}: {exc.describe()}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        close_logger(logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
