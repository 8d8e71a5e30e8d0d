"""Blocking child-process execution with output forwarding and tree termination."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import IO

import psutil

from protonverbs.framework.log_scan import ScanningLogSink
from protonverbs.framework.runtime import RuntimeInstall
from verbkit.errors import NotFoundError, RuntimeProcessError

LineSink = Callable[[str], None]


def kill_process_tree(pid: int, *, grace_seconds: float = 3.0) -> None:
    """Terminate `pid` and every descendant; SIGKILL whatever outlives the grace period."""

    try:
        parent = psutil.Process(pid)
        processes = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        processes = []

    for proc in processes:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            continue
    _gone, alive = psutil.wait_procs(processes, timeout=grace_seconds)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue

    # Children started with start_new_session lead their own process group;
    # this also reaches descendants that were re-parented away from the tree.
    try:
        os.killpg(pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def _pump(stream: IO[str], sink: LineSink | None) -> None:
    with stream:
        for raw in stream:
            line = raw.rstrip("\r\n")
            if sink is not None and line:
                sink(line)


def run_process(
    argv: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    timeout_seconds: float | None = None,
    on_line: LineSink | None = None,
) -> int:
    """
    Run `argv` to completion and return its exit code.

    stdout and stderr are drained by helper threads that only forward lines to
    `on_line`. On timeout or KeyboardInterrupt the whole process tree is killed
    before the error propagates.

    Raises:
        NotFoundError: the program does not exist.
        RuntimeProcessError: the program could not be started or timed out.
    """

    try:
        proc = subprocess.Popen(
            list(argv),
            env=dict(env) if env is not None else None,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,
        )
    except FileNotFoundError as exc:
        raise NotFoundError(f"Program not found: {argv[0]}", path=str(argv[0])) from exc
    except OSError as exc:
        raise RuntimeProcessError(f"Cannot start {argv[0]}: {exc}") from exc

    readers = [
        threading.Thread(target=_pump, args=(proc.stdout, on_line), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, on_line), daemon=True),
    ]
    for reader in readers:
        reader.start()

    try:
        returncode = proc.wait(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        kill_process_tree(proc.pid)
        proc.wait()
        for reader in readers:
            reader.join(timeout=2.0)
        raise RuntimeProcessError(
            f"{Path(argv[0]).name} timed out after {timeout_seconds}s",
            timed_out=True,
        ) from None
    except KeyboardInterrupt:
        kill_process_tree(proc.pid)
        proc.wait()
        raise

    for reader in readers:
        reader.join()
    return returncode


class RuntimeLauncher:
    """Runs Windows programs through the runtime's `wine` binary."""

    def __init__(
        self,
        runtime: RuntimeInstall | None,
        *,
        wait_for_server: bool = True,
        server_timeout_seconds: float = 300.0,
    ) -> None:
        self._runtime = runtime
        self._wait_for_server = wait_for_server
        self._server_timeout_seconds = server_timeout_seconds

    def _binary(self, env: Mapping[str, str], key: str) -> str:
        value = env.get(key)
        if value:
            return value
        if self._runtime is None:
            raise NotFoundError(f"No runtime selected and {key} is not set")
        return str(self._runtime.wine if key == "WINE" else self._runtime.wineserver)

    def launch(
        self,
        executable: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str],
        timeout_seconds: float | None,
        logger: logging.Logger,
    ) -> int:
        wine = self._binary(env, "WINE")
        argv = [wine, executable, *args]
        # Installers expect to start in their own directory.
        cwd = str(Path(executable).parent) if os.path.isabs(executable) and os.path.isfile(executable) else None
        logger.debug("Launching: %s (cwd=%s)", " ".join(argv), cwd or ".")

        sink = ScanningLogSink(logger, label=Path(executable).name)
        try:
            returncode = run_process(
                argv,
                env=env,
                cwd=cwd,
                timeout_seconds=timeout_seconds,
                on_line=sink.submit,
            )
        except RuntimeProcessError as exc:
            if exc.timed_out:
                self.kill_server(env, logger)
            raise
        finally:
            sink.close()

        logger.debug("%s exited with code %s", Path(executable).name, returncode)
        if returncode == 0 and self._wait_for_server:
            self.wait_for_server(env, logger)
        return returncode

    def wait_for_server(self, env: Mapping[str, str], logger: logging.Logger) -> None:
        wineserver = self._binary(env, "WINESERVER")
        try:
            returncode = run_process(
                [wineserver, "-w"], env=env, timeout_seconds=self._server_timeout_seconds
            )
        except (NotFoundError, RuntimeProcessError) as exc:
            logger.warning("wineserver -w failed: %s", exc.message)
            return
        if returncode != 0:
            logger.warning("wineserver -w exited with code %s", returncode)

    def kill_server(self, env: Mapping[str, str], logger: logging.Logger) -> None:
        wineserver = self._binary(env, "WINESERVER")
        try:
            run_process([wineserver, "-k"], env=env, timeout_seconds=30.0)
        except (NotFoundError, RuntimeProcessError) as exc:
            logger.warning("wineserver -k failed: %s", exc.message)
