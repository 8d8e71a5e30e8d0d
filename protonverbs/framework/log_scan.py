"""Background scanning of runtime output for known Wine error signatures."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass

# (substring, code, description); matched case-insensitively.
KNOWN_ERRORS: tuple[tuple[str, str, str], ...] = (
    ("err:module:import_dll", "IMPORT_DLL", "a DLL dependency could not be loaded"),
    ("c0000135", "DLL_NOT_FOUND", "a required DLL is missing (STATUS_DLL_NOT_FOUND)"),
    ("err:mscoree", "MSCOREE", ".NET runtime error; a dotnet verb may be missing"),
    ("unhandled page fault", "PAGE_FAULT", "the program crashed with a page fault"),
    ("unhandled exception", "UNHANDLED_EXCEPTION", "the program raised an unhandled exception"),
    ("wine: could not load", "LOADER", "the Wine loader could not start the program"),
    ("err:vulkan", "VULKAN", "Vulkan initialization failed; check GPU drivers"),
    ("wineserver: could not", "WINESERVER", "wineserver failed to start"),
)


@dataclass(frozen=True)
class ErrorMatch:
    code: str
    description: str
    line: str


def classify_line(line: str) -> list[ErrorMatch]:
    lowered = line.lower()
    return [
        ErrorMatch(code=code, description=description, line=line)
        for pattern, code, description in KNOWN_ERRORS
        if pattern in lowered
    ]


_STOP = object()


class ScanningLogSink:
    """
    Line sink handed to process runners.

    `submit` never blocks on classification: lines are queued and a daemon thread
    logs them at DEBUG and reports known signatures once per code as warnings.
    """

    def __init__(self, logger: logging.Logger, *, label: str = "runtime") -> None:
        self._logger = logger
        self._label = label
        self._queue: queue.Queue[object] = queue.Queue()
        self._seen_codes: set[str] = set()
        self.matches: list[ErrorMatch] = []
        self._thread = threading.Thread(target=self._drain, name=f"log-scan-{label}", daemon=True)
        self._thread.start()

    def submit(self, line: str) -> None:
        self._queue.put(line)

    def close(self, timeout: float | None = 5.0) -> None:
        self._queue.put(_STOP)
        self._thread.join(timeout)

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            line = str(item)
            self._logger.debug("[%s] %s", self._label, line)
            for match in classify_line(line):
                self.matches.append(match)
                if match.code not in self._seen_codes:
                    self._seen_codes.add(match.code)
                    self._logger.warning("Known error %s: %s", match.code, match.description)
