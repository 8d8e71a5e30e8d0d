"""Registry edits applied through the runtime's `regedit`, plus hive-file filtering."""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Sequence
from pathlib import Path

from verbkit.actions import RegistrySet
from verbkit.errors import StorageIOError
from verbkit.interpreter import ExecutionContext, ProcessLauncher, run_environment

REG_HEADER = "Windows Registry Editor Version 5.00"

FILTER_REGISTRY_KEYS: tuple[str, ...] = (
    r"Software\Microsoft\Windows\CurrentVersion\Fonts",
    r"Software\Microsoft\Windows NT\CurrentVersion\Fonts",
    r"Software\Wine\Fonts\External Fonts",
)

_KEY_LINE_RE = re.compile(r"^\[(?P<key>.+)\] \d+$")
_VALUE_LINE_RE = re.compile(r'^"(?P<name>[^"]*)"\s*=\s*"(?P<value>.*)"$')


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _hex_bytes(data: bytes) -> str:
    return ",".join(f"{byte:02x}" for byte in data)


def format_reg_value(entry: RegistrySet) -> str:
    """Render the right-hand side of a `.reg` value line."""

    value = entry.value
    if entry.value_type == "string":
        return _quote(str(value))
    if entry.value_type == "dword":
        return f"dword:{int(value):08x}"
    if entry.value_type == "qword":
        return "hex(b):" + _hex_bytes(int(value).to_bytes(8, "little"))
    if entry.value_type == "binary":
        raw = str(value).replace(",", "")
        return "hex:" + _hex_bytes(bytes.fromhex(raw))
    if entry.value_type == "expand_string":
        return "hex(2):" + _hex_bytes(str(value).encode("utf-16-le") + b"\x00\x00")
    if entry.value_type == "multi_string":
        data = b"".join(item.encode("utf-16-le") + b"\x00\x00" for item in value) + b"\x00\x00"
        return "hex(7):" + _hex_bytes(data)
    raise ValueError(f"Unsupported registry value type: {entry.value_type}")


def render_reg_file(entries: Sequence[RegistrySet]) -> str:
    """Group entries by key, keeping first-seen key order and entry order within a key."""

    grouped: dict[str, list[RegistrySet]] = {}
    for entry in entries:
        grouped.setdefault(entry.hive_path, []).append(entry)

    lines = [REG_HEADER, ""]
    for key, key_entries in grouped.items():
        lines.append(f"[{key}]")
        for entry in key_entries:
            name = "@" if entry.name == "" else _quote(entry.name)
            lines.append(f"{name}={format_reg_value(entry)}")
        lines.append("")
    return "\n".join(lines)


class RegeditWriter:
    """Write a `.reg` patch into the scratch directory and import it with `regedit /S`."""

    def __init__(self, launcher: ProcessLauncher, *, timeout_seconds: float | None = 120.0) -> None:
        self._launcher = launcher
        self._timeout_seconds = timeout_seconds

    def apply(self, entries: Sequence[RegistrySet], ctx: ExecutionContext) -> None:
        if not entries:
            return
        self._import(render_reg_file(entries), ctx, what=f"{len(entries)} value(s)")

    def import_reg(self, content: str, ctx: ExecutionContext) -> None:
        # Keep the last value line terminated.
        self._import(content if content.endswith("\n") else content + "\n", ctx, what="a .reg document")

    def _import(self, content: str, ctx: ExecutionContext, *, what: str) -> None:
        try:
            ctx.scratch_dir.mkdir(parents=True, exist_ok=True)
            fd, patch_path = tempfile.mkstemp(prefix="regpatch-", suffix=".reg", dir=str(ctx.scratch_dir))
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
                handle.write(content)
        except OSError as exc:
            raise StorageIOError(f"Cannot write registry patch: {exc}", path=str(ctx.scratch_dir)) from exc

        ctx.logger.debug("Registry patch %s:\n%s", patch_path, content)
        try:
            returncode = self._launcher.launch(
                "regedit",
                ["/S", patch_path],
                env=run_environment(ctx),
                timeout_seconds=self._timeout_seconds,
                logger=ctx.logger,
            )
        finally:
            try:
                os.remove(patch_path)
            except FileNotFoundError:
                pass
        if returncode != 0:
            raise StorageIOError(
                f"regedit failed with exit code {returncode} applying {what}",
                path=patch_path,
            )


def filter_registry_file(path: str | os.PathLike[str], filter_keys: Sequence[str] = FILTER_REGISTRY_KEYS) -> int:
    """
    Drop drive-letter path values under the given keys of a Wine hive file.

    Those values point at fonts on the machine the base image was built on.
    Returns the number of removed lines; the file is replaced atomically.
    """

    hive = Path(path)
    text = hive.read_text(encoding="utf-8", errors="surrogateescape")
    kept: list[str] = []
    removed = 0
    filtering = False

    for line in text.splitlines():
        stripped = line.strip()
        key_match = _KEY_LINE_RE.match(stripped)
        if key_match:
            # Hive files store key separators escaped as a double backslash.
            key = key_match.group("key").replace("\\\\", "\\")
            filtering = any(filter_key in key for filter_key in filter_keys)
            kept.append(line)
            continue
        value_match = _VALUE_LINE_RE.match(stripped)
        if filtering and value_match:
            value = value_match.group("value")
            if len(value) > 2 and value[1] == ":":
                removed += 1
                continue
        kept.append(line)

    tmp_path = hive.with_name(hive.name + ".tmp")
    tmp_path.write_text("\n".join(kept) + "\n", encoding="utf-8", errors="surrogateescape")
    os.replace(tmp_path, hive)
    return removed
