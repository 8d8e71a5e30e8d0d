"""Typed action variants a verb is made of.

Actions are immutable values; the interpreter dispatches on their class.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import ClassVar, Literal, TypeAlias, Union

from verbkit.errors import ValidationError
from verbkit.paths import check_dest_shape, check_source_shape

ActionState: TypeAlias = Literal["pending", "running", "succeeded", "failed", "skipped"]
TERMINAL_STATES: tuple[str, ...] = ("succeeded", "failed", "skipped")

DllOverrideMode: TypeAlias = Literal["native", "builtin", "native,builtin", "builtin,native", "disabled"]
ALLOWED_DLL_MODES: tuple[str, ...] = ("native", "builtin", "native,builtin", "builtin,native", "disabled")

RegistryValueType: TypeAlias = Literal[
    "string", "dword", "qword", "binary", "expand_string", "multi_string"
]
ALLOWED_VALUE_TYPES: tuple[str, ...] = (
    "string",
    "dword",
    "qword",
    "binary",
    "expand_string",
    "multi_string",
)

HIVE_ROOTS: dict[str, str] = {
    "HKEY_CURRENT_USER": "HKEY_CURRENT_USER",
    "HKEY_LOCAL_MACHINE": "HKEY_LOCAL_MACHINE",
    "HKEY_CLASSES_ROOT": "HKEY_CLASSES_ROOT",
    "HKEY_USERS": "HKEY_USERS",
    "HKEY_CURRENT_CONFIG": "HKEY_CURRENT_CONFIG",
    "HKCU": "HKEY_CURRENT_USER",
    "HKLM": "HKEY_LOCAL_MACHINE",
    "HKCR": "HKEY_CLASSES_ROOT",
    "HKU": "HKEY_USERS",
    "HKCC": "HKEY_CURRENT_CONFIG",
}

DLL_OVERRIDES_KEY = r"HKEY_CURRENT_USER\Software\Wine\DllOverrides"

REG_FILE_HEADERS: tuple[str, ...] = ("Windows Registry Editor Version 5.00", "REGEDIT4")

_HEX_BYTES_RE = re.compile(r"^(?:[0-9a-fA-F]{2})(?:,?[0-9a-fA-F]{2})*$")


def _require_text(value: object, field_name: str, action_type: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{action_type}.{field_name} must be a non-empty string")
    return value.strip()


def normalize_hive_path(hive_path: str) -> str:
    """Return `hive_path` with its root spelled out, or raise ValidationError.

    Both forward and back slashes are accepted as separators.
    """

    if not isinstance(hive_path, str) or not hive_path.strip():
        raise ValidationError("registry path must be a non-empty string")
    parts = [part for part in re.split(r"[\\/]+", hive_path.strip()) if part]
    if not parts:
        raise ValidationError(f"registry path has no root: {hive_path!r}")
    root = HIVE_ROOTS.get(parts[0].upper())
    if root is None:
        known = ", ".join(sorted(HIVE_ROOTS))
        raise ValidationError(
            f"registry path does not start with a recognized root: {hive_path!r} (known: {known})"
        )
    return "\\".join([root, *parts[1:]])


def normalize_dll_name(dll_name: str) -> str:
    name = dll_name.strip().lower()
    if name.endswith(".dll"):
        name = name[: -len(".dll")]
    return name


@dataclass(frozen=True)
class Download:
    type_name: ClassVar[str] = "download"

    url: str
    filename: str
    sha256: str | None = None

    def __post_init__(self) -> None:
        url = _require_text(self.url, "url", self.type_name)
        if not url.startswith(("http://", "https://")):
            raise ValidationError(f"download.url must be http(s): {url!r}")
        object.__setattr__(self, "url", url)

        filename = _require_text(self.filename, "filename", self.type_name)
        if "/" in filename or "\\" in filename or filename in (".", ".."):
            raise ValidationError(f"download.filename must be a bare file name: {filename!r}")
        object.__setattr__(self, "filename", filename)

        if self.sha256 is not None:
            digest = _require_text(self.sha256, "sha256", self.type_name).lower()
            if not re.fullmatch(r"[0-9a-f]{64}", digest):
                raise ValidationError(f"download.sha256 must be a 64-char hex digest: {self.sha256!r}")
            object.__setattr__(self, "sha256", digest)

    def describe(self) -> str:
        return f"download {self.filename} <- {self.url}"


@dataclass(frozen=True)
class Run:
    type_name: ClassVar[str] = "run"

    executable: str
    args: tuple[str, ...] = ()
    best_effort: bool = False
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "executable", _require_text(self.executable, "executable", self.type_name))
        if isinstance(self.args, str):
            raise ValidationError("run.args must be a list of strings, not a string")
        args = tuple(self.args or ())
        for arg in args:
            if not isinstance(arg, str):
                raise ValidationError(f"run.args entries must be strings (got {type(arg).__name__})")
        object.__setattr__(self, "args", args)
        if not isinstance(self.best_effort, bool):
            raise ValidationError("run.best_effort must be a boolean")
        if self.timeout_seconds is not None:
            if isinstance(self.timeout_seconds, bool) or not isinstance(self.timeout_seconds, (int, float)):
                raise ValidationError("run.timeout must be a number")
            if self.timeout_seconds <= 0:
                raise ValidationError("run.timeout must be > 0")
            object.__setattr__(self, "timeout_seconds", float(self.timeout_seconds))

    def describe(self) -> str:
        rendered = " ".join([self.executable, *self.args])
        return f"run {rendered}" + (" (best effort)" if self.best_effort else "")


@dataclass(frozen=True)
class Copy:
    type_name: ClassVar[str] = "copy"

    src: str
    dest: str

    def __post_init__(self) -> None:
        src = _require_text(self.src, "src", self.type_name)
        object.__setattr__(self, "src", check_source_shape(src))
        dest = _require_text(self.dest, "dest", self.type_name)
        object.__setattr__(self, "dest", check_dest_shape(dest))

    def describe(self) -> str:
        return f"copy {self.src} -> {self.dest}"


@dataclass(frozen=True)
class RegistrySet:
    type_name: ClassVar[str] = "reg"

    hive_path: str
    name: str
    value: str | int | tuple[str, ...]
    value_type: RegistryValueType = "string"

    def __post_init__(self) -> None:
        object.__setattr__(self, "hive_path", normalize_hive_path(self.hive_path))
        # Empty name addresses the key's default value.
        if not isinstance(self.name, str):
            raise ValidationError("reg.name must be a string")

        value_type = str(self.value_type).strip().lower()
        if value_type not in ALLOWED_VALUE_TYPES:
            raise ValidationError(
                f"reg.value_type must be one of: {', '.join(ALLOWED_VALUE_TYPES)} (got {self.value_type!r})"
            )
        object.__setattr__(self, "value_type", value_type)

        value = self.value
        if value_type in ("dword", "qword"):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"reg.value must be an integer for {value_type}")
            limit = 0xFFFFFFFF if value_type == "dword" else 0xFFFFFFFFFFFFFFFF
            if value < 0 or value > limit:
                raise ValidationError(f"reg.value out of range for {value_type}: {value}")
        elif value_type == "multi_string":
            if isinstance(value, str) or not isinstance(value, (list, tuple)):
                raise ValidationError("reg.value must be a list of strings for multi_string")
            if not all(isinstance(item, str) for item in value):
                raise ValidationError("reg.value entries must be strings for multi_string")
            object.__setattr__(self, "value", tuple(value))
        elif value_type == "binary":
            if not isinstance(value, str) or not _HEX_BYTES_RE.match(value.strip()):
                raise ValidationError("reg.value must be hex bytes (e.g. 'de,ad,be,ef') for binary")
            object.__setattr__(self, "value", value.strip().lower())
        else:
            if not isinstance(value, str):
                raise ValidationError(f"reg.value must be a string for {value_type}")

    def describe(self) -> str:
        return f"reg {self.hive_path}\\{self.name or '@'} = {self.value!r} ({self.value_type})"


@dataclass(frozen=True)
class RegistryImport:
    """A complete `.reg` document imported as-is."""

    type_name: ClassVar[str] = "reg_import"

    content: str

    def __post_init__(self) -> None:
        if not isinstance(self.content, str) or not self.content.strip():
            raise ValidationError("reg_import.content must be a non-empty string")
        first_line = self.content.lstrip("\ufeff \t\r\n").splitlines()[0].strip()
        if first_line not in REG_FILE_HEADERS:
            raise ValidationError(
                f"reg_import.content must start with a .reg header ({' or '.join(REG_FILE_HEADERS)}), got {first_line!r}"
            )

    @property
    def key_count(self) -> int:
        return sum(1 for line in self.content.splitlines() if line.strip().startswith("["))

    def describe(self) -> str:
        return f"reg_import {self.key_count} key(s)"


@dataclass(frozen=True)
class DllOverride:
    type_name: ClassVar[str] = "override"

    dll_name: str
    mode: DllOverrideMode

    def __post_init__(self) -> None:
        dll_name = normalize_dll_name(_require_text(self.dll_name, "dll", self.type_name))
        if not dll_name:
            raise ValidationError("override.dll must name a DLL")
        object.__setattr__(self, "dll_name", dll_name)

        mode = str(self.mode).strip().lower().replace(" ", "")
        if mode not in ALLOWED_DLL_MODES:
            raise ValidationError(
                f"override.mode must be one of: {', '.join(ALLOWED_DLL_MODES)} (got {self.mode!r})"
            )
        object.__setattr__(self, "mode", mode)

    @property
    def registry_value(self) -> str:
        return "" if self.mode == "disabled" else self.mode

    def describe(self) -> str:
        return f"override {self.dll_name}={self.mode}"


@dataclass(frozen=True)
class WineConfig:
    type_name: ClassVar[str] = "winecfg"

    preset_name: str

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "preset_name", _require_text(self.preset_name, "preset", self.type_name).lower()
        )

    def describe(self) -> str:
        return f"winecfg {self.preset_name}"


Action: TypeAlias = Union[Download, Run, Copy, RegistrySet, RegistryImport, DllOverride, WineConfig]
ACTION_TYPES: tuple[type, ...] = (Download, Run, Copy, RegistrySet, RegistryImport, DllOverride, WineConfig)


@dataclass(frozen=True)
class ActionOutcome:
    index: int
    action_type: str
    description: str
    state: ActionState
    message: str | None = None
    elapsed_ms: int | None = None

    def __post_init__(self) -> None:
        if self.state not in TERMINAL_STATES:
            raise ValueError(f"ActionOutcome.state must be terminal (got {self.state!r})")
