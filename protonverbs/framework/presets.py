"""Winecfg presets: named bundles of registry values."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from verbkit.actions import RegistrySet

_NT_CURRENT_VERSION = r"HKEY_LOCAL_MACHINE\Software\Microsoft\Windows NT\CurrentVersion"
_CONTROL_WINDOWS = r"HKEY_LOCAL_MACHINE\System\CurrentControlSet\Control\Windows"
_WINE = r"HKEY_CURRENT_USER\Software\Wine"
_DRIVERS = r"HKEY_CURRENT_USER\Software\Wine\Drivers"
_DIRECT3D = r"HKEY_CURRENT_USER\Software\Wine\Direct3D"
_DESKTOP = r"HKEY_CURRENT_USER\Control Panel\Desktop"


@dataclass(frozen=True)
class Preset:
    name: str
    description: str
    values: tuple[RegistrySet, ...]


@dataclass(frozen=True)
class WindowsVersion:
    name: str
    product_name: str
    csd_version: str
    build: str
    current_version: str
    csd_dword: int
    year: str


WINDOWS_VERSIONS: tuple[WindowsVersion, ...] = (
    WindowsVersion("winxp", "Microsoft Windows XP", "Service Pack 3", "2600", "5.1", 0x300, "2001"),
    WindowsVersion("vista", "Microsoft Windows Vista", "Service Pack 2", "6002", "6.0", 0x200, "2007"),
    WindowsVersion("win7", "Microsoft Windows 7", "Service Pack 1", "7601", "6.1", 0x100, "2009"),
    WindowsVersion("win8", "Microsoft Windows 8", "", "9200", "6.2", 0, "2012"),
    WindowsVersion("win81", "Microsoft Windows 8.1", "", "9600", "6.3", 0, "2013"),
    WindowsVersion("win10", "Microsoft Windows 10", "", "19041", "6.3", 0, "2015"),
    WindowsVersion("win11", "Microsoft Windows 11", "", "22000", "6.3", 0, "2021"),
)


def _windows_version_preset(version: WindowsVersion) -> Preset:
    values = (
        RegistrySet(_WINE, "Version", version.name),
        RegistrySet(_NT_CURRENT_VERSION, "ProductName", version.product_name),
        RegistrySet(_NT_CURRENT_VERSION, "CSDVersion", version.csd_version),
        RegistrySet(_NT_CURRENT_VERSION, "CurrentBuild", version.build),
        RegistrySet(_NT_CURRENT_VERSION, "CurrentBuildNumber", version.build),
        RegistrySet(_NT_CURRENT_VERSION, "CurrentVersion", version.current_version),
        RegistrySet(_CONTROL_WINDOWS, "CSDVersion", version.csd_dword, "dword"),
    )
    return Preset(version.name, f"Set Windows version to {version.product_name[len('Microsoft '):]}", values)


def _setting(name: str, description: str, *values: RegistrySet) -> Preset:
    return Preset(name, description, tuple(values))


def _fontsmooth(name: str, description: str, smoothing: str, kind: int, orientation: int | None) -> Preset:
    values = [
        RegistrySet(_DESKTOP, "FontSmoothing", smoothing),
        RegistrySet(_DESKTOP, "FontSmoothingType", kind, "dword"),
    ]
    if orientation is not None:
        values.append(RegistrySet(_DESKTOP, "FontSmoothingOrientation", orientation, "dword"))
    return Preset(name, description, tuple(values))


def _build_presets() -> dict[str, Preset]:
    presets = [_windows_version_preset(version) for version in WINDOWS_VERSIONS]
    presets.extend(
        [
            _setting("graphics=x11", "Set graphics driver to X11", RegistrySet(_DRIVERS, "Graphics", "x11")),
            _setting(
                "graphics=wayland", "Set graphics driver to Wayland", RegistrySet(_DRIVERS, "Graphics", "wayland")
            ),
            _setting("sound=pulse", "Set sound driver to PulseAudio", RegistrySet(_DRIVERS, "Audio", "pulse")),
            _setting("sound=alsa", "Set sound driver to ALSA", RegistrySet(_DRIVERS, "Audio", "alsa")),
            _setting("sound=disabled", "Disable sound", RegistrySet(_DRIVERS, "Audio", "")),
            _setting("renderer=vulkan", "Set renderer to Vulkan", RegistrySet(_DIRECT3D, "renderer", "vulkan")),
            _setting("renderer=gl", "Set renderer to OpenGL", RegistrySet(_DIRECT3D, "renderer", "gl")),
            _setting("renderer=gdi", "Set renderer to GDI", RegistrySet(_DIRECT3D, "renderer", "gdi")),
            _setting("csmt=on", "Enable CSMT (default)", RegistrySet(_DIRECT3D, "csmt", 1, "dword")),
            _setting("csmt=off", "Disable CSMT", RegistrySet(_DIRECT3D, "csmt", 0, "dword")),
            _fontsmooth("fontsmooth=disable", "Disable font smoothing", "0", 0, None),
            _fontsmooth("fontsmooth=rgb", "Enable subpixel smoothing RGB", "2", 2, 1),
            _fontsmooth("fontsmooth=bgr", "Enable subpixel smoothing BGR", "2", 2, 0),
            _fontsmooth("fontsmooth=gray", "Enable grayscale smoothing", "2", 1, None),
            _setting(
                "nocrashdialog",
                "Disable crash dialog",
                RegistrySet(rf"{_WINE}\WineDbg", "ShowCrashDialog", 0, "dword"),
            ),
            _setting(
                "mimeassoc=off",
                "Disable MIME associations",
                RegistrySet(rf"{_WINE}\FileOpenAssociations", "Enable", "N"),
            ),
            _setting(
                "mimeassoc=on",
                "Enable MIME associations",
                RegistrySet(rf"{_WINE}\FileOpenAssociations", "Enable", "Y"),
            ),
            _setting(
                "grabfullscreen=y",
                "Force cursor clipping fullscreen",
                RegistrySet(rf"{_WINE}\X11 Driver", "GrabFullscreen", "Y"),
            ),
            _setting(
                "grabfullscreen=n",
                "Disable cursor clipping fullscreen",
                RegistrySet(rf"{_WINE}\X11 Driver", "GrabFullscreen", "N"),
            ),
            _setting(
                "mwo=force",
                "MouseWarpOverride force",
                RegistrySet(rf"{_WINE}\DirectInput", "MouseWarpOverride", "force"),
            ),
            _setting(
                "mwo=enabled",
                "MouseWarpOverride enabled",
                RegistrySet(rf"{_WINE}\DirectInput", "MouseWarpOverride", "enable"),
            ),
            _setting(
                "mwo=disable",
                "MouseWarpOverride disable",
                RegistrySet(rf"{_WINE}\DirectInput", "MouseWarpOverride", "disable"),
            ),
        ]
    )
    for size in ("512", "1024", "2048"):
        presets.append(
            _setting(
                f"videomemorysize={size}",
                f"Set VRAM to {size}MB",
                RegistrySet(_DIRECT3D, "VideoMemorySize", size),
            )
        )
    return {preset.name: preset for preset in presets}


PRESETS: Mapping[str, Preset] = _build_presets()

# Shape consumed by the action interpreter.
PRESET_VALUES: Mapping[str, tuple[RegistrySet, ...]] = {name: p.values for name, p in PRESETS.items()}
