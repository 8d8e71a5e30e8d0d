"""Layout of an installed Proton/Wine runtime."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from verbkit.errors import NotFoundError

_DLL_SUBDIRS: tuple[str, ...] = (
    "lib64/wine/x86_64-unix",
    "lib64/wine/x86_64-windows",
    "lib64/wine/i386-unix",
    "lib64/wine/i386-windows",
    "lib/wine/x86_64-unix",
    "lib/wine/x86_64-windows",
    "lib/wine/i386-unix",
    "lib/wine/i386-windows",
    "lib/wine/dxvk",
    "lib/wine/vkd3d-proton",
    "lib/wine/vkd3d-proton/x86_64-windows",
    "lib/wine/vkd3d-proton/i386-windows",
    "lib/wine/nvapi",
    "lib/wine/nvapi/x86_64-windows",
    "lib/wine/nvapi/i386-windows",
    "lib/vkd3d/x86_64-windows",
    "lib/vkd3d/i386-windows",
)


def dist_dir_of(root: Path) -> Path | None:
    # Older Proton builds ship `dist/`, current ones `files/`.
    for name in ("dist", "files"):
        candidate = root / name
        if candidate.is_dir():
            return candidate
    return None


def is_runtime_ready(root: str | Path) -> bool:
    return dist_dir_of(Path(root)) is not None


@dataclass(frozen=True)
class RuntimeInstall:
    name: str
    root: Path

    @classmethod
    def at(cls, name: str, root: str | Path) -> "RuntimeInstall":
        path = Path(root).expanduser().resolve()
        if not path.is_dir():
            raise NotFoundError(f"Runtime {name!r} directory does not exist: {path}", path=str(path))
        if dist_dir_of(path) is None:
            raise NotFoundError(
                f"Runtime {name!r} is not ready (no files/ or dist/ directory): {path}",
                path=str(path),
            )
        return cls(name=name, root=path)

    @property
    def dist_dir(self) -> Path:
        found = dist_dir_of(self.root)
        if found is None:
            raise NotFoundError(f"Runtime {self.name!r} has no files/ or dist/ directory", path=str(self.root))
        return found

    @property
    def bin_dir(self) -> Path:
        return self.dist_dir / "bin"

    @property
    def wine(self) -> Path:
        return self.bin_dir / "wine"

    @property
    def wine64(self) -> Path:
        return self.bin_dir / "wine64"

    @property
    def wineserver(self) -> Path:
        return self.bin_dir / "wineserver"

    @property
    def base_image(self) -> Path:
        return self.dist_dir / "share" / "default_pfx"

    def dll_path(self) -> str:
        """Existing Wine DLL directories joined for WINEDLLPATH."""
        dist = self.dist_dir
        return ":".join(str(dist / sub) for sub in _DLL_SUBDIRS if (dist / sub).is_dir())
