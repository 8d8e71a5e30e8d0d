"""Path checks for copy actions.

Two layers: the `check_*_shape` helpers look only at the declared text (load
time); `resolve_inside` and `ensure_within` resolve symlinks against the real
directories (execution time).
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from verbkit.errors import PathTraversalError


def check_dest_shape(dest: str) -> str:
    """Normalize a declared destination and reject ones that leave the prefix."""

    text = dest.replace("\\", "/").strip()
    if text.startswith("/") or (len(text) >= 2 and text[1] == ":"):
        raise PathTraversalError(f"copy destination must be relative to the prefix: {dest!r}", path=dest)

    depth = 0
    parts: list[str] = []
    for part in PurePosixPath(text).parts:
        if part in ("", "."):
            continue
        if part == "..":
            depth -= 1
            if depth < 0:
                raise PathTraversalError(f"copy destination escapes the prefix: {dest!r}", path=dest)
            parts.pop()
            continue
        depth += 1
        parts.append(part)

    if not parts:
        raise PathTraversalError(f"copy destination must name a path inside the prefix: {dest!r}", path=dest)
    return "/".join(parts)


def resolve_inside(prefix_root: str | Path, relative: str) -> Path:
    """Resolve `relative` under `prefix_root`, following existing symlinks.

    Raises PathTraversalError when the fully resolved target is not inside the
    resolved prefix root.
    """

    root = Path(prefix_root).resolve()
    candidate = (root / check_dest_shape(relative)).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        raise PathTraversalError(
            f"copy destination resolves outside the prefix: {relative!r} -> {candidate}",
            path=str(candidate),
        ) from None
    return candidate


def check_source_shape(src: str) -> str:
    """Reject copy sources that name host paths instead of files next to the recipe."""

    text = src.strip()
    posix = text.replace("\\", "/")
    if text.startswith("~") or posix.startswith("/") or (len(text) >= 2 and text[1] == ":"):
        raise PathTraversalError(
            f"copy source must be relative to the verb's directory: {src!r}", path=src
        )
    return text


def ensure_within(root: str | Path, candidate: str | Path, *, what: str) -> Path:
    """Return `candidate` fully resolved, or raise PathTraversalError when it leaves `root`."""

    resolved_root = Path(root).resolve()
    resolved = Path(candidate).resolve()
    try:
        resolved.relative_to(resolved_root)
    except ValueError:
        raise PathTraversalError(
            f"{what} resolves outside {resolved_root}: {candidate}", path=str(resolved)
        ) from None
    return resolved
