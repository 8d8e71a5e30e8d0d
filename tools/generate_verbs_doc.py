from __future__ import annotations

import argparse
import os
import sys
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class VerbDocRow:
    name: str
    category: str
    description: str
    publisher: str | None
    year: str | None
    action_types: tuple[str, ...]


def _verb_rows() -> list[VerbDocRow]:
    project_root = Path(__file__).resolve().parent.parent
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))

    try:
        from protonverbs.verbs.builtin import builtin_verbs  # noqa: PLC0415
        from verbkit.registry import VerbRegistry  # noqa: PLC0415
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(f"Failed to import built-in verbs: {exc}") from exc

    rows: list[VerbDocRow] = []
    for entry in VerbRegistry.from_definitions(builtin_verbs()).describe():
        rows.append(
            VerbDocRow(
                name=entry["name"],
                category=entry["category"],
                description=str(entry.get("description") or "").strip(),
                publisher=entry.get("publisher"),
                year=entry.get("year"),
                action_types=tuple(entry.get("action_types") or ()),
            )
        )

    rows.sort(key=lambda r: (r.category, r.name))
    return rows


def generate_markdown(*, rows: Iterable[VerbDocRow]) -> str:
    rows = list(rows)
    groups: dict[str, list[VerbDocRow]] = defaultdict(list)
    for row in rows:
        groups[row.category].append(row)

    lines: list[str] = []
    lines.append("# Built-in Verbs")
    lines.append("")
    lines.append("This file is generated from `protonverbs.verbs.builtin.builtin_verbs()`.")
    lines.append("")
    lines.append("Regenerate with:")
    lines.append("")
    lines.append("```bash")
    lines.append("python tools/generate_verbs_doc.py")
    lines.append("```")
    lines.append("")
    lines.append(f"Total verbs: {len(rows)}")
    lines.append("")

    for group in sorted(groups.keys()):
        lines.append(f"## {group}")
        lines.append("")
        for row in sorted(groups[group], key=lambda r: r.name):
            origin = ", ".join(part for part in (row.publisher, row.year) if part)
            suffix = f" ({origin})" if origin else ""
            actions = f" `[{', '.join(row.action_types)}]`" if row.action_types else ""
            lines.append(f"- `{row.name}`: {row.description}{suffix}{actions}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def write_verbs_doc(output_path: str) -> int:
    rows = _verb_rows()
    md = generate_markdown(rows=rows)

    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    with open(output_path, "w", encoding="utf-8", newline="\n") as handle:
        handle.write(md)

    print(f"Wrote {output_path} ({len(rows)} verbs)")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="generate_verbs_doc")
    parser.add_argument(
        "--output",
        default=os.path.join("docs", "verbs.md"),
        help="Output markdown path (default: docs/verbs.md)",
    )
    args = parser.parse_args(argv)

    try:
        return write_verbs_doc(args.output)
    except Exception as exc:  # noqa: BLE001
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
