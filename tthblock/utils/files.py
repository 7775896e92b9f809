"""Blocklist file helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def format_blocklist_json(data: dict[str, Any]) -> str:
    """
    Render a blocklist document as indented JSON.

    Top-level keys keep their order and use two-space indentation; each
    entry of the ``tths`` array is written on a single line so large lists
    stay readable and diff cleanly.
    """
    if not data:
        return "{}\n"

    parts = []
    for key, value in data.items():
        if key == "tths" and isinstance(value, list):
            if value:
                items = ",\n".join(
                    "    " + json.dumps(item, ensure_ascii=False, separators=(", ", ": "))
                    for item in value
                )
                rendered = f"[\n{items}\n  ]"
            else:
                rendered = "[]"
        else:
            rendered = json.dumps(value, indent=2, ensure_ascii=False).replace("\n", "\n  ")
        parts.append(f"  {json.dumps(key, ensure_ascii=False)}: {rendered}")
    return "{\n" + ",\n".join(parts) + "\n}\n"


def write_blocklist(path: Path, data: dict[str, Any]) -> int:
    """Write a blocklist document atomically and return its mtime (ns)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(format_blocklist_json(data), encoding="utf-8")
    tmp_path.replace(path)
    return path.stat().st_mtime_ns


def file_mtime(path: Path) -> int | None:
    """Modification time in nanoseconds, or None when the file is gone."""
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None
