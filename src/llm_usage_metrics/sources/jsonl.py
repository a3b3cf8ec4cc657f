"""JSONL session file discovery and reading."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterator


def _walk(directory: str, acc: list[str], *, skip_permission_errors: bool) -> None:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except PermissionError:
        if skip_permission_errors:
            return
        raise

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            _walk(entry.path, acc, skip_permission_errors=True)
        elif entry.is_file() and entry.name.lower().endswith(".jsonl"):
            acc.append(entry.path)


def discover_jsonl_files(root_dir: str | Path) -> list[str]:
    """Recursively list ``*.jsonl`` files in code-point order.

    A missing root yields an empty list. Unreadable subdirectories are skipped;
    an unreadable root raises.
    """
    files: list[str] = []
    try:
        _walk(str(root_dir), files, skip_permission_errors=False)
    except (FileNotFoundError, NotADirectoryError):
        return []
    return files


def iter_jsonl_records(file_path: str | Path) -> Iterator[dict[str, Any] | None]:
    """Yield one dict per JSON-object line; ``None`` for lines that are not one.

    Blank lines are skipped silently. A leading UTF-8 BOM is tolerated.
    """
    with open(file_path, encoding="utf-8-sig", errors="replace") as f:
        for raw_line in f:
            line = raw_line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                yield None
                continue
            yield record if isinstance(record, dict) else None


def as_record(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def as_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def as_number_like(value: Any) -> int | float | str | None:
    if isinstance(value, bool):
        return None
    if value is None or isinstance(value, (int, float, str)):
        return value
    return None
