"""Default source adapters and directory overrides."""

from __future__ import annotations

from typing import Callable

from llm_usage_metrics.sources.base import SourceAdapter
from llm_usage_metrics.sources.codex import CodexSourceAdapter
from llm_usage_metrics.sources.pi import PiSourceAdapter

_REGISTRY: dict[str, Callable[[str | None], SourceAdapter]] = {
    "pi": lambda directory: PiSourceAdapter(sessions_dir=directory),
    "codex": lambda directory: CodexSourceAdapter(sessions_dir=directory),
}


def get_default_source_ids() -> list[str]:
    return list(_REGISTRY)


def parse_source_dir_overrides(entries: list[str] | None) -> dict[str, str]:
    """Parse ``id=path`` entries, rejecting malformed, duplicate and unknown ids."""
    overrides: dict[str, str] = {}
    for entry in entries or []:
        source_id, sep, directory = entry.partition("=")
        source_id = source_id.strip().lower()
        directory = directory.strip()
        if not sep or not source_id or not directory:
            raise ValueError("--source-dir must use format <source-id>=<path>")
        if source_id in overrides:
            raise ValueError(f"Duplicate --source-dir source id: {source_id}")
        overrides[source_id] = directory

    unknown = [source_id for source_id in overrides if source_id not in _REGISTRY]
    if unknown:
        raise ValueError(
            f"Unknown --source-dir source id(s): {', '.join(unknown)}. "
            f"Allowed values: {', '.join(sorted(_REGISTRY))}"
        )
    return overrides


def create_default_adapters(
    *,
    source_dirs: list[str] | None = None,
    codex_dir: str | None = None,
    pi_dir: str | None = None,
) -> list[SourceAdapter]:
    """Build one adapter per registered source. Explicit ``*_dir`` flags win over ``source_dirs``."""
    overrides = parse_source_dir_overrides(source_dirs)
    explicit = {"codex": codex_dir, "pi": pi_dir}
    return [
        factory(explicit.get(source_id) or overrides.get(source_id))
        for source_id, factory in _REGISTRY.items()
    ]
