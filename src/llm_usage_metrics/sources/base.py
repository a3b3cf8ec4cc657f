"""Source adapter contract."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from llm_usage_metrics.models.diagnostics import ParseDiagnostics
from llm_usage_metrics.models.usage_event import UsageEvent


@runtime_checkable
class SourceAdapter(Protocol):
    """Discovers session files for one tool and turns each into usage events.

    Adapters may also define ``async parse_file_with_diagnostics(path)`` returning
    :class:`ParseDiagnostics`; the parser prefers it when present.
    """

    id: str

    async def discover_files(self) -> list[str]: ...

    async def parse_file(self, file_path: str) -> list[UsageEvent]: ...


def has_diagnostics_parser(adapter: SourceAdapter) -> bool:
    return callable(getattr(adapter, "parse_file_with_diagnostics", None))


async def parse_with_diagnostics(adapter: SourceAdapter, file_path: str) -> ParseDiagnostics:
    """Parse one file, wrapping plain ``parse_file`` output as zero-skip diagnostics."""
    if has_diagnostics_parser(adapter):
        return await adapter.parse_file_with_diagnostics(file_path)  # type: ignore[attr-defined]
    events = await adapter.parse_file(file_path)
    return ParseDiagnostics(events=events, skipped_rows=0, skipped_row_reasons=[])
