"""Skipped-row bookkeeping shared by adapters and the parser."""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from llm_usage_metrics.models.diagnostics import ParseDiagnostics, SkippedRowReason
from llm_usage_metrics.models.usage_event import UsageEvent


def to_skipped_row_reasons(reasons: Counter[str]) -> list[SkippedRowReason]:
    """Histogram as a list sorted by reason in code-point order."""
    return [
        SkippedRowReason(reason=reason, count=count)
        for reason, count in sorted(reasons.items())
        if count > 0
    ]


def merge_skipped_row_reasons(groups: Iterable[Iterable[SkippedRowReason]]) -> list[SkippedRowReason]:
    merged: Counter[str] = Counter()
    for group in groups:
        for stat in group:
            merged[stat.reason] += stat.count
    return to_skipped_row_reasons(merged)


def to_parse_diagnostics(events: list[UsageEvent], reasons: Counter[str]) -> ParseDiagnostics:
    return ParseDiagnostics(
        events=events,
        skipped_rows=sum(reasons.values()),
        skipped_row_reasons=to_skipped_row_reasons(reasons),
    )
