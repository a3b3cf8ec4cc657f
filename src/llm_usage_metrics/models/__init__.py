"""Data models for the usage pipeline."""

from llm_usage_metrics.models.diagnostics import (
    AdapterParseResult,
    ParseDiagnostics,
    SessionStat,
    SkippedRowReason,
    SkippedRowsSummary,
    SourceFailure,
    UsageDiagnostics,
)
from llm_usage_metrics.models.report import (
    Granularity,
    ModelUsageBreakdown,
    UsageDataResult,
    UsageReportRow,
)
from llm_usage_metrics.models.usage_event import (
    CostMode,
    UsageEvent,
    create_usage_event,
)

__all__ = [
    "AdapterParseResult",
    "CostMode",
    "Granularity",
    "ModelUsageBreakdown",
    "ParseDiagnostics",
    "SessionStat",
    "SkippedRowReason",
    "SkippedRowsSummary",
    "SourceFailure",
    "UsageDataResult",
    "UsageDiagnostics",
    "UsageEvent",
    "UsageReportRow",
    "create_usage_event",
]
