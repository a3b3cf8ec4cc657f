"""Per-file and per-run parse diagnostics."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from llm_usage_metrics.models.usage_event import UsageEvent


class SkippedRowReason(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    reason: str
    count: int = Field(ge=0)


class ParseDiagnostics(BaseModel):
    """Events parsed from one file plus the rows that were skipped and why."""

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    events: list[UsageEvent] = Field(default_factory=list)
    skipped_rows: int = Field(default=0, ge=0)
    skipped_row_reasons: list[SkippedRowReason] = Field(default_factory=list)


@dataclass
class AdapterParseResult:
    """Everything one adapter produced in a run."""

    source: str
    events: list[UsageEvent] = field(default_factory=list)
    files_found: int = 0
    failed_files: int = 0
    skipped_rows: int = 0
    skipped_row_reasons: list[SkippedRowReason] = field(default_factory=list)


@dataclass(frozen=True)
class SourceFailure:
    source: str
    reason: str


@dataclass
class SessionStat:
    source: str
    files_found: int
    events_parsed: int
    failed_files: int = 0


@dataclass
class SkippedRowsSummary:
    source: str
    skipped_rows: int
    reasons: list[SkippedRowReason] = field(default_factory=list)


@dataclass
class UsageDiagnostics:
    """Run-level diagnostics surfaced next to the report rows."""

    session_stats: list[SessionStat] = field(default_factory=list)
    source_failures: list[SourceFailure] = field(default_factory=list)
    skipped_rows: list[SkippedRowsSummary] = field(default_factory=list)
    pricing_origin: str = "none"
    pricing_warning: str | None = None
    active_env_overrides: list[str] = field(default_factory=list)
    timezone: str = "UTC"
