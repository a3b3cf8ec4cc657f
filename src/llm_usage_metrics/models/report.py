"""Pydantic models for aggregated report output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from llm_usage_metrics.models.diagnostics import UsageDiagnostics
from llm_usage_metrics.models.usage_event import UsageEvent

RowType = Literal["period_source", "period_combined", "grand_total"]
Granularity = Literal["daily", "weekly", "monthly"]


class ModelUsageBreakdown(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float | None = None
    cost_incomplete: bool = False


class UsageReportRow(BaseModel):
    """One row of the period report.

    ``cost_usd`` is ``None`` only when no event in the row carried a known cost.
    ``cost_incomplete`` marks a row whose known cost is a lower bound.
    """

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "protected_namespaces": (),
    }

    row_type: RowType
    period_key: str
    source: str
    models: list[str] = Field(default_factory=list)
    model_breakdown: list[ModelUsageBreakdown] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float | None = None
    cost_incomplete: bool = False


@dataclass
class UsageDataResult:
    """Complete result of one usage build."""

    events: list[UsageEvent]
    rows: list[UsageReportRow]
    diagnostics: UsageDiagnostics = field(default_factory=UsageDiagnostics)
