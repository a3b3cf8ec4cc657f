"""Fold usage events into period/source report rows."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import Sequence

from llm_usage_metrics.models.report import Granularity, ModelUsageBreakdown, UsageReportRow
from llm_usage_metrics.models.usage_event import TOKEN_FIELDS, UsageEvent
from llm_usage_metrics.utils.time_buckets import get_period_key

logger = logging.getLogger(__name__)

# Money is summed as integer pico-dollars so long sums do not drift.
USD_SCALE = 10**12

GRAND_TOTAL_PERIOD = "ALL"
COMBINED_SOURCE = "combined"


@dataclass
class _Totals:
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    total_tokens: int = 0
    cost_units: int | None = None
    cost_incomplete: bool = False

    def add_event(self, event: UsageEvent) -> None:
        for name in TOKEN_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(event, name))

        if event.cost_usd is not None:
            self._add_cost(round(event.cost_usd * USD_SCALE))
        elif event.has_token_activity():
            self.cost_incomplete = True
        else:
            # No tokens and no cost: nothing was spent.
            self._add_cost(0)

    def add_totals(self, other: _Totals) -> None:
        for name in TOKEN_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        if other.cost_units is not None:
            self._add_cost(other.cost_units)
        if other.cost_incomplete:
            self.cost_incomplete = True

    def _add_cost(self, units: int) -> None:
        self.cost_units = (self.cost_units or 0) + units

    @property
    def cost_usd(self) -> float | None:
        return None if self.cost_units is None else self.cost_units / USD_SCALE

    def fields(self) -> dict:
        return {
            **{name: getattr(self, name) for name in TOKEN_FIELDS},
            "cost_usd": self.cost_usd,
            "cost_incomplete": self.cost_incomplete,
        }


@dataclass
class _RowAccumulator:
    totals: _Totals = field(default_factory=_Totals)
    model_totals: dict[str, _Totals] = field(default_factory=dict)

    def add_event(self, event: UsageEvent) -> None:
        self.totals.add_event(event)
        model = normalize_model_key(event.model)
        if model:
            self.model_totals.setdefault(model, _Totals()).add_event(event)

    def merge(self, other: _RowAccumulator) -> None:
        self.totals.add_totals(other.totals)
        for model, totals in other.model_totals.items():
            self.model_totals.setdefault(model, _Totals()).add_totals(totals)

    def to_row(self, row_type: str, period_key: str, source: str) -> UsageReportRow:
        models = sorted(self.model_totals)
        return UsageReportRow(
            row_type=row_type,
            period_key=period_key,
            source=source,
            models=models,
            model_breakdown=[
                ModelUsageBreakdown(model=model, **self.model_totals[model].fields())
                for model in models
            ],
            **self.totals.fields(),
        )


def normalize_model_key(model: str | None) -> str | None:
    if not model:
        return None
    return model.strip().lower() or None


def aggregate_usage(
    events: Sequence[UsageEvent],
    *,
    granularity: Granularity,
    timezone: str,
    source_order: Sequence[str] | None = None,
) -> list[UsageReportRow]:
    """Build report rows: per-source rows per period, a combined row for periods
    with more than one source, then one grand total row.

    Periods sort ascending; sources by ``source_order`` position, then code point.
    A row's cost is ``None`` only when no event in it had a known cost.
    """
    weights = {source: index for index, source in enumerate(source_order or [])}
    periods: dict[str, dict[str, _RowAccumulator]] = {}

    for event in events:
        period_key = get_period_key(event.timestamp, granularity, timezone)
        periods.setdefault(period_key, {}).setdefault(event.source, _RowAccumulator()).add_event(event)

    rows: list[UsageReportRow] = []
    grand = _RowAccumulator()

    for period_key in sorted(periods):
        sources = periods[period_key]
        combined = _RowAccumulator()
        for source in sorted(sources, key=lambda s: (weights.get(s, sys.maxsize), s)):
            accumulator = sources[source]
            rows.append(accumulator.to_row("period_source", period_key, source))
            combined.merge(accumulator)
            grand.merge(accumulator)
        if len(sources) > 1:
            rows.append(combined.to_row("period_combined", period_key, COMBINED_SOURCE))

    if not events:
        grand.totals.cost_units = 0
    rows.append(grand.to_row("grand_total", GRAND_TOTAL_PERIOD, COMBINED_SOURCE))

    logger.debug("Aggregated %d events into %d rows", len(events), len(rows))
    return rows
