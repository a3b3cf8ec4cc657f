"""Tests for period/source aggregation."""

import pytest

from conftest import make_event
from llm_usage_metrics.aggregate.aggregate_usage import aggregate_usage


def _key(row):
    return (row.row_type, row.period_key, row.source)


class TestRowLayout:
    def test_empty_input_yields_zero_grand_total(self):
        rows = aggregate_usage([], granularity="daily", timezone="UTC")
        assert len(rows) == 1
        assert _key(rows[0]) == ("grand_total", "ALL", "combined")
        assert rows[0].total_tokens == 0
        assert rows[0].cost_usd == 0
        assert rows[0].cost_incomplete is False

    def test_single_source_has_no_combined_row(self):
        events = [make_event(cost_usd=1.0), make_event(timestamp="2026-02-11T08:00:00Z", cost_usd=2.0)]
        rows = aggregate_usage(events, granularity="daily", timezone="UTC")
        assert [_key(r) for r in rows] == [
            ("period_source", "2026-02-10", "codex"),
            ("period_source", "2026-02-11", "codex"),
            ("grand_total", "ALL", "combined"),
        ]

    def test_multiple_sources_ordered_and_combined(self):
        events = [
            make_event(source="codex", cost_usd=1.0),
            make_event(source="pi", cost_usd=2.0),
            make_event(source="aider", cost_usd=0.5),
        ]
        rows = aggregate_usage(events, granularity="monthly", timezone="UTC", source_order=["pi", "codex"])
        assert [_key(r) for r in rows] == [
            ("period_source", "2026-02", "pi"),
            ("period_source", "2026-02", "codex"),
            ("period_source", "2026-02", "aider"),
            ("period_combined", "2026-02", "combined"),
            ("grand_total", "ALL", "combined"),
        ]
        assert rows[3].cost_usd == pytest.approx(3.5)
        assert rows[4].cost_usd == pytest.approx(3.5)

    def test_periods_sorted_ascending(self):
        events = [
            make_event(timestamp="2026-03-02T00:00:00Z"),
            make_event(timestamp="2026-01-15T00:00:00Z"),
        ]
        rows = aggregate_usage(events, granularity="weekly", timezone="UTC")
        assert [r.period_key for r in rows] == ["2026-W03", "2026-W10", "ALL"]

    def test_timezone_moves_event_between_days(self):
        events = [make_event(timestamp="2026-02-10T23:30:00Z")]
        rows = aggregate_usage(events, granularity="daily", timezone="Asia/Seoul")
        assert rows[0].period_key == "2026-02-11"


class TestTotals:
    def test_token_sums(self):
        events = [
            make_event(input_tokens=10, output_tokens=5, reasoning_tokens=1, cache_read_tokens=3),
            make_event(input_tokens=20, output_tokens=0, cache_write_tokens=7),
        ]
        row = aggregate_usage(events, granularity="daily", timezone="UTC")[0]
        assert row.input_tokens == 30
        assert row.output_tokens == 5
        assert row.reasoning_tokens == 1
        assert row.cache_read_tokens == 3
        assert row.cache_write_tokens == 7
        assert row.total_tokens == 46

    def test_cost_sums_exactly(self):
        events = [make_event(cost_usd=0.1) for _ in range(10)]
        row = aggregate_usage(events, granularity="daily", timezone="UTC")[0]
        assert row.cost_usd == 1.0

    def test_unknown_cost_only(self):
        row = aggregate_usage([make_event()], granularity="daily", timezone="UTC")[0]
        assert row.cost_usd is None
        assert row.cost_incomplete is True

    def test_partial_cost_is_lower_bound(self):
        events = [make_event(cost_usd=2.0), make_event(model="mystery")]
        row = aggregate_usage(events, granularity="daily", timezone="UTC")[0]
        assert row.cost_usd == pytest.approx(2.0)
        assert row.cost_incomplete is True

    def test_zero_activity_unknown_cost_is_neutral(self):
        events = [make_event(cost_usd=1.0), make_event(input_tokens=0, output_tokens=0)]
        row = aggregate_usage(events, granularity="daily", timezone="UTC")[0]
        assert row.cost_usd == pytest.approx(1.0)
        assert row.cost_incomplete is False

    def test_incomplete_propagates_to_grand_total(self):
        events = [make_event(source="codex", cost_usd=1.0), make_event(source="pi")]
        rows = aggregate_usage(events, granularity="daily", timezone="UTC")
        grand = rows[-1]
        assert grand.cost_usd == pytest.approx(1.0)
        assert grand.cost_incomplete is True


class TestModelBreakdown:
    def test_models_sorted_and_broken_down(self):
        events = [
            make_event(model="gpt-5-codex", input_tokens=10, output_tokens=0, cost_usd=0.5),
            make_event(model="claude-sonnet-4", input_tokens=5, output_tokens=0),
            make_event(model="GPT-5-Codex", input_tokens=1, output_tokens=0, cost_usd=0.25),
            make_event(model=None, input_tokens=100, output_tokens=0),
        ]
        row = aggregate_usage(events, granularity="daily", timezone="UTC")[0]
        assert row.models == ["claude-sonnet-4", "gpt-5-codex"]
        breakdown = {b.model: b for b in row.model_breakdown}
        assert breakdown["gpt-5-codex"].input_tokens == 11
        assert breakdown["gpt-5-codex"].cost_usd == pytest.approx(0.75)
        assert breakdown["claude-sonnet-4"].cost_usd is None
        assert breakdown["claude-sonnet-4"].cost_incomplete is True
        assert row.input_tokens == 116

    def test_json_aliases(self):
        row = aggregate_usage([make_event(cost_usd=1.0)], granularity="daily", timezone="UTC")[0]
        dumped = row.model_dump(by_alias=True)
        assert dumped["rowType"] == "period_source"
        assert dumped["periodKey"] == "2026-02-10"
        assert dumped["modelBreakdown"][0]["costUsd"] == 1.0


class TestDeterminism:
    def test_input_order_does_not_matter(self):
        events = [
            make_event(source="pi", model="b-model", timestamp="2026-02-11T00:00:00Z", cost_usd=0.2),
            make_event(source="codex", model="a-model", timestamp="2026-02-10T00:00:00Z", cost_usd=0.1),
            make_event(source="codex", model="c-model", timestamp="2026-02-11T00:00:00Z"),
        ]
        forward = aggregate_usage(events, granularity="daily", timezone="UTC")
        backward = aggregate_usage(list(reversed(events)), granularity="daily", timezone="UTC")
        assert [r.model_dump() for r in forward] == [r.model_dump() for r in backward]

    def test_many_small_costs_sum_without_drift(self):
        events = [make_event(cost_usd=0.001) for _ in range(10_000)]
        grand = aggregate_usage(events, granularity="monthly", timezone="UTC")[-1]
        assert grand.cost_usd == 10.0
