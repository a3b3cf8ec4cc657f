"""Tests for usage event construction and normalization."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from llm_usage_metrics.models.usage_event import (
    UsageEvent,
    create_usage_event,
    format_timestamp,
    normalize_non_negative_integer,
    parse_timestamp,
)


class TestCreateUsageEvent:
    def test_normalizes_text_and_timestamp(self):
        event = create_usage_event(
            source=" codex ",
            session_id=" abc ",
            timestamp="2026-01-05T10:20:30.123456+02:00",
            provider=" openai ",
            model=" GPT-5-Codex ",
        )
        assert event.source == "codex"
        assert event.session_id == "abc"
        assert event.timestamp == "2026-01-05T08:20:30.123Z"
        assert event.provider == "openai"
        assert event.model == "gpt-5-codex"

    def test_total_inferred_from_components(self):
        event = create_usage_event(
            source="pi",
            session_id="s",
            timestamp="2026-01-05T00:00:00Z",
            input_tokens=10,
            output_tokens="5",
            reasoning_tokens=2.9,
            cache_read_tokens=-4,
            cache_write_tokens="junk",
        )
        assert event.input_tokens == 10
        assert event.output_tokens == 5
        assert event.reasoning_tokens == 2
        assert event.cache_read_tokens == 0
        assert event.cache_write_tokens == 0
        assert event.total_tokens == 17

    def test_declared_total_wins(self):
        event = create_usage_event(
            source="pi", session_id="s", timestamp="2026-01-05T00:00:00Z", input_tokens=10, total_tokens=99
        )
        assert event.total_tokens == 99

    def test_cost_mode_inferred(self):
        with_cost = create_usage_event(source="pi", session_id="s", timestamp="2026-01-05T00:00:00Z", cost_usd="0.5")
        without_cost = create_usage_event(source="pi", session_id="s", timestamp="2026-01-05T00:00:00Z")
        assert with_cost.cost_mode == "explicit"
        assert with_cost.cost_usd == 0.5
        assert without_cost.cost_mode == "estimated"
        assert without_cost.cost_usd is None

    def test_negative_cost_clamped(self):
        event = create_usage_event(source="pi", session_id="s", timestamp="2026-01-05T00:00:00Z", cost_usd=-3)
        assert event.cost_usd == 0.0

    def test_explicit_without_cost_rejected(self):
        with pytest.raises(ValueError, match="requires cost_usd"):
            create_usage_event(
                source="pi", session_id="s", timestamp="2026-01-05T00:00:00Z", cost_mode="explicit"
            )

    @pytest.mark.parametrize("field", ["source", "session_id"])
    def test_blank_required_text_rejected(self, field):
        kwargs = {"source": "pi", "session_id": "s", "timestamp": "2026-01-05T00:00:00Z", field: "  "}
        with pytest.raises(ValueError, match=field):
            create_usage_event(**kwargs)

    def test_invalid_timestamp_rejected(self):
        with pytest.raises(ValueError, match="Invalid timestamp"):
            create_usage_event(source="pi", session_id="s", timestamp="yesterday")

    def test_epoch_millis_timestamp(self):
        event = create_usage_event(source="pi", session_id="s", timestamp=0)
        assert event.timestamp == "1970-01-01T00:00:00.000Z"


class TestUsageEvent:
    def test_frozen(self):
        event = create_usage_event(source="pi", session_id="s", timestamp="2026-01-05T00:00:00Z")
        with pytest.raises(ValidationError):
            event.model = "other"

    def test_explicit_requires_cost_on_direct_construction(self):
        with pytest.raises(ValidationError):
            UsageEvent(source="pi", session_id="s", timestamp="2026-01-05T00:00:00.000Z", cost_mode="explicit")

    def test_camel_case_serialization(self):
        event = create_usage_event(
            source="pi", session_id="s", timestamp="2026-01-05T00:00:00Z", input_tokens=3, cost_usd=1
        )
        dumped = event.model_dump(by_alias=True)
        assert dumped["sessionId"] == "s"
        assert dumped["inputTokens"] == 3
        assert dumped["costMode"] == "explicit"
        assert UsageEvent.model_validate(dumped) == event


class TestHelpers:
    def test_normalize_non_negative_integer(self):
        assert normalize_non_negative_integer(None) == 0
        assert normalize_non_negative_integer(True) == 0
        assert normalize_non_negative_integer(float("nan")) == 0
        assert normalize_non_negative_integer("12.7") == 12

    def test_naive_datetime_treated_as_utc(self):
        parsed = parse_timestamp(datetime(2026, 3, 1, 9, 30))
        assert parsed == datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
        assert format_timestamp(parsed) == "2026-03-01T09:30:00.000Z"
