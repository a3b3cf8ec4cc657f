"""Tests for report option validation and normalization."""

import pytest

from conftest import StubAdapter
from llm_usage_metrics.pipeline.inputs import (
    ReportOptions,
    detect_default_timezone,
    normalize_build_inputs,
    select_adapters,
    validate_pricing_url,
)


class TestNormalizeBuildInputs:
    def test_normalizes_filters(self):
        inputs = normalize_build_inputs(
            ReportOptions(
                source=["Codex, pi", "codex"],
                provider="  OpenAI ",
                model=["GPT-5,claude", "gpt-5"],
                timezone="Europe/Berlin",
            )
        )
        assert inputs.source_filter == {"codex", "pi"}
        assert inputs.provider == "openai"
        assert inputs.model_filter == ["gpt-5", "claude"]
        assert inputs.timezone == "Europe/Berlin"
        assert inputs.explicit_source_ids == {"codex", "pi"}

    def test_explicit_ids_from_directory_flags(self):
        inputs = normalize_build_inputs(
            ReportOptions(timezone="UTC", pi_dir="/tmp/pi", source_dir=["Codex=/tmp/codex"])
        )
        assert inputs.source_filter is None
        assert inputs.explicit_source_ids == {"pi", "codex"}

    @pytest.mark.parametrize(
        "options, message",
        [
            (ReportOptions(since="2026/01/01"), "--since must use format YYYY-MM-DD"),
            (ReportOptions(until="2026-02-30"), "--until has an invalid calendar date"),
            (ReportOptions(since="2026-02-02", until="2026-02-01"), "--since must be less than or equal"),
            (ReportOptions(source=[" , "]), "--source must contain"),
            (ReportOptions(model=[","]), "--model must contain"),
            (ReportOptions(timezone="Not/AZone"), "Invalid timezone"),
            (ReportOptions(pricing_url="ftp://example.com/p.json"), "--pricing-url"),
        ],
    )
    def test_rejects_invalid_options(self, options, message):
        if options.timezone is None:
            options.timezone = "UTC"
        with pytest.raises(ValueError, match=message):
            normalize_build_inputs(options)

    def test_blank_provider_is_none(self):
        assert normalize_build_inputs(ReportOptions(timezone="UTC", provider="  ")).provider is None


class TestValidatePricingUrl:
    def test_accepts_https(self):
        assert validate_pricing_url(" https://example.com/prices.json ") == "https://example.com/prices.json"

    def test_none_passes_through(self):
        assert validate_pricing_url(None) is None

    def test_rejects_missing_host(self):
        with pytest.raises(ValueError):
            validate_pricing_url("https://")


class TestDetectDefaultTimezone:
    def test_tz_env(self, monkeypatch):
        monkeypatch.setenv("TZ", "Asia/Tokyo")
        assert detect_default_timezone() == "Asia/Tokyo"

    def test_unknown_tz_env_falls_back(self, monkeypatch):
        monkeypatch.setenv("TZ", "Nowhere/Special")
        assert detect_default_timezone() != "Nowhere/Special"


class TestSelectAdapters:
    def test_no_filter_keeps_all(self):
        adapters = [StubAdapter("pi", {}), StubAdapter("codex", {})]
        assert select_adapters(adapters, None) == adapters

    def test_filter_keeps_order(self):
        adapters = [StubAdapter("pi", {}), StubAdapter("codex", {})]
        assert [a.id for a in select_adapters(adapters, {"codex"})] == ["codex"]

    def test_unknown_source_rejected(self):
        adapters = [StubAdapter("pi", {}), StubAdapter("codex", {})]
        with pytest.raises(ValueError, match="Unknown --source value\\(s\\): gemini. Allowed values: codex, pi"):
            select_adapters(adapters, {"gemini", "pi"})
