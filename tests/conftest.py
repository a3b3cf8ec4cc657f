"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from llm_usage_metrics.config import AppConfig, ParseCacheConfig, PricingConfig
from llm_usage_metrics.models.diagnostics import ParseDiagnostics
from llm_usage_metrics.models.usage_event import UsageEvent, create_usage_event
from llm_usage_metrics.pricing.static_source import StaticPricingSource
from llm_usage_metrics.pricing.types import ModelPricing


@pytest.fixture(autouse=True)
def isolated_cache_home(tmp_path, monkeypatch):
    """Keep caches out of the real home directory and ignore host LLM_USAGE_* vars."""
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    for name in (
        "LLM_USAGE_PARSE_MAX_PARALLEL",
        "LLM_USAGE_PARSE_CACHE_ENABLED",
        "LLM_USAGE_PARSE_CACHE_TTL_MS",
        "LLM_USAGE_PARSE_CACHE_MAX_ENTRIES",
        "LLM_USAGE_PARSE_CACHE_MAX_BYTES",
        "LLM_USAGE_PRICING_CACHE_TTL_MS",
        "LLM_USAGE_PRICING_FETCH_TIMEOUT_MS",
    ):
        monkeypatch.delenv(name, raising=False)


def make_event(**overrides) -> UsageEvent:
    fields = {
        "source": "codex",
        "session_id": "session-1",
        "timestamp": "2026-02-10T12:00:00Z",
        "provider": "openai",
        "model": "gpt-5-codex",
        "input_tokens": 100,
        "output_tokens": 50,
    }
    fields.update(overrides)
    return create_usage_event(**fields)


def write_jsonl(path: Path, lines: list) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        "\n".join(line if isinstance(line, str) else json.dumps(line) for line in lines) + "\n",
        encoding="utf-8",
    )
    return path


class StubAdapter:
    """In-memory adapter: file path -> events (or an exception to raise)."""

    def __init__(self, source_id: str, files: dict[str, list[UsageEvent] | Exception]):
        self.id = source_id
        self.files = files
        self.parse_calls: list[str] = []

    async def discover_files(self) -> list[str]:
        return list(self.files)

    async def parse_file(self, file_path: str) -> list[UsageEvent]:
        self.parse_calls.append(file_path)
        outcome = self.files[file_path]
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


class DiagnosticsStubAdapter(StubAdapter):
    async def parse_file_with_diagnostics(self, file_path: str) -> ParseDiagnostics:
        events = await self.parse_file(file_path)
        return ParseDiagnostics(
            events=events,
            skipped_rows=1,
            skipped_row_reasons=[{"reason": "invalid json line", "count": 1}],
        )


@pytest.fixture
def static_pricing() -> StaticPricingSource:
    return StaticPricingSource()


@pytest.fixture
def model_x_pricing() -> StaticPricingSource:
    return StaticPricingSource(
        pricing_by_model={"model-x": ModelPricing(input_per_1m_usd=1.0, output_per_1m_usd=2.0)},
        aliases={},
    )


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(
        parse_cache=ParseCacheConfig(path=str(tmp_path / "parse-cache.json")),
        pricing=PricingConfig(cache_path=str(tmp_path / "pricing-cache.json")),
    )
