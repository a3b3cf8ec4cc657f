"""Tests for the Pi session adapter."""

from conftest import write_jsonl
from llm_usage_metrics.sources.base import has_diagnostics_parser, parse_with_diagnostics
from llm_usage_metrics.sources.pi import (
    INVALID_JSON_LINE,
    MISSING_TIMESTAMP,
    PiSourceAdapter,
    is_openai_provider,
)

SESSION = {"type": "session", "id": "pi-session", "timestamp": "2026-02-10T08:00:00Z", "cwd": "/work"}
MODEL_CHANGE = {"type": "model_change", "provider": "openai-codex", "modelId": "gpt-5.2-codex"}


def _message(usage, **extra):
    line = {"type": "message", "timestamp": "2026-02-10T08:05:00Z", "message": {"role": "assistant", "usage": usage}}
    line.update(extra)
    return line


class TestProviderFilter:
    def test_openai_only_by_default(self):
        assert is_openai_provider("openai-codex")
        assert is_openai_provider("OpenAI")
        assert not is_openai_provider("anthropic")
        assert not is_openai_provider(None)


class TestPiSourceAdapter:
    def test_has_diagnostics_parser(self):
        assert has_diagnostics_parser(PiSourceAdapter("/nowhere"))

    async def test_parses_usage_with_explicit_cost(self, tmp_path):
        path = write_jsonl(
            tmp_path / "s.jsonl",
            [
                SESSION,
                MODEL_CHANGE,
                _message(
                    {
                        "input": 1200,
                        "output": 300,
                        "cacheRead": 50,
                        "cacheWrite": 10,
                        "totalTokens": 1560,
                        "cost": {"total": 0.0125},
                    }
                ),
            ],
        )
        diagnostics = await PiSourceAdapter(tmp_path).parse_file_with_diagnostics(str(path))
        assert diagnostics.skipped_rows == 0
        event = diagnostics.events[0]
        assert event.source == "pi"
        assert event.session_id == "pi-session"
        assert event.provider == "openai-codex"
        assert event.model == "gpt-5.2-codex"
        assert event.input_tokens == 1200
        assert event.cache_write_tokens == 10
        assert event.total_tokens == 1560
        assert event.cost_usd == 0.0125
        assert event.cost_mode == "explicit"

    async def test_reasoning_key_variants(self, tmp_path):
        path = write_jsonl(
            tmp_path / "s.jsonl",
            [
                MODEL_CHANGE,
                _message({"input": 1, "output": 2, "reasoningTokens": 7}),
                _message({"input": 1, "output": 2, "outputReasoning": 3}),
            ],
        )
        events = await PiSourceAdapter(tmp_path).parse_file(str(path))
        assert [e.reasoning_tokens for e in events] == [7, 3]
        assert events[0].cost_mode == "estimated"

    async def test_line_provider_and_model_override_state(self, tmp_path):
        path = write_jsonl(
            tmp_path / "s.jsonl",
            [MODEL_CHANGE, _message({"input": 1}, provider="openai", model="gpt-4.1")],
        )
        events = await PiSourceAdapter(tmp_path).parse_file(str(path))
        assert events[0].provider == "openai"
        assert events[0].model == "gpt-4.1"

    async def test_non_openai_provider_excluded(self, tmp_path):
        path = write_jsonl(
            tmp_path / "s.jsonl",
            [{"type": "model_change", "provider": "anthropic", "modelId": "claude-sonnet-4"}, _message({"input": 1})],
        )
        assert await PiSourceAdapter(tmp_path).parse_file(str(path)) == []
        assert len(await PiSourceAdapter(tmp_path, provider_filter=lambda p: True).parse_file(str(path))) == 1

    async def test_timestamp_falls_back_to_session(self, tmp_path):
        line = _message({"input": 1})
        del line["timestamp"]
        path = write_jsonl(tmp_path / "s.jsonl", [SESSION, MODEL_CHANGE, line])
        events = await PiSourceAdapter(tmp_path).parse_file(str(path))
        assert events[0].timestamp == "2026-02-10T08:00:00.000Z"

    async def test_epoch_millis_message_timestamp(self, tmp_path):
        line = _message({"input": 1})
        del line["timestamp"]
        line["message"]["timestamp"] = 1770710400000
        path = write_jsonl(tmp_path / "s.jsonl", [MODEL_CHANGE, line])
        events = await PiSourceAdapter(tmp_path).parse_file(str(path))
        assert events[0].timestamp == "2026-02-10T08:00:00.000Z"

    async def test_skipped_rows_reported(self, tmp_path):
        no_timestamp = _message({"input": 1})
        del no_timestamp["timestamp"]
        path = write_jsonl(
            tmp_path / "s.jsonl",
            [MODEL_CHANGE, "{broken", "42", no_timestamp, _message({"input": 1}), {"type": "message"}],
        )
        diagnostics = await PiSourceAdapter(tmp_path).parse_file_with_diagnostics(str(path))
        assert len(diagnostics.events) == 1
        assert diagnostics.skipped_rows == 3
        assert [(r.reason, r.count) for r in diagnostics.skipped_row_reasons] == [
            (INVALID_JSON_LINE, 2),
            (MISSING_TIMESTAMP, 1),
        ]

    async def test_session_id_defaults_to_file_stem(self, tmp_path):
        path = write_jsonl(tmp_path / "2026-02-10_abc.jsonl", [MODEL_CHANGE, _message({"input": 1})])
        events = await PiSourceAdapter(tmp_path).parse_file(str(path))
        assert events[0].session_id == "2026-02-10_abc"

    async def test_parse_with_diagnostics_uses_adapter_parser(self, tmp_path):
        path = write_jsonl(tmp_path / "s.jsonl", [MODEL_CHANGE, "{broken", _message({"input": 1})])
        diagnostics = await parse_with_diagnostics(PiSourceAdapter(tmp_path), str(path))
        assert diagnostics.skipped_rows == 1
