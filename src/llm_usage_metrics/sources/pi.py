"""Pi agent session adapter (~/.pi/agent/sessions/**/*.jsonl)."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from llm_usage_metrics.models.diagnostics import ParseDiagnostics
from llm_usage_metrics.models.usage_event import UsageEvent, create_usage_event, format_timestamp, parse_timestamp
from llm_usage_metrics.sources.diagnostics import to_parse_diagnostics
from llm_usage_metrics.sources.jsonl import (
    as_number_like,
    as_record,
    as_text,
    discover_jsonl_files,
    iter_jsonl_records,
)

logger = logging.getLogger(__name__)

DEFAULT_PI_SESSIONS_DIR = Path.home() / ".pi" / "agent" / "sessions"

INVALID_JSON_LINE = "invalid json line"
MISSING_TIMESTAMP = "missing timestamp"
INVALID_USAGE_EVENT = "invalid usage event"

ProviderFilter = Callable[[str | None], bool]


def is_openai_provider(provider: str | None) -> bool:
    return "openai" in provider.lower() if provider else False


@dataclass
class _SessionState:
    session_id: str
    session_timestamp: str | None = None
    provider: str | None = None
    model: str | None = None


def _extract_usage(line: dict[str, Any], message: dict[str, Any] | None) -> dict[str, Any] | None:
    usage = as_record(line.get("usage")) or as_record((message or {}).get("usage"))
    if usage is None:
        return None
    cost = as_record(usage.get("cost")) or {}
    reasoning = next(
        (
            usage[key]
            for key in ("reasoning", "reasoningTokens", "reasoningOutput", "outputReasoning")
            if usage.get(key) is not None
        ),
        None,
    )
    extracted = {
        "input_tokens": as_number_like(usage.get("input")),
        "output_tokens": as_number_like(usage.get("output")),
        "reasoning_tokens": as_number_like(reasoning),
        "cache_read_tokens": as_number_like(usage.get("cacheRead")),
        "cache_write_tokens": as_number_like(usage.get("cacheWrite")),
        "total_tokens": as_number_like(usage.get("totalTokens")),
        "cost_usd": as_number_like(cost.get("total")),
    }
    if all(value is None for value in extracted.values()):
        return None
    return extracted


def _resolve_timestamp(
    line: dict[str, Any], message: dict[str, Any] | None, state: _SessionState
) -> str | None:
    for candidate in (line.get("timestamp"), (message or {}).get("timestamp"), state.session_timestamp):
        if isinstance(candidate, (int, float)) and not isinstance(candidate, bool):
            try:
                return format_timestamp(parse_timestamp(candidate))
            except (ValueError, OverflowError, OSError):
                continue
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return None


class PiSourceAdapter:
    id = "pi"

    def __init__(
        self,
        sessions_dir: str | Path | None = None,
        provider_filter: ProviderFilter = is_openai_provider,
    ):
        self.sessions_dir = Path(sessions_dir) if sessions_dir else DEFAULT_PI_SESSIONS_DIR
        self.provider_filter = provider_filter

    async def discover_files(self) -> list[str]:
        return await asyncio.to_thread(discover_jsonl_files, self.sessions_dir)

    async def parse_file(self, file_path: str) -> list[UsageEvent]:
        diagnostics = await self.parse_file_with_diagnostics(file_path)
        return diagnostics.events

    async def parse_file_with_diagnostics(self, file_path: str) -> ParseDiagnostics:
        return await asyncio.to_thread(self._parse_sync, file_path)

    def _parse_sync(self, file_path: str) -> ParseDiagnostics:
        events: list[UsageEvent] = []
        skipped: Counter[str] = Counter()
        state = _SessionState(session_id=Path(file_path).stem)

        for line in iter_jsonl_records(file_path):
            if line is None:
                skipped[INVALID_JSON_LINE] += 1
                continue

            line_type = line.get("type")
            if line_type == "session":
                state.session_id = as_text(line.get("id")) or state.session_id
                state.session_timestamp = as_text(line.get("timestamp")) or state.session_timestamp
                continue
            if line_type == "model_change":
                state.provider = as_text(line.get("provider")) or state.provider
                state.model = as_text(line.get("modelId")) or as_text(line.get("model")) or state.model
                continue
            if line_type != "message":
                continue

            message = as_record(line.get("message"))
            usage = _extract_usage(line, message)
            if usage is None:
                continue

            provider = (
                as_text(line.get("provider"))
                or as_text((message or {}).get("provider"))
                or state.provider
            )
            if not self.provider_filter(provider):
                continue

            timestamp = _resolve_timestamp(line, message, state)
            if timestamp is None:
                skipped[MISSING_TIMESTAMP] += 1
                continue

            model = (
                as_text(line.get("model"))
                or as_text(line.get("modelId"))
                or as_text((message or {}).get("model"))
                or state.model
            )
            try:
                events.append(
                    create_usage_event(
                        source=self.id,
                        session_id=state.session_id,
                        timestamp=timestamp,
                        provider=provider,
                        model=model,
                        **usage,
                    )
                )
            except ValueError:
                skipped[INVALID_USAGE_EVENT] += 1

        if skipped:
            logger.debug("Skipped %d rows in %s", sum(skipped.values()), file_path)
        return to_parse_diagnostics(events, skipped)
