"""Codex CLI session adapter (~/.codex/sessions/**/*.jsonl)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from llm_usage_metrics.models.usage_event import (
    UsageEvent,
    create_usage_event,
    normalize_non_negative_integer,
)
from llm_usage_metrics.sources.jsonl import as_record, as_text, discover_jsonl_files, iter_jsonl_records

logger = logging.getLogger(__name__)

DEFAULT_CODEX_SESSIONS_DIR = Path.home() / ".codex" / "sessions"
LEGACY_CODEX_MODEL_FALLBACK = "legacy-codex-unknown"


@dataclass(frozen=True)
class CodexUsage:
    input_tokens: int = 0
    cache_read_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    total_tokens: int = 0

    def __sub__(self, other: CodexUsage) -> CodexUsage:
        return CodexUsage(
            input_tokens=max(0, self.input_tokens - other.input_tokens),
            cache_read_tokens=max(0, self.cache_read_tokens - other.cache_read_tokens),
            output_tokens=max(0, self.output_tokens - other.output_tokens),
            reasoning_tokens=max(0, self.reasoning_tokens - other.reasoning_tokens),
            total_tokens=max(0, self.total_tokens - other.total_tokens),
        )

    def __add__(self, other: CodexUsage) -> CodexUsage:
        return CodexUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            reasoning_tokens=self.reasoning_tokens + other.reasoning_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def has_signal(self) -> bool:
        return any(
            (
                self.input_tokens,
                self.cache_read_tokens,
                self.output_tokens,
                self.reasoning_tokens,
                self.total_tokens,
            )
        )


def to_codex_usage(value: Any) -> CodexUsage | None:
    """Convert a Codex usage block. Codex input includes cached input; it is stored net."""
    usage = as_record(value)
    if usage is None:
        return None
    raw_input = normalize_non_negative_integer(usage.get("input_tokens"))
    cache_read = normalize_non_negative_integer(usage.get("cached_input_tokens"))
    output = normalize_non_negative_integer(usage.get("output_tokens"))
    input_tokens = max(0, raw_input - cache_read)
    return CodexUsage(
        input_tokens=input_tokens,
        cache_read_tokens=cache_read,
        output_tokens=output,
        reasoning_tokens=normalize_non_negative_integer(usage.get("reasoning_output_tokens")),
        # reasoning is a breakdown of output, not billed on top
        total_tokens=input_tokens + output + cache_read,
    )


class CodexSourceAdapter:
    id = "codex"

    def __init__(self, sessions_dir: str | Path | None = None):
        self.sessions_dir = Path(sessions_dir) if sessions_dir else DEFAULT_CODEX_SESSIONS_DIR

    async def discover_files(self) -> list[str]:
        return await asyncio.to_thread(discover_jsonl_files, self.sessions_dir)

    async def parse_file(self, file_path: str) -> list[UsageEvent]:
        return await asyncio.to_thread(self._parse_sync, file_path)

    def _parse_sync(self, file_path: str) -> list[UsageEvent]:
        events: list[UsageEvent] = []
        session_id = Path(file_path).stem
        provider: str | None = "openai"
        model: str | None = None
        previous_total: CodexUsage | None = None

        for line in iter_jsonl_records(file_path):
            if line is None:
                continue
            line_type = line.get("type")
            payload = as_record(line.get("payload"))

            if line_type == "session_meta":
                session_id = as_text((payload or {}).get("id")) or session_id
                provider = as_text((payload or {}).get("model_provider")) or provider
                continue
            if line_type == "turn_context":
                model = as_text((payload or {}).get("model")) or model
                continue
            if line_type != "event_msg" or payload is None or payload.get("type") != "token_count":
                continue

            info = as_record(payload.get("info"))
            if info is None:
                continue

            total_usage = to_codex_usage(info.get("total_token_usage"))
            last_usage = to_codex_usage(info.get("last_token_usage"))
            if last_usage is not None:
                delta = last_usage
            elif total_usage is not None:
                delta = total_usage - previous_total if previous_total else total_usage
            else:
                continue

            timestamp = as_text(line.get("timestamp"))
            if not delta.has_signal() or timestamp is None:
                previous_total = total_usage or previous_total
                continue

            try:
                events.append(
                    create_usage_event(
                        source=self.id,
                        session_id=session_id,
                        timestamp=timestamp,
                        provider=provider,
                        model=model or LEGACY_CODEX_MODEL_FALLBACK,
                        input_tokens=delta.input_tokens,
                        output_tokens=delta.output_tokens,
                        reasoning_tokens=delta.reasoning_tokens,
                        cache_read_tokens=delta.cache_read_tokens,
                        cache_write_tokens=0,
                        total_tokens=delta.total_tokens,
                        cost_mode="estimated",
                    )
                )
            except ValueError:
                logger.debug("Skipping malformed Codex token_count in %s", file_path)

            if total_usage is not None:
                previous_total = total_usage
            elif previous_total is not None:
                previous_total = previous_total + delta
            else:
                previous_total = delta

        return events
